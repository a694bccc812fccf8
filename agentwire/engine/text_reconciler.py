"""Turns cumulative text snapshots into incremental deltas.

The agent server resends a part's full text on every update instead of
only the new characters. For each part we remember the last snapshot and
hand out the suffix that extends it.

A snapshot that is not an extension of the previous one (the server
rewrote the part) closes the current text id and opens a new one whose
only delta is the whole new text. This branch follows observed server
behaviour rather than a documented guarantee, so it is kept separate
(``_replace``) and tested on its own.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class TrackedTextPart:
    part_id: str
    text_id: str
    last_known_full_text: str = ""
    revision: int = 1


@dataclass
class ReconciledText:
    """Outcome of one snapshot.

    ``text_id`` identifies the emitted text stream (equal to the part id
    until the part is replaced). ``started`` is True when this delta opens
    ``text_id``; ``closed_text_id`` names a text id that must be ended
    before this delta is emitted.
    """
    text_id: str
    delta: str
    started: bool = False
    closed_text_id: str | None = None


class TextReconciler:
    """Per-turn map of part id to last known full text."""

    def __init__(self) -> None:
        self._parts: dict[str, TrackedTextPart] = {}

    def reconcile(self, part_id: str, full_text: str) -> ReconciledText | None:
        """Return the new content for *part_id*, or None if nothing changed."""
        if not full_text:
            return None
        tracked = self._parts.get(part_id)
        if tracked is None:
            tracked = TrackedTextPart(part_id=part_id, text_id=part_id)
            self._parts[part_id] = tracked
            tracked.last_known_full_text = full_text
            return ReconciledText(text_id=tracked.text_id, delta=full_text, started=True)

        previous = tracked.last_known_full_text
        if full_text == previous:
            return None
        if full_text.startswith(previous):
            tracked.last_known_full_text = full_text
            return ReconciledText(
                text_id=tracked.text_id,
                delta=full_text[len(previous):],
            )
        return self._replace(tracked, full_text)

    def _replace(self, tracked: TrackedTextPart, full_text: str) -> ReconciledText:
        closed = tracked.text_id
        previous_len = len(tracked.last_known_full_text)
        tracked.revision += 1
        tracked.text_id = f"{tracked.part_id}#{tracked.revision}"
        tracked.last_known_full_text = full_text
        logger.debug(
            "Text part %s replaced (prev=%d chars, new=%d chars); continuing as %s",
            tracked.part_id, previous_len, len(full_text), tracked.text_id,
        )
        return ReconciledText(
            text_id=tracked.text_id,
            delta=full_text,
            started=True,
            closed_text_id=closed,
        )

    def text_of(self, part_id: str) -> str | None:
        tracked = self._parts.get(part_id)
        return tracked.last_known_full_text if tracked else None

    def open_text_ids(self) -> list[str]:
        return [tracked.text_id for tracked in self._parts.values()]

    def close(self, part_id: str) -> str | None:
        """Discard tracking for *part_id*; return the text id to end."""
        tracked = self._parts.pop(part_id, None)
        return tracked.text_id if tracked else None

    def close_all(self) -> list[str]:
        text_ids = self.open_text_ids()
        self._parts.clear()
        return text_ids

    def __len__(self) -> int:
        return len(self._parts)
