"""Per-turn filter for frames the agent server retransmits."""
from __future__ import annotations

import logging

from .models import StreamFrame

logger = logging.getLogger(__name__)


class EventDeduplicator:
    """Drops repeated frames within one turn.

    Text and reasoning part updates always pass: they are cumulative
    snapshots, and filtering them would drop growing content. Every other
    frame passes only the first time its key is seen. The key set lives
    exactly as long as the turn; call ``reset()`` when the turn ends.
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()
        self.dropped = 0

    def should_process(self, frame: StreamFrame) -> bool:
        if frame.is_text_part:
            return True
        key = frame.dedup_key
        if key in self._seen:
            self.dropped += 1
            return False
        self._seen.add(key)
        return True

    def __len__(self) -> int:
        return len(self._seen)

    def reset(self) -> None:
        if self.dropped:
            logger.debug(
                "Deduplicator released %d keys (%d duplicates dropped)",
                len(self._seen), self.dropped,
            )
        self._seen.clear()
        self.dropped = 0
