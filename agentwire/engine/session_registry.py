"""Tracks the live backend session of every conversation slot.

Prevents:
1. Multiple concurrent turns for the same slot
2. Superseded turns continuing to receive events
3. Session leaks in a long-running process
"""
from __future__ import annotations

import logging
from collections.abc import Callable

from .models import ActiveSessionEntry

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Last-write-wins map of slot id to its active session.

    Invariant: zero or one entry per slot.
    """

    def __init__(self) -> None:
        self._entries: dict[str, ActiveSessionEntry] = {}

    def register(
        self,
        slot_id: str,
        session_id: str,
        cancel_fn: Callable[[], None],
    ) -> ActiveSessionEntry:
        """Install a session for *slot_id*, cancelling whatever was there."""
        existing = self._entries.pop(slot_id, None)
        if existing is not None:
            logger.info(
                "Cancelling superseded session %s for slot %s",
                existing.session_id, slot_id,
            )
            self._invoke_cancel(existing)

        entry = ActiveSessionEntry(
            slot_id=slot_id,
            session_id=session_id,
            cancel_fn=cancel_fn,
        )
        self._entries[slot_id] = entry
        logger.info("Registered session %s for slot %s", session_id, slot_id)
        return entry

    def unregister(
        self,
        slot_id: str,
        session_id: str,
        cancel_fn: Callable[[], None] | None = None,
    ) -> bool:
        """Remove the entry for *slot_id* if it still belongs to the caller.

        A turn that was already superseded must not clobber its successor,
        which may share the same session id; pass *cancel_fn* to tell them
        apart.
        """
        entry = self._entries.get(slot_id)
        if entry is None or entry.session_id != session_id:
            return False
        if cancel_fn is not None and entry.cancel_fn != cancel_fn:
            return False
        del self._entries[slot_id]
        logger.info("Unregistered session %s for slot %s", session_id, slot_id)
        return True

    def cancel(self, slot_id: str) -> bool:
        """Cancel and remove the active session of *slot_id*, if any."""
        entry = self._entries.pop(slot_id, None)
        if entry is None:
            return False
        logger.info("Cancelling session %s for slot %s", entry.session_id, slot_id)
        self._invoke_cancel(entry)
        return True

    def cancel_all(self) -> int:
        slot_ids = list(self._entries)
        for slot_id in slot_ids:
            self.cancel(slot_id)
        return len(slot_ids)

    def get(self, slot_id: str) -> ActiveSessionEntry | None:
        return self._entries.get(slot_id)

    def has_active(self, slot_id: str) -> bool:
        return slot_id in self._entries

    def active_sessions(self) -> list[ActiveSessionEntry]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def _invoke_cancel(entry: ActiveSessionEntry) -> None:
        try:
            entry.cancel_fn()
        except Exception:
            logger.exception(
                "cancel_fn for session %s (slot %s) raised",
                entry.session_id, entry.slot_id,
            )
