"""Remembered answers to agent clarification questions.

Keyed by conversation slot and exact question text. A stored answer
is reused verbatim the next time the same question is asked in the
same slot, and its usage count is bumped.
"""
from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from agentwire.engine.models import QuestionPreference

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso_utc(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat()


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class PreferenceStore(Protocol):
    """Preference collaborator used by the question auto-responder."""

    def get_preference(self, slot_id: str, question_text: str) -> QuestionPreference | None: ...

    def upsert_preference(
        self,
        slot_id: str,
        question_text: str,
        answer_text: str,
        *,
        question_header: str | None = None,
        session_id: str | None = None,
        request_id: str | None = None,
        increment_usage: bool = False,
    ) -> QuestionPreference: ...


class SqlitePreferenceStore:
    """PreferenceStore backed by a single SQLite table."""

    def __init__(self, db_path: Path):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS question_preferences (
                    id TEXT PRIMARY KEY,
                    slot_id TEXT NOT NULL,
                    session_id TEXT,
                    request_id TEXT,
                    question_text TEXT NOT NULL,
                    question_header TEXT,
                    answer_text TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    used_count INTEGER NOT NULL DEFAULT 0,
                    last_used_at TEXT
                )
                """
            )
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_question_pref_slot_text "
                "ON question_preferences(slot_id, question_text)"
            )
            conn.commit()

    @staticmethod
    def _row_to_preference(row: sqlite3.Row) -> QuestionPreference:
        return QuestionPreference(
            id=row["id"],
            slot_id=row["slot_id"],
            question_text=row["question_text"],
            answer_text=row["answer_text"],
            used_count=int(row["used_count"]),
            last_used_at=_parse_ts(row["last_used_at"]),
            question_header=row["question_header"],
            session_id=row["session_id"],
            request_id=row["request_id"],
            created_at=_parse_ts(row["created_at"]) or _utc_now(),
        )

    def get_preference(self, slot_id: str, question_text: str) -> QuestionPreference | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM question_preferences
                WHERE slot_id = ? AND question_text = ?
                """,
                (slot_id, question_text),
            ).fetchone()
        return self._row_to_preference(row) if row is not None else None

    def upsert_preference(
        self,
        slot_id: str,
        question_text: str,
        answer_text: str,
        *,
        question_header: str | None = None,
        session_id: str | None = None,
        request_id: str | None = None,
        increment_usage: bool = False,
    ) -> QuestionPreference:
        """Insert or update the answer for (slot, question).

        With ``increment_usage`` the usage count is bumped and
        ``last_used_at`` refreshed.
        """
        now = _iso_utc(_utc_now())
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO question_preferences(
                    id, slot_id, session_id, request_id, question_text,
                    question_header, answer_text, created_at, used_count, last_used_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(slot_id, question_text) DO UPDATE SET
                    answer_text = excluded.answer_text,
                    session_id = COALESCE(excluded.session_id, session_id),
                    request_id = COALESCE(excluded.request_id, request_id),
                    question_header = COALESCE(excluded.question_header, question_header),
                    used_count = used_count + ?,
                    last_used_at = COALESCE(excluded.last_used_at, last_used_at)
                """,
                (
                    str(uuid.uuid4()), slot_id, session_id, request_id, question_text,
                    question_header, answer_text, now,
                    1 if increment_usage else 0,
                    now if increment_usage else None,
                    1 if increment_usage else 0,
                ),
            )
            conn.commit()
            row = conn.execute(
                "SELECT * FROM question_preferences WHERE slot_id = ? AND question_text = ?",
                (slot_id, question_text),
            ).fetchone()
        logger.debug(
            "Stored preference for slot %s: %r -> %r", slot_id, question_text[:60], answer_text,
        )
        return self._row_to_preference(row)

    def delete_preferences(self, slot_id: str) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM question_preferences WHERE slot_id = ?", (slot_id,)
            )
            conn.commit()
            return cur.rowcount
