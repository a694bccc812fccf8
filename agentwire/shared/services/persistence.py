"""Slot persistence: backend session ids and turn transcripts.

Storage layout:
    {data_dir}/transcripts/{slot_id}.json

One file per conversation slot holding the slot's current backend
session id and the transcripts of its finished turns, oldest first.
"""
from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def _write_json_atomic(path: Path, data: Any) -> None:
    """Replace *path* with *data* so readers never see a partial slot file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp", delete=False,
    ) as tmp:
        json.dump(data, tmp, indent=2, default=str)
        tmp.flush()
        os.fsync(tmp.fileno())
    try:
        os.replace(tmp.name, path)
    except OSError:
        Path(tmp.name).unlink(missing_ok=True)
        raise


class TurnStore(Protocol):
    """Storage collaborator the coordinator writes through."""

    def persist_turn(self, slot_id: str, transcript: dict[str, Any]) -> None: ...

    def persist_session_id(self, slot_id: str, session_id: str) -> None: ...

    def load_session_id(self, slot_id: str) -> str | None: ...


class JsonTurnStore:
    """TurnStore backed by one JSON document per slot."""

    def __init__(self, base_dir: Path, max_turns: int = 200) -> None:
        self._dir = Path(base_dir)
        self._max_turns = max_turns
        self._dir.mkdir(parents=True, exist_ok=True)

    @property
    def base_dir(self) -> Path:
        return self._dir

    def _path_for(self, slot_id: str) -> Path:
        safe = _UNSAFE_CHARS.sub("_", slot_id) or "_"
        return self._dir / f"{safe}.json"

    def _load(self, slot_id: str) -> dict[str, Any]:
        path = self._path_for(slot_id)
        if not path.exists():
            return {"slot_id": slot_id, "session_id": None, "turns": []}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Unreadable slot file %s, starting fresh: %s", path, exc)
            return {"slot_id": slot_id, "session_id": None, "turns": []}
        if not isinstance(data, dict):
            logger.warning("Slot file %s is not an object, starting fresh", path)
            return {"slot_id": slot_id, "session_id": None, "turns": []}
        data.setdefault("turns", [])
        return data

    def _save(self, slot_id: str, data: dict[str, Any]) -> None:
        data["slot_id"] = slot_id
        data["updated_at"] = datetime.now(timezone.utc).isoformat()
        _write_json_atomic(self._path_for(slot_id), data)

    def persist_session_id(self, slot_id: str, session_id: str) -> None:
        data = self._load(slot_id)
        if data.get("session_id") == session_id:
            return
        data["session_id"] = session_id
        self._save(slot_id, data)
        logger.info("Persisted session %s for slot %s", session_id, slot_id)

    def load_session_id(self, slot_id: str) -> str | None:
        session_id = self._load(slot_id).get("session_id")
        return session_id if isinstance(session_id, str) and session_id else None

    def persist_turn(self, slot_id: str, transcript: dict[str, Any]) -> None:
        data = self._load(slot_id)
        turns = data["turns"]
        turns.append(transcript)
        if len(turns) > self._max_turns:
            del turns[: len(turns) - self._max_turns]
        if transcript.get("session_id"):
            data["session_id"] = transcript["session_id"]
        self._save(slot_id, data)
        logger.debug(
            "Persisted turn %s for slot %s (%d stored)",
            transcript.get("turn_id"), slot_id, len(turns),
        )

    def load_turns(self, slot_id: str) -> list[dict[str, Any]]:
        return list(self._load(slot_id)["turns"])
