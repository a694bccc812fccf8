"""Core data models for the streaming session client.

All dataclasses, enums, and type aliases. Single source of truth
to avoid circular imports.
"""
from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class TurnMode(str, Enum):
    """Modes the UI offers. The agent server only knows plan and build."""
    PLAN = "plan"
    BUILD = "build"
    SCALING = "scaling"
    DESIGNER = "designer"
    DEBUG = "debug"
    AGENT = "agent"

    @property
    def backend_mode(self) -> str:
        """Mode string accepted by prompt_async."""
        if self is TurnMode.PLAN:
            return "plan"
        return "build"


class QuestionState(str, Enum):
    """Question sub-protocol states. See lifecycle.py for transition rules."""
    ASKED = "asked"
    RESOLVING = "resolving"
    REPLIED = "replied"
    CANCELLED = "cancelled"
    FAILED = "failed"


def _make_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    """A backend execution context bound to one slot."""
    id: str
    slot_id: str
    created_at: datetime = field(default_factory=_utcnow)
    model: str | None = None
    working_directory: str | None = None


@dataclass
class ImageAttachment:
    base64_data: str
    media_type: str
    filename: str | None = None

    def to_part(self) -> dict[str, Any]:
        return {"type": "image", "mime": self.media_type, "data": self.base64_data}


@dataclass
class ConversationTurn:
    """Input to one coordinator run.

    session_id carries a previously created session so the slot keeps
    its server-side memory across turns.
    """
    slot_id: str
    prompt_text: str
    images: list[ImageAttachment] = field(default_factory=list)
    mode: TurnMode = TurnMode.BUILD
    system_prompt_override: str | None = None
    session_id: str | None = None
    model: str | None = None
    working_directory: str | None = None
    turn_id: str = field(default_factory=_make_id)


@dataclass
class ActiveSessionEntry:
    """SessionRegistry bookkeeping. At most one per slot."""
    slot_id: str
    session_id: str
    cancel_fn: Callable[[], None] = field(repr=False)
    started_at: datetime = field(default_factory=_utcnow)


@dataclass
class QuestionPreference:
    """A remembered answer to a clarification question."""
    slot_id: str
    question_text: str
    answer_text: str
    used_count: int = 0
    last_used_at: datetime | None = None
    question_header: str | None = None
    session_id: str | None = None
    request_id: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=_make_id)


def split_model(model: str | None, default_provider: str, default_model: str) -> tuple[str, str]:
    """Split ``provider/model`` into (provider_id, model_id)."""
    model_id = (model or default_model).strip()
    if "/" in model_id:
        provider_id, model_id = model_id.split("/", 1)
        return provider_id, model_id
    return default_provider, model_id


# Part types whose updates are cumulative snapshots, not repeats.
TEXT_PART_TYPES = frozenset({"text", "reasoning"})


@dataclass
class StreamFrame:
    """One decoded frame from the global event feed.

    Accepts both the flat ``{sessionID, type, properties}`` shape and the
    enveloped ``{directory, payload: {type, properties}}`` shape.
    """
    type: str
    properties: dict[str, Any] = field(default_factory=dict)
    session_id: str | None = None
    directory: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> StreamFrame:
        payload = data.get("payload")
        if isinstance(payload, dict):
            event_type = payload.get("type")
            props = payload.get("properties")
        else:
            event_type = data.get("type")
            props = data.get("properties")
        if not isinstance(props, dict):
            props = {}
        return cls(
            type=str(event_type or ""),
            properties=props,
            session_id=_extract_session_id(data, props),
            directory=data.get("directory"),
            raw=data,
        )

    @property
    def part(self) -> dict[str, Any]:
        part = self.properties.get("part")
        return part if isinstance(part, dict) else {}

    @property
    def info(self) -> dict[str, Any]:
        info = self.properties.get("info")
        return info if isinstance(info, dict) else {}

    @property
    def is_text_part(self) -> bool:
        return (
            self.type == "message.part.updated"
            and self.part.get("type") in TEXT_PART_TYPES
        )

    @property
    def dedup_key(self) -> str:
        """``{type}:{identity}`` where identity is the part, call, message,
        or request id. The type is qualified with the phase of frames that
        legitimately evolve under one identity.
        """
        kind = self.type
        part = self.part
        info = self.info
        identity = ""
        if part:
            identity = str(part.get("id") or part.get("callID") or "")
            kind = f"{kind}.{part.get('type', '')}"
            state = part.get("state")
            if isinstance(state, dict) and state.get("status"):
                kind = f"{kind}.{state['status']}"
        elif info:
            identity = str(info.get("id") or "")
            if info.get("error"):
                kind = f"{kind}.error"
            elif isinstance(info.get("time"), dict) and info["time"].get("completed"):
                kind = f"{kind}.completed"
        elif self.type.startswith("question."):
            identity = str(self.properties.get("id") or self.properties.get("requestID") or "")
        elif self.type == "session.status":
            status = self.properties.get("status")
            if isinstance(status, dict):
                kind = f"{kind}.{status.get('type', '')}"
                identity = str(status.get("attempt") or "")
        return f"{kind}:{identity}"


def _extract_session_id(data: dict[str, Any], props: dict[str, Any]) -> str | None:
    candidates = [props.get("sessionID")]
    part = props.get("part")
    if isinstance(part, dict):
        candidates.append(part.get("sessionID"))
    info = props.get("info")
    if isinstance(info, dict):
        candidates.append(info.get("sessionID"))
    candidates.append(data.get("sessionID"))
    for candidate in candidates:
        if isinstance(candidate, str) and candidate:
            return candidate
    return None
