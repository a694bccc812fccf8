"""Canonical events emitted by a turn.

Each event is a typed dataclass; ``event_to_dict``/``dict_to_event``
convert to and from the JSON-ready dict a UI consumes. The union is
closed: every event a turn can emit is listed in ``_EVENT_MAP``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class CanonicalEvent:
    """Base event of a turn's output stream."""
    type: str = ""
    slot_id: str | None = None


@dataclass
class Start(CanonicalEvent):
    type: str = "start"
    session_id: str = ""
    turn_id: str = ""


@dataclass
class StartStep(CanonicalEvent):
    type: str = "startStep"


@dataclass
class TextStart(CanonicalEvent):
    type: str = "textStart"
    id: str = ""


@dataclass
class TextDelta(CanonicalEvent):
    type: str = "textDelta"
    id: str = ""
    delta: str = ""


@dataclass
class TextEnd(CanonicalEvent):
    type: str = "textEnd"
    id: str = ""


@dataclass
class ToolInputAvailable(CanonicalEvent):
    type: str = "toolInputAvailable"
    call_id: str = ""
    name: str = ""
    input: dict[str, Any] = field(default_factory=dict)
    raw_name: str | None = None


@dataclass
class ToolOutputAvailable(CanonicalEvent):
    type: str = "toolOutputAvailable"
    call_id: str = ""
    output: Any = None
    is_error: bool = False
    # Set when the turn ended before the backend reported an output.
    implicit: bool = False


@dataclass
class QuestionAsked(CanonicalEvent):
    type: str = "questionAsked"
    request_id: str = ""
    questions: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class QuestionAnswered(CanonicalEvent):
    type: str = "questionAnswered"
    request_id: str = ""
    answers: list[list[str]] = field(default_factory=list)
    source: str = ""  # "preference", "heuristic", "turn_cache", "cancelled"


@dataclass
class SessionMetadata(CanonicalEvent):
    type: str = "sessionMetadata"
    session_id: str = ""
    model: str | None = None
    provider: str | None = None
    duration_ms: int = 0
    tokens: dict[str, int] = field(default_factory=dict)
    cost: float = 0.0


@dataclass
class Advisory(CanonicalEvent):
    type: str = "advisory"
    kind: str = ""  # "timeout", "empty_response"
    message: str = ""


@dataclass
class PreviewUrl(CanonicalEvent):
    type: str = "previewUrl"
    url: str = ""
    call_id: str | None = None


@dataclass
class FinishStep(CanonicalEvent):
    type: str = "finishStep"


@dataclass
class Finish(CanonicalEvent):
    type: str = "finish"
    reason: str = "completed"  # "completed", "cancelled", "error", "stream_closed"


@dataclass
class Error(CanonicalEvent):
    type: str = "error"
    message: str = ""
    error_type: str | None = None


_EVENT_MAP: dict[str, type[CanonicalEvent]] = {
    "start": Start,
    "startStep": StartStep,
    "textStart": TextStart,
    "textDelta": TextDelta,
    "textEnd": TextEnd,
    "toolInputAvailable": ToolInputAvailable,
    "toolOutputAvailable": ToolOutputAvailable,
    "questionAsked": QuestionAsked,
    "questionAnswered": QuestionAnswered,
    "sessionMetadata": SessionMetadata,
    "advisory": Advisory,
    "previewUrl": PreviewUrl,
    "finishStep": FinishStep,
    "finish": Finish,
    "error": Error,
}

TERMINAL_EVENT_TYPES = frozenset({"finish"})


def event_to_dict(event: CanonicalEvent) -> dict[str, Any]:
    """Convert a typed event dataclass to a plain dict for JSON serialization."""
    d: dict[str, Any] = {}
    for f in event.__dataclass_fields__:
        val = getattr(event, f)
        if val is not None:
            d[f] = val
    return d


def dict_to_event(data: dict[str, Any]) -> CanonicalEvent:
    """Convert a plain dict back to its typed event dataclass."""
    cls = _EVENT_MAP.get(data.get("type", ""), CanonicalEvent)
    # Filter dict keys to only those the dataclass accepts
    valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return cls(**filtered)
