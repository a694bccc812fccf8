"""agentwire: streaming session client for HTTP/SSE coding-agent servers."""
from .models import (
    ActiveSessionEntry,
    ConversationTurn,
    ImageAttachment,
    QuestionPreference,
    QuestionState,
    Session,
    StreamFrame,
    TurnMode,
)
from .config import ClientConfig
from .cancel import CancelToken
from .dedup import EventDeduplicator
from .session_registry import SessionRegistry
from .text_reconciler import TextReconciler
from .tool_translator import ToolCallTranslator, normalize_tool_name
from .watchdog import TimeoutWatchdog
from .errors import (
    AgentWireError,
    BackendReportedError,
    PromptSubmitError,
    ProtocolError,
    QuestionReplyError,
    SessionCreateError,
    TimeoutAdvisory,
    TransportError,
    TurnCancelledError,
)

__all__ = [
    # Composition root (lazy import; pulls in aiohttp)
    "StreamingClient",
    "SessionCoordinator",
    "GlobalEventStream",
    "BackendClient",
    "QuestionAutoResponder",
    "load_yaml_config",
    # Models
    "ActiveSessionEntry",
    "ConversationTurn",
    "ImageAttachment",
    "QuestionPreference",
    "QuestionState",
    "Session",
    "StreamFrame",
    "TurnMode",
    # Components
    "CancelToken",
    "ClientConfig",
    "EventDeduplicator",
    "SessionRegistry",
    "TextReconciler",
    "TimeoutWatchdog",
    "ToolCallTranslator",
    "normalize_tool_name",
    # Errors
    "AgentWireError",
    "BackendReportedError",
    "PromptSubmitError",
    "ProtocolError",
    "QuestionReplyError",
    "SessionCreateError",
    "TimeoutAdvisory",
    "TransportError",
    "TurnCancelledError",
]


def __getattr__(name: str):
    if name == "StreamingClient":
        from .engine import StreamingClient
        return StreamingClient
    if name == "SessionCoordinator":
        from .coordinator import SessionCoordinator
        return SessionCoordinator
    if name == "GlobalEventStream":
        from .event_stream import GlobalEventStream
        return GlobalEventStream
    if name == "BackendClient":
        from .backend import BackendClient
        return BackendClient
    if name == "QuestionAutoResponder":
        from .question_responder import QuestionAutoResponder
        return QuestionAutoResponder
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
