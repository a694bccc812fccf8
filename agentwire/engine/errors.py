"""Exception hierarchy for the streaming session client.

Every failure mode a turn can hit has its own type so the coordinator
can decide, at its boundary, which canonical events to emit. Nothing
here escapes to the UI consumer as a raised exception.
"""
from __future__ import annotations


class AgentWireError(Exception):
    """Base exception for all client errors."""


class TransportError(AgentWireError):
    """Connecting to or reading from the agent server failed."""
    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Transport failure for {url}: {reason}")


class ProtocolError(AgentWireError):
    """A frame on the event stream could not be decoded."""
    def __init__(self, line: str, reason: str):
        self.line = line
        self.reason = reason
        preview = line if len(line) <= 120 else line[:117] + "..."
        super().__init__(f"Malformed frame ({reason}): {preview}")


class BackendReportedError(AgentWireError):
    """The agent server answered with an explicit failure."""
    def __init__(self, status: int | None, detail: str):
        self.status = status
        self.detail = detail
        if status is None:
            super().__init__(detail)
        else:
            super().__init__(f"Agent server returned {status}: {detail}")


class SessionCreateError(BackendReportedError):
    """POST /session did not produce a session id."""


class PromptSubmitError(BackendReportedError):
    """POST /session/{id}/prompt_async was rejected."""


class QuestionReplyError(BackendReportedError):
    """POST /question/{id}/reply was rejected."""


class TurnCancelledError(AgentWireError):
    """The turn was cancelled cooperatively.

    Not a failure: the coordinator never surfaces it as an error event.
    """
    def __init__(self, reason: str = "cancelled"):
        self.reason = reason
        super().__init__(f"Turn cancelled: {reason}")


class TimeoutAdvisory(AgentWireError):
    """No event arrived within the quiet period.

    Informational only. Raised nowhere; instances are rendered into an
    advisory event so the message text lives in one place.
    """
    def __init__(self, quiet_period_seconds: float):
        self.quiet_period_seconds = quiet_period_seconds
        super().__init__(
            f"The agent server has not sent any events for "
            f"{quiet_period_seconds:g} seconds. It may still be processing "
            f"a complex request; you can keep waiting or cancel the turn."
        )
