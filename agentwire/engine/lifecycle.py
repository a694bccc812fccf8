"""Question sub-protocol state machine.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    ASKED ──> RESOLVING ──┬──> REPLIED
      │                   │
      │                   ├──> FAILED     (reply call rejected)
      │                   │
      └───────────────────┴──> CANCELLED  (turn aborted)
"""
from __future__ import annotations

from .models import QuestionState

VALID_TRANSITIONS: dict[QuestionState, set[QuestionState]] = {
    QuestionState.ASKED: {
        QuestionState.RESOLVING,
        QuestionState.CANCELLED,
    },
    QuestionState.RESOLVING: {
        QuestionState.REPLIED,
        QuestionState.FAILED,
        QuestionState.CANCELLED,
    },
    QuestionState.REPLIED: set(),
    QuestionState.CANCELLED: set(),
    QuestionState.FAILED: set(),
}

TERMINAL_STATES = frozenset(
    state for state, allowed in VALID_TRANSITIONS.items() if not allowed
)


def validate_transition(current: QuestionState, target: QuestionState) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(s.value for s in allowed) or "none (terminal)"
        raise ValueError(
            f"Invalid question transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )
