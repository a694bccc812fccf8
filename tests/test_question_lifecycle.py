from __future__ import annotations

import pytest

from agentwire.engine.lifecycle import TERMINAL_STATES, validate_transition
from agentwire.engine.models import QuestionState


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (QuestionState.ASKED, QuestionState.RESOLVING),
        (QuestionState.ASKED, QuestionState.CANCELLED),
        (QuestionState.RESOLVING, QuestionState.REPLIED),
        (QuestionState.RESOLVING, QuestionState.CANCELLED),
        (QuestionState.RESOLVING, QuestionState.FAILED),
    ],
)
def test_valid_transitions(current, target) -> None:
    validate_transition(current, target)


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (QuestionState.ASKED, QuestionState.REPLIED),
        (QuestionState.REPLIED, QuestionState.CANCELLED),
        (QuestionState.CANCELLED, QuestionState.RESOLVING),
        (QuestionState.FAILED, QuestionState.REPLIED),
    ],
)
def test_invalid_transitions_raise(current, target) -> None:
    with pytest.raises(ValueError, match="Invalid question transition"):
        validate_transition(current, target)


def test_terminal_states() -> None:
    assert TERMINAL_STATES == {
        QuestionState.REPLIED, QuestionState.CANCELLED, QuestionState.FAILED,
    }
