"""Answers the agent's clarification questions without asking the user.

Resolution order for each question:

1. An answer already given for the same text earlier in this turn.
2. A stored preference for (slot, exact question text).
3. A keyword heuristic over the offered options, or over the question
   text when it is free-form.

Heuristic answers are written to the preference store before the reply
goes out, so a reply that fails still leaves the decision on record.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from .cancel import CancelToken
from .config import DEFAULT_NEGATIVE_KEYWORDS, DEFAULT_POSITIVE_KEYWORDS
from .errors import BackendReportedError, TransportError
from .lifecycle import TERMINAL_STATES, validate_transition
from .models import QuestionState

logger = logging.getLogger(__name__)

ReplyFn = Callable[[str, list[list[str]], str | None], Awaitable[None]]

POSITIVE_WEIGHT = 2
NEGATIVE_WEIGHT = -3

_AFFIRMATIVE_TERMS = ("proceed", "continue", "confirm", "install")
_DISMISSIVE_TERMS = ("skip", "cancel")


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(keyword.lower())}\b")


def _count_matches(text: str, patterns: Iterable[re.Pattern[str]]) -> int:
    return sum(1 for pattern in patterns if pattern.search(text))


def option_label(option: Any) -> str:
    if isinstance(option, dict):
        return str(option.get("label") or option.get("value") or option.get("text") or "")
    return str(option)


def _option_text(option: Any) -> str:
    if isinstance(option, dict):
        return f"{option_label(option)} {option.get('description') or ''}".strip()
    return str(option)


@dataclass
class QuestionDecision:
    question_text: str
    answer_text: str
    source: str  # "turn_cache", "preference", "heuristic"
    analysis: str = ""


@dataclass
class QuestionResolution:
    request_id: str
    state: QuestionState
    answers: list[list[str]] = field(default_factory=list)
    decisions: list[QuestionDecision] = field(default_factory=list)
    message: str = ""
    error: str | None = None

    @property
    def analysis(self) -> str:
        return "\n".join(d.analysis for d in self.decisions if d.analysis)

    @property
    def source(self) -> str:
        sources = {d.source for d in self.decisions}
        if len(sources) == 1:
            return sources.pop()
        return "mixed" if sources else "none"


class KeywordScorer:
    """Scores option texts by whole-word keyword hits."""

    def __init__(
        self,
        positive_keywords: Sequence[str] = DEFAULT_POSITIVE_KEYWORDS,
        negative_keywords: Sequence[str] = DEFAULT_NEGATIVE_KEYWORDS,
    ) -> None:
        self._positive = [_keyword_pattern(k) for k in positive_keywords if k]
        self._negative = [_keyword_pattern(k) for k in negative_keywords if k]
        self._affirmative = [_keyword_pattern(k) for k in _AFFIRMATIVE_TERMS]
        self._dismissive = [_keyword_pattern(k) for k in _DISMISSIVE_TERMS]

    def score(self, text: str) -> int:
        lowered = text.lower()
        return (
            POSITIVE_WEIGHT * _count_matches(lowered, self._positive)
            + NEGATIVE_WEIGHT * _count_matches(lowered, self._negative)
        )

    def choose_option(self, options: Sequence[Any]) -> tuple[str, str]:
        """Return (best label, analysis). Ties go to the earliest option."""
        lines = ["**Available options:**"]
        best_label = option_label(options[0])
        best_score: float = float("-inf")
        for option in options:
            label = option_label(option)
            score = self.score(_option_text(option))
            if score > 0:
                verdict = f"recommended (score: +{score})"
            elif score < 0:
                verdict = f"risky (score: {score})"
            else:
                verdict = "neutral"
            lines.append(f'- "{label}": {verdict}')
            if score > best_score:
                best_score = score
                best_label = label
        lines.append(f'**Decision:** "{best_label}"')
        return best_label, "\n".join(lines)

    def decide_free_text(self, question_text: str) -> tuple[str, str]:
        """Answer a question without options.

        Only text that actually asks something (contains "?") gets a yes/no
        answer; anything else is an open-ended input request.
        """
        lowered = question_text.lower()
        if "?" not in lowered:
            return "auto", "**Analysis:** open-ended input.\n**Decision:** \"auto\""
        if _count_matches(lowered, self._affirmative):
            return "yes", "**Analysis:** asks for confirmation to proceed.\n**Decision:** \"yes\""
        if _count_matches(lowered, self._dismissive):
            return "no", "**Analysis:** asks about skipping or cancelling.\n**Decision:** \"no\""
        return "yes", "**Analysis:** general confirmation question.\n**Decision:** \"yes\""


class QuestionAutoResponder:
    """Per-turn resolver for ``question.asked`` requests.

    One instance lives exactly as long as its turn; the turn-local answer
    cache and per-request states die with it.
    """

    def __init__(
        self,
        slot_id: str,
        reply_fn: ReplyFn,
        preference_store=None,
        scorer: KeywordScorer | None = None,
        session_id: str | None = None,
        cancel_token: CancelToken | None = None,
        cancel_message: str = "Cancelled by user",
    ) -> None:
        self._slot_id = slot_id
        self._reply_fn = reply_fn
        self._store = preference_store
        self._scorer = scorer or KeywordScorer()
        self._session_id = session_id
        self._cancel_token = cancel_token
        self._cancel_message = cancel_message
        self._states: dict[str, QuestionState] = {}
        self._resolutions: dict[str, QuestionResolution] = {}
        self._turn_answers: dict[str, str] = {}

    def state_of(self, request_id: str) -> QuestionState | None:
        return self._states.get(request_id)

    def pending_requests(self) -> list[str]:
        return [rid for rid, state in self._states.items() if state not in TERMINAL_STATES]

    def _transition(self, request_id: str, target: QuestionState) -> None:
        current = self._states[request_id]
        validate_transition(current, target)
        self._states[request_id] = target
        logger.debug("Question %s: %s -> %s", request_id, current.value, target.value)

    # ── Decisions ──

    def decide(self, question: dict[str, Any]) -> QuestionDecision:
        text = str(question.get("question") or "")
        cached = self._turn_answers.get(text)
        if cached is not None:
            return QuestionDecision(text, cached, "turn_cache")

        stored = self._lookup_preference(text)
        if stored is not None:
            self._turn_answers[text] = stored
            return QuestionDecision(
                text, stored, "preference",
                analysis=f"**Question:** {text}\n**Decision:** reusing earlier answer \"{stored}\"",
            )

        options = question.get("options") or []
        if options:
            answer, analysis = self._scorer.choose_option(options)
        else:
            answer, analysis = self._scorer.decide_free_text(text)
        self._turn_answers[text] = answer
        self._persist(question, answer)
        return QuestionDecision(text, answer, "heuristic", analysis=f"**Question:** {text}\n{analysis}")

    def _lookup_preference(self, question_text: str) -> str | None:
        if self._store is None or not question_text:
            return None
        try:
            pref = self._store.get_preference(self._slot_id, question_text)
            if pref is None:
                return None
            self._store.upsert_preference(
                self._slot_id, question_text, pref.answer_text,
                session_id=self._session_id, increment_usage=True,
            )
        except Exception:
            logger.exception("Preference lookup failed for slot %s", self._slot_id)
            return None
        logger.info("Using stored answer for %r: %s", question_text[:80], pref.answer_text)
        return pref.answer_text

    def _persist(self, question: dict[str, Any], answer: str) -> None:
        if self._store is None or not question.get("question"):
            return
        try:
            self._store.upsert_preference(
                self._slot_id,
                str(question["question"]),
                answer,
                question_header=question.get("header"),
                session_id=self._session_id,
            )
        except Exception:
            logger.exception("Could not persist answer for slot %s", self._slot_id)

    @staticmethod
    def _answer_list(question: dict[str, Any], answer: str) -> list[str]:
        multiple = bool(question.get("allowMultiple") or question.get("multiple"))
        if multiple and "," in answer:
            return [a.strip() for a in answer.split(",") if a.strip()]
        return [answer]

    # ── Protocol ──

    async def resolve(self, request_id: str, questions: list[dict[str, Any]]) -> QuestionResolution:
        """Decide and reply to one request. Repeated request ids return the first result.

        TurnCancelledError from the guarded reply propagates with the
        request left in RESOLVING, for ``cancel_pending`` to answer.
        """
        existing = self._resolutions.get(request_id)
        if existing is not None:
            logger.debug("Question %s already handled (%s)", request_id, existing.state.value)
            return existing

        self._states[request_id] = QuestionState.ASKED
        resolution = QuestionResolution(request_id=request_id, state=QuestionState.ASKED)
        self._resolutions[request_id] = resolution
        self._transition(request_id, QuestionState.RESOLVING)

        for question in questions:
            decision = self.decide(question)
            resolution.decisions.append(decision)
            resolution.answers.append(self._answer_list(question, decision.answer_text))
        resolution.message = "\n".join(
            f"{d.question_text}: {d.answer_text}" for d in resolution.decisions if d.question_text
        )

        reply = self._reply_fn(request_id, resolution.answers, resolution.message or None)
        try:
            if self._cancel_token is not None:
                await self._cancel_token.guard(reply)
            else:
                await reply
        except (TransportError, BackendReportedError) as exc:
            self._transition(request_id, QuestionState.FAILED)
            resolution.state = QuestionState.FAILED
            resolution.error = str(exc)
            logger.error("Reply to question %s failed: %s", request_id, exc)
            return resolution

        if self._states[request_id] is QuestionState.RESOLVING:
            self._transition(request_id, QuestionState.REPLIED)
            resolution.state = QuestionState.REPLIED
        return resolution

    async def cancel_pending(self) -> list[str]:
        """Send the cancellation reply for every unanswered request."""
        cancelled: list[str] = []
        for request_id in self.pending_requests():
            self._transition(request_id, QuestionState.CANCELLED)
            resolution = self._resolutions.get(request_id)
            if resolution is not None:
                resolution.state = QuestionState.CANCELLED
            cancelled.append(request_id)
            try:
                await self._reply_fn(request_id, [], self._cancel_message)
            except (TransportError, BackendReportedError) as exc:
                logger.warning("Cancellation reply for question %s failed: %s", request_id, exc)
        return cancelled
