"""Drives one conversation turn against the agent server.

A turn resolves its backend session, claims its slot in the registry,
subscribes to the shared event feed, submits the prompt and then turns
the session's frames into canonical events until the server reports
idle, the feed closes, or the turn is cancelled.

Lifecycle:
    session create/reuse -> register -> connect + subscribe -> submit
    -> start, startStep -> frames ... -> completion (exactly once)

Completion always runs the same sequence: close open text streams and
the reasoning block, give unfinished tool calls an implicit output,
emit session metadata, persist the transcript, release the slot, then
finishStep and finish. A second completion is a no-op.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timezone
from typing import Any

from agentwire.adapters.event_bus import TurnEventBus
from agentwire.adapters.events import (
    Advisory,
    CanonicalEvent,
    Error,
    Finish,
    FinishStep,
    PreviewUrl,
    QuestionAnswered,
    QuestionAsked,
    SessionMetadata,
    Start,
    StartStep,
    TextDelta,
    TextEnd,
    TextStart,
    ToolInputAvailable,
    ToolOutputAvailable,
)

from .backend import BackendClient
from .cancel import CancelToken
from .config import ClientConfig
from .dedup import EventDeduplicator
from .errors import AgentWireError, TimeoutAdvisory, TurnCancelledError
from .event_stream import GlobalEventStream, Subscription
from .models import ConversationTurn, QuestionState, StreamFrame, split_model
from .question_responder import KeywordScorer, QuestionAutoResponder
from .session_registry import SessionRegistry
from .text_reconciler import TextReconciler
from .tool_translator import CanonicalTool, ToolCallTranslator
from .watchdog import TimeoutWatchdog

logger = logging.getLogger(__name__)


class _StreamEnded:
    __slots__ = ("error",)

    def __init__(self, error: AgentWireError | None) -> None:
        self.error = error


def _error_message(error: Any, fallback: str) -> str:
    """Backend error payloads nest the text under data.message."""
    if isinstance(error, str):
        return error or fallback
    if isinstance(error, dict):
        data = error.get("data")
        if isinstance(data, dict) and data.get("message"):
            return str(data["message"])
        if error.get("message"):
            return str(error["message"])
        if error.get("name"):
            return str(error["name"])
    return fallback


class TurnRun:
    """State of one turn. Created and driven by SessionCoordinator.run()."""

    def __init__(
        self,
        coordinator: SessionCoordinator,
        turn: ConversationTurn,
        token: CancelToken,
    ) -> None:
        self._coord = coordinator
        self.turn = turn
        self.token = token
        self.bus = TurnEventBus()
        self.session_id: str | None = turn.session_id
        self.started = False
        self.completed = False
        self.finish_reason: str | None = None

        self._config = coordinator.config
        self._inbox: asyncio.Queue[StreamFrame | _StreamEnded] = asyncio.Queue()
        self._subscription: Subscription | None = None
        self._registered = False
        self._dedup = EventDeduplicator()
        self._reconciler = TextReconciler()
        self._translator = ToolCallTranslator()
        self._watchdog: TimeoutWatchdog | None = None
        self._responder: QuestionAutoResponder | None = None
        self._started_at = coordinator.clock()
        self._started_wall = datetime.now(timezone.utc)

        # Echo suppression
        self._user_message_ids: set[str] = set()
        self._skipped_part_ids: set[str] = set()
        self._echo_skipped = False
        self._ended_text_parts: set[str] = set()

        # Reasoning is rendered as one Thinking tool call per turn.
        self._reasoning_call_id = f"reasoning-{turn.turn_id}"
        self._reasoning_parts: dict[str, str] = {}
        self._reasoning_text = ""

        # Tool calls by call id
        self._tool_inputs: dict[str, dict[str, Any]] = {}
        self._tool_names: dict[str, str] = {}
        self._tool_done: set[str] = set()
        self._preview_urls: set[str] = set()

        # Usage
        self._model_id: str | None = None
        self._provider_id: str | None = None
        self._tokens: dict[str, int] = {}
        self._cost = 0.0
        self._has_content = False
        self._received_frames = 0

        # Transcript, in emission order
        self._transcript_parts: list[dict[str, Any]] = []
        self._transcript_index: dict[str, dict[str, Any]] = {}
        self._errors: list[str] = []
        self._questions: list[dict[str, Any]] = []

    # ── Emission ──

    async def _emit(self, event: CanonicalEvent) -> None:
        event.slot_id = self.turn.slot_id
        await self.bus.emit(event)

    async def _emit_error(self, message: str, error_type: str | None = None) -> None:
        logger.warning("Turn %s error: %s", self.turn.turn_id, message)
        self._errors.append(message)
        await self._emit(Error(message=message, error_type=error_type))

    def _record(self, key: str, entry: dict[str, Any]) -> dict[str, Any]:
        existing = self._transcript_index.get(key)
        if existing is not None:
            existing.update(entry)
            return existing
        self._transcript_index[key] = entry
        self._transcript_parts.append(entry)
        return entry

    # ── Driver ──

    async def drive(self) -> None:
        try:
            try:
                await self._setup()
            except TurnCancelledError:
                await self.complete("cancelled")
                return
            except AgentWireError as exc:
                await self.complete("error", error=str(exc), error_type=type(exc).__name__)
                return

            self.started = True
            self._watchdog = TimeoutWatchdog(
                self._config.quiet_period_seconds, clock=self._coord.clock,
            )
            await self._emit(Start(session_id=self.session_id or "", turn_id=self.turn.turn_id))
            await self._emit(StartStep())

            try:
                reason, error = await self._pump()
            except TurnCancelledError:
                await self.complete("cancelled")
                return
            if error is not None:
                await self.complete(reason, error=str(error), error_type=type(error).__name__)
            else:
                await self.complete(reason)
        except asyncio.CancelledError:
            await self.complete("cancelled")
            raise
        except Exception as exc:
            logger.exception("Turn %s crashed", self.turn.turn_id)
            await self.complete("error", error=f"Internal error: {exc}", error_type=type(exc).__name__)

    async def _setup(self) -> None:
        coord = self._coord
        turn = self.turn
        if not self.session_id:
            self.session_id = await self.token.guard(
                coord.backend.create_session(coord.config.session_title, turn.working_directory)
            )
            self._persist_session_id()
        else:
            logger.info("Reusing session %s for slot %s", self.session_id, turn.slot_id)

        coord.registry.register(turn.slot_id, self.session_id, self._on_superseded)
        self._registered = True
        self.token.raise_if_cancelled()

        self._responder = QuestionAutoResponder(
            slot_id=turn.slot_id,
            reply_fn=self._reply_question,
            preference_store=coord.preference_store,
            scorer=coord.scorer,
            session_id=self.session_id,
            cancel_token=self.token,
            cancel_message=self._config.cancel_reply_message,
        )

        await self.token.guard(coord.event_stream.ensure_connected(self._config.server_url))
        # Subscribe before submitting so early frames queue up instead of vanishing.
        self._subscription = coord.event_stream.subscribe(
            self.session_id, self._on_frame, self._on_stream_closed,
        )
        await self.token.guard(coord.backend.submit_prompt(self.session_id, turn))

    def _persist_session_id(self) -> None:
        store = self._coord.turn_store
        if store is None or not self.session_id:
            return
        try:
            store.persist_session_id(self.turn.slot_id, self.session_id)
        except Exception:
            logger.exception("Could not persist session id for slot %s", self.turn.slot_id)

    def _on_superseded(self) -> None:
        self.token.cancel("superseded")

    def _on_frame(self, frame: StreamFrame) -> None:
        if not self.completed:
            self._inbox.put_nowait(frame)

    def _on_stream_closed(self, error: AgentWireError | None) -> None:
        if not self.completed:
            self._inbox.put_nowait(_StreamEnded(error))

    async def _reply_question(
        self, request_id: str, answers: list[list[str]], message: str | None,
    ) -> None:
        await self._coord.backend.reply_question(
            request_id, answers, message, directory=self.turn.working_directory,
        )

    async def _pump(self) -> tuple[str, AgentWireError | None]:
        """Consume frames until the turn ends. Returns (finish reason, error)."""
        assert self._watchdog is not None
        while True:
            timeout = self._watchdog.remaining()
            try:
                item = await self.token.guard(asyncio.wait_for(self._inbox.get(), timeout))
            except asyncio.TimeoutError:
                if self._watchdog.expire():
                    advisory = TimeoutAdvisory(self._watchdog.quiet_period_seconds)
                    logger.warning("Turn %s: %s", self.turn.turn_id, advisory)
                    await self._emit(Advisory(kind="timeout", message=str(advisory)))
                continue

            if isinstance(item, _StreamEnded):
                if item.error is not None:
                    return "error", item.error
                if not self._received_frames:
                    await self._emit_error("Event stream closed before the agent server responded")
                return "stream_closed", None

            self._received_frames += 1
            self._watchdog.mark_activity()
            try:
                if await self._handle_frame(item):
                    return "completed", None
            except AgentWireError:
                raise
            except Exception:
                logger.exception("Failed to process %s frame for turn %s", item.type, self.turn.turn_id)

    # ── Frame handling ──

    async def _handle_frame(self, frame: StreamFrame) -> bool:
        """Process one frame. Returns True when the session went idle."""
        if frame.session_id != self.session_id:
            return False
        if not self._dedup.should_process(frame):
            logger.debug("Dropped duplicate %s", frame.dedup_key)
            return False

        kind = frame.type
        props = frame.properties
        if kind == "message.part.updated":
            await self._on_part(frame.part)
        elif kind == "message.updated":
            await self._on_message(frame.info)
        elif kind == "session.status":
            status = props.get("status")
            status_type = status.get("type") if isinstance(status, dict) else status
            if status_type == "idle":
                return True
            if status_type == "error":
                await self._emit_error(_error_message(status, "Agent server reported an error"))
            elif status_type == "retry":
                logger.info(
                    "Session %s retrying (attempt %s): %s", self.session_id,
                    status.get("attempt") if isinstance(status, dict) else "?",
                    status.get("message") if isinstance(status, dict) else "",
                )
        elif kind == "session.idle":
            return True
        elif kind == "session.error":
            await self._emit_error(
                _error_message(props.get("error"), "Agent server reported an error"),
                error_type=(props.get("error") or {}).get("name") if isinstance(props.get("error"), dict) else None,
            )
        elif kind == "question.asked":
            await self._on_question(props)
        else:
            logger.debug("Ignoring %s frame", kind)
        return False

    def _is_echo(self, part: dict[str, Any]) -> bool:
        part_id = str(part.get("id") or "")
        if part_id and part_id in self._skipped_part_ids:
            return True
        if part.get("messageID") in self._user_message_ids:
            self._skipped_part_ids.add(part_id)
            return True
        if (
            not self._echo_skipped
            and part.get("type") == "text"
            and (part.get("text") or "").strip() == self.turn.prompt_text.strip()
            and self._reconciler.text_of(part_id) is None
        ):
            self._echo_skipped = True
            self._skipped_part_ids.add(part_id)
            logger.debug("Skipping echoed prompt part %s", part_id)
            return True
        return False

    async def _on_part(self, part: dict[str, Any]) -> None:
        part_type = part.get("type")
        if part_type == "text" and part.get("id") in self._ended_text_parts:
            return
        if self._is_echo(part):
            return
        if part_type == "text":
            time_info = part.get("time")
            ended = isinstance(time_info, dict) and bool(time_info.get("end"))
            await self._on_text(str(part.get("id") or "text"), str(part.get("text") or ""), ended)
        elif part_type == "reasoning":
            await self._on_reasoning(str(part.get("id") or "reasoning"), str(part.get("text") or ""))
        elif part_type == "tool":
            await self._on_tool(part)
        elif part_type == "step-finish":
            self._on_step_finish(part)
        else:
            logger.debug("Ignoring %s part", part_type)

    async def _on_text(self, part_id: str, text: str, ended: bool = False) -> None:
        result = self._reconciler.reconcile(part_id, text)
        if result is not None:
            if result.closed_text_id:
                await self._emit(TextEnd(id=result.closed_text_id))
            if result.started:
                await self._emit(TextStart(id=result.text_id))
            await self._emit(TextDelta(id=result.text_id, delta=result.delta))
            self._has_content = True
            entry = self._record(f"text:{result.text_id}", {"type": "text", "id": result.text_id})
            entry["text"] = entry.get("text", "") + result.delta
        if ended:
            # The server finished this part; later snapshots of it are stale.
            self._ended_text_parts.add(part_id)
            text_id = self._reconciler.close(part_id)
            if text_id is not None:
                await self._emit(TextEnd(id=text_id))

    async def _on_reasoning(self, part_id: str, text: str) -> None:
        if not text:
            return
        self._reasoning_parts[part_id] = text
        combined = "\n".join(t for t in self._reasoning_parts.values() if t)
        if combined == self._reasoning_text:
            return
        self._reasoning_text = combined
        await self._emit(ToolInputAvailable(
            call_id=self._reasoning_call_id,
            name=CanonicalTool.THINKING.value,
            input={"text": combined},
            raw_name="reasoning",
        ))
        self._record(f"tool:{self._reasoning_call_id}", {
            "type": "tool", "call_id": self._reasoning_call_id,
            "name": CanonicalTool.THINKING.value, "input": {"text": combined},
        })

    async def _on_tool(self, part: dict[str, Any]) -> None:
        call = self._translator.translate(part)
        call_id = call.call_id
        if call_id in self._tool_done:
            return
        self._has_content = True

        if self._tool_inputs.get(call_id) != call.normalized_input or call_id not in self._tool_names:
            self._tool_inputs[call_id] = call.normalized_input
            self._tool_names[call_id] = call.canonical_name
            await self._emit(ToolInputAvailable(
                call_id=call_id,
                name=call.canonical_name,
                input=call.normalized_input,
                raw_name=call.raw_name,
            ))
        entry = self._record(f"tool:{call_id}", {
            "type": "tool", "call_id": call_id, "name": call.canonical_name,
            "input": call.normalized_input, "status": call.status,
        })

        for signal in call.signals:
            if signal.kind == "preview_url" and signal.url and signal.url not in self._preview_urls:
                self._preview_urls.add(signal.url)
                await self._emit(PreviewUrl(url=signal.url, call_id=call_id))

        output = call.normalized_output
        if output is None and call.canonical_name == CanonicalTool.OPEN_BROWSER_PREVIEW.value:
            output = {"completed": True, "url": call.normalized_input.get("url")}
        if output is not None:
            self._tool_done.add(call_id)
            entry["output"] = output
            entry["is_error"] = call.is_error
            await self._emit(ToolOutputAvailable(call_id=call_id, output=output, is_error=call.is_error))

    def _on_step_finish(self, part: dict[str, Any]) -> None:
        tokens = part.get("tokens")
        if isinstance(tokens, dict):
            self._add_tokens(tokens)
        cost = part.get("cost")
        if isinstance(cost, (int, float)):
            self._cost += float(cost)

    def _add_tokens(self, tokens: dict[str, Any]) -> None:
        for key in ("input", "output", "reasoning"):
            value = tokens.get(key)
            if isinstance(value, int):
                self._tokens[key] = self._tokens.get(key, 0) + value
        cache = tokens.get("cache")
        if isinstance(cache, dict):
            for key in ("read", "write"):
                value = cache.get(key)
                if isinstance(value, int):
                    name = f"cache_{key}"
                    self._tokens[name] = self._tokens.get(name, 0) + value

    async def _on_message(self, info: dict[str, Any]) -> None:
        role = info.get("role")
        if role == "user":
            if info.get("id"):
                self._user_message_ids.add(str(info["id"]))
            return
        if role != "assistant":
            return
        self._model_id = info.get("modelID") or self._model_id
        self._provider_id = info.get("providerID") or self._provider_id
        error = info.get("error")
        if error:
            await self._emit_error(
                _error_message(error, "Unknown error"),
                error_type=error.get("name") if isinstance(error, dict) else None,
            )

    async def _on_question(self, props: dict[str, Any]) -> None:
        assert self._responder is not None
        request_id = str(props.get("id") or props.get("requestID") or "")
        questions = props.get("questions")
        if not request_id or not isinstance(questions, list):
            logger.warning("Malformed question.asked frame: %s", props)
            return
        await self._emit(QuestionAsked(request_id=request_id, questions=questions))
        record = {
            "request_id": request_id,
            "questions": questions,
            "answers": [],
            "state": QuestionState.ASKED.value,
        }
        self._questions.append(record)

        resolution = await self._responder.resolve(request_id, questions)
        record["answers"] = resolution.answers
        record["state"] = resolution.state.value

        thinking_id = f"question-{request_id}"
        await self._emit(ToolInputAvailable(
            call_id=thinking_id,
            name=CanonicalTool.THINKING.value,
            input={"text": resolution.analysis},
            raw_name="question",
        ))
        await self._emit(ToolOutputAvailable(call_id=thinking_id, output={"completed": True}))
        if resolution.state is QuestionState.REPLIED:
            await self._emit(QuestionAnswered(
                request_id=request_id, answers=resolution.answers, source=resolution.source,
            ))
        elif resolution.state is QuestionState.FAILED:
            await self._emit_error(f"Could not answer question {request_id}: {resolution.error}")

    # ── Completion ──

    async def complete(
        self,
        reason: str,
        error: str | None = None,
        error_type: str | None = None,
    ) -> None:
        """Finish the turn. Runs at most once; later calls return immediately."""
        if self.completed:
            return
        self.completed = True
        self.finish_reason = reason
        coord = self._coord

        if self._subscription is not None:
            self._subscription.unsubscribe()
        if reason == "cancelled" and self._responder is not None:
            cancelled = await self._responder.cancel_pending()
            if cancelled:
                logger.info("Cancelled pending question(s) %s", ", ".join(cancelled))
            for record in self._questions:
                state = self._responder.state_of(record["request_id"])
                if state is not None:
                    record["state"] = state.value

        if error is not None:
            await self._emit_error(error, error_type)

        if self.started:
            for text_id in self._reconciler.close_all():
                await self._emit(TextEnd(id=text_id))
            if self._reasoning_text:
                await self._emit(ToolOutputAvailable(
                    call_id=self._reasoning_call_id, output={"completed": True},
                ))
            for call_id in self._tool_names:
                if call_id not in self._tool_done:
                    self._tool_done.add(call_id)
                    await self._emit(ToolOutputAvailable(call_id=call_id, output=None, implicit=True))
            await self._emit(self._metadata())
            if reason == "completed" and not self._has_content:
                model = self._model_id or self.turn.model or self._config.default_model
                await self._emit(Advisory(
                    kind="empty_response",
                    message=(
                        f"No response from {model}: the model received the message but "
                        f"generated nothing. Check the agent server's provider configuration."
                    ),
                ))
            self._persist_transcript(reason)

        if self._registered and self.session_id:
            coord.registry.unregister(self.turn.slot_id, self.session_id, self._on_superseded)
        self._dedup.reset()
        self._reasoning_parts.clear()

        if self.started:
            await self._emit(FinishStep())
        await self._emit(Finish(reason=reason))
        self.bus.close()
        logger.info(
            "Turn %s on slot %s finished: %s (%d frames)",
            self.turn.turn_id, self.turn.slot_id, reason, self._received_frames,
        )

    def _metadata(self) -> SessionMetadata:
        provider, model = split_model(
            self.turn.model, self._config.default_provider, self._config.default_model,
        )
        return SessionMetadata(
            session_id=self.session_id or "",
            model=self._model_id or model,
            provider=self._provider_id or provider,
            duration_ms=int((self._coord.clock() - self._started_at) * 1000),
            tokens=dict(self._tokens),
            cost=self._cost,
        )

    def _persist_transcript(self, reason: str) -> None:
        store = self._coord.turn_store
        if store is None:
            return
        transcript = {
            "turn_id": self.turn.turn_id,
            "slot_id": self.turn.slot_id,
            "session_id": self.session_id,
            "prompt": self.turn.prompt_text,
            "mode": self.turn.mode.value,
            "model": self.turn.model,
            "started_at": self._started_wall.isoformat(),
            "finished_at": datetime.now(timezone.utc).isoformat(),
            "finish_reason": reason,
            "parts": self._transcript_parts,
            "questions": self._questions,
            "errors": self._errors,
        }
        try:
            store.persist_turn(self.turn.slot_id, transcript)
        except Exception:
            logger.exception("Could not persist transcript for slot %s", self.turn.slot_id)


class SessionCoordinator:
    """Runs turns. One instance serves every slot of a client."""

    def __init__(
        self,
        config: ClientConfig,
        backend: BackendClient,
        event_stream: GlobalEventStream,
        registry: SessionRegistry,
        turn_store=None,
        preference_store=None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.backend = backend
        self.event_stream = event_stream
        self.registry = registry
        self.turn_store = turn_store
        self.preference_store = preference_store
        self.clock = clock
        self.scorer = KeywordScorer(config.positive_keywords, config.negative_keywords)

    async def run(
        self,
        turn: ConversationTurn,
        cancel_token: CancelToken | None = None,
    ) -> AsyncIterator[CanonicalEvent]:
        """Yield the canonical events of *turn*, ending with exactly one finish.

        Closing the iterator early cancels the turn.
        """
        token = cancel_token or CancelToken()
        turn_run = TurnRun(self, turn, token)
        logger.info("Starting turn %s on slot %s", turn.turn_id, turn.slot_id)
        driver = asyncio.create_task(turn_run.drive(), name=f"agentwire-turn-{turn.turn_id}")
        try:
            async for event in turn_run.bus.consume():
                yield event
        finally:
            if not turn_run.completed and not driver.done():
                token.cancel("consumer_closed")
                turn_run.bus.discard()
            try:
                await driver
            except asyncio.CancelledError:
                pass
