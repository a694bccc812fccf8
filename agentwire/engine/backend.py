"""Request/response calls against the agent server.

Every call is short-lived and returns (or raises) promptly; the long-lived
event feed lives in event_stream.py. Failures are mapped onto the
exception taxonomy in errors.py so callers never see aiohttp types.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import aiohttp

from .config import ClientConfig
from .errors import (
    BackendReportedError,
    PromptSubmitError,
    QuestionReplyError,
    SessionCreateError,
    TransportError,
)
from .models import ConversationTurn, split_model

logger = logging.getLogger(__name__)

DIRECTORY_HEADER = "x-opencode-directory"


class BackendClient:
    """Thin aiohttp wrapper around the agent server's HTTP API.

    The underlying ``aiohttp.ClientSession`` is created lazily and shared
    with the event stream via ``get_session()``.
    """

    def __init__(
        self,
        config: ClientConfig,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._session = session
        self._owns_session = session is None

    @property
    def base_url(self) -> str:
        return self._config.server_url.rstrip("/")

    @property
    def auth(self) -> aiohttp.BasicAuth | None:
        if self._config.password:
            return aiohttp.BasicAuth(self._config.username or "opencode", self._config.password)
        return None

    def get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(auth=self.auth)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _headers(self, directory: str | None) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if directory:
            headers[DIRECTORY_HEADER] = directory
        return headers

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self._config.request_timeout_seconds)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        directory: str | None = None,
        error_cls: type[BackendReportedError] = BackendReportedError,
    ) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug("%s %s", method, url)
        try:
            async with self.get_session().request(
                method,
                url,
                json=json_body,
                headers=self._headers(directory),
                timeout=self._timeout(),
            ) as resp:
                body_text = await resp.text()
                if resp.status >= 400:
                    logger.error("%s %s failed: %d %s", method, path, resp.status, body_text[:200])
                    raise error_cls(resp.status, _error_detail(body_text, resp.reason))
                if not body_text.strip():
                    return None
                try:
                    return await resp.json(content_type=None)
                except ValueError:
                    return body_text
        except BackendReportedError:
            raise
        except asyncio.TimeoutError as exc:
            raise TransportError(url, f"timed out after {self._config.request_timeout_seconds:g}s") from exc
        except aiohttp.ClientError as exc:
            raise TransportError(url, str(exc) or type(exc).__name__) from exc

    # ── Sessions ──

    async def create_session(self, title: str | None = None, directory: str | None = None) -> str:
        """POST /session. Returns the new session id."""
        data = await self._request(
            "POST",
            "/session",
            json_body={"title": title or self._config.session_title},
            directory=directory,
            error_cls=SessionCreateError,
        )
        session_id = data.get("id") if isinstance(data, dict) else None
        if not session_id:
            raise SessionCreateError(None, f"Session response carried no id: {data!r}")
        logger.info("Created backend session %s", session_id)
        return str(session_id)

    def build_prompt_body(self, turn: ConversationTurn) -> dict[str, Any]:
        parts: list[dict[str, Any]] = []
        if turn.prompt_text:
            parts.append({"type": "text", "text": turn.prompt_text})
        parts.extend(image.to_part() for image in turn.images)
        provider_id, model_id = split_model(
            turn.model, self._config.default_provider, self._config.default_model,
        )
        body: dict[str, Any] = {
            "parts": parts,
            "mode": turn.mode.backend_mode,
            "model": {"providerID": provider_id, "modelID": model_id},
        }
        system = "\n\n".join(
            s for s in (self._config.system_preamble, turn.system_prompt_override) if s
        )
        if system:
            body["system"] = system
        return body

    async def submit_prompt(self, session_id: str, turn: ConversationTurn) -> None:
        """POST /session/{id}/prompt_async. Only an acknowledgement comes back."""
        body = self.build_prompt_body(turn)
        await self._request(
            "POST",
            f"/session/{session_id}/prompt_async",
            json_body=body,
            directory=turn.working_directory,
            error_cls=PromptSubmitError,
        )
        logger.info(
            "Submitted prompt to session %s (mode=%s, model=%s/%s, %d parts)",
            session_id, body["mode"], body["model"]["providerID"],
            body["model"]["modelID"], len(body["parts"]),
        )

    # ── Questions ──

    async def reply_question(
        self,
        request_id: str,
        answers: list[list[str]],
        message: str | None = None,
        directory: str | None = None,
    ) -> None:
        body: dict[str, Any] = {"answers": answers}
        if message:
            body["message"] = message
        await self._request(
            "POST",
            f"/question/{request_id}/reply",
            json_body=body,
            directory=directory,
            error_cls=QuestionReplyError,
        )
        logger.info("Replied to question %s with %s", request_id, answers)

    # ── Health ──

    async def health(self) -> bool:
        try:
            await self._request("GET", "/global/health")
        except (TransportError, BackendReportedError) as exc:
            logger.debug("Health check failed: %s", exc)
            return False
        return True

    async def wait_until_healthy(
        self,
        retries: int | None = None,
        delay_seconds: float | None = None,
    ) -> None:
        """Probe /global/health until it answers. Raises TransportError if it never does."""
        attempts = retries if retries is not None else self._config.health_check_retries
        delay = delay_seconds if delay_seconds is not None else self._config.health_check_delay_seconds
        for attempt in range(1, max(1, attempts) + 1):
            if await self.health():
                logger.info("Agent server healthy at %s (attempt %d)", self.base_url, attempt)
                return
            if attempt < attempts:
                await asyncio.sleep(delay)
        raise TransportError(
            f"{self.base_url}/global/health",
            f"server not ready after {attempts} attempts",
        )


def _error_detail(body_text: str, fallback: str | None) -> str:
    """Pull a human-readable message out of an error body."""
    try:
        data = json.loads(body_text)
    except ValueError:
        return body_text.strip()[:500] or (fallback or "unknown error")
    if isinstance(data, dict):
        for key in ("message", "error", "detail"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"]
        nested = data.get("data")
        if isinstance(nested, dict) and isinstance(nested.get("message"), str):
            return nested["message"]
    return body_text.strip()[:500] or (fallback or "unknown error")
