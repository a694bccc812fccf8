"""StreamingClient: wires the components into one object.

Usage:
    config = ClientConfig.from_env()
    async with StreamingClient(config) as client:
        turn = ConversationTurn(slot_id="chat-1", prompt_text="Hello")
        async for event in client.stream_turn(turn):
            ...
"""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from agentwire.adapters.events import CanonicalEvent
from agentwire.shared.services.persistence import JsonTurnStore
from agentwire.shared.services.preferences import SqlitePreferenceStore

from .backend import BackendClient
from .cancel import CancelToken
from .config import ClientConfig
from .coordinator import SessionCoordinator
from .event_stream import GlobalEventStream
from .models import ConversationTurn
from .session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class StreamingClient:
    """Composition root for the streaming session client.

    Owns one BackendClient, one GlobalEventStream and one SessionRegistry,
    shared by every slot. Stores default to files under ``config.data_dir``.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        turn_store=None,
        preference_store=None,
        http_session=None,
    ) -> None:
        self.config = config or ClientConfig.from_env()
        self.backend = BackendClient(self.config, session=http_session)
        self.event_stream = GlobalEventStream(
            self.backend.get_session,
            connect_timeout_seconds=self.config.request_timeout_seconds,
        )
        self.registry = SessionRegistry()
        self.turn_store = (
            turn_store if turn_store is not None
            else JsonTurnStore(self.config.transcripts_dir)
        )
        self.preference_store = (
            preference_store if preference_store is not None
            else SqlitePreferenceStore(self.config.preferences_db_path)
        )
        self.coordinator = SessionCoordinator(
            config=self.config,
            backend=self.backend,
            event_stream=self.event_stream,
            registry=self.registry,
            turn_store=self.turn_store,
            preference_store=self.preference_store,
        )

    async def start(self, wait_for_health: bool = True) -> None:
        """Wait for the agent server, then open the shared event feed."""
        if wait_for_health:
            await self.backend.wait_until_healthy()
        await self.event_stream.ensure_connected(self.config.server_url)
        logger.info("StreamingClient ready (%s)", self.config.server_url)

    def stream_turn(
        self,
        turn: ConversationTurn,
        cancel_token: CancelToken | None = None,
    ) -> AsyncIterator[CanonicalEvent]:
        """Run *turn*, reusing the slot's stored session when it has none."""
        if not turn.session_id:
            turn.session_id = self.turn_store.load_session_id(turn.slot_id)
        return self.coordinator.run(turn, cancel_token)

    def cancel(self, slot_id: str) -> bool:
        return self.registry.cancel(slot_id)

    async def close(self) -> None:
        cancelled = self.registry.cancel_all()
        if cancelled:
            logger.info("Cancelled %d active turn(s) on close", cancelled)
        await self.event_stream.close()
        await self.backend.close()

    async def __aenter__(self) -> StreamingClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
