"""In-process registry of live attempt engines and the browser relay capability."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from fastapi import Request

from attempt_engine.clients.attempt_store import AttemptStore
from attempt_engine.core.app_exceptions import AttemptNotFoundError
from attempt_engine.models.attempt import IntegritySignal
from attempt_engine.services.attempt_engine import AttemptEngine, EngineConfig
from attempt_engine.services.clock import Clock
from attempt_engine.services.integrity import SignalListener

logger = logging.getLogger(__name__)


class ClientRelayCapability:
    """
    Integrity capability backed by the browser.

    The engine's requests only flip flags that the browser reads from the view
    model and acts on. The browser reports what actually happened through
    ``dispatch``.
    """

    def __init__(self) -> None:
        self._listeners: list[SignalListener] = []
        self._fullscreen_active = False
        self._media_active = False

    @property
    def is_fullscreen_active(self) -> bool:
        return self._fullscreen_active

    @property
    def is_media_active(self) -> bool:
        return self._media_active

    async def enter_fullscreen(self) -> None:
        # Confirmed by a FULLSCREEN_ENTER report.
        return None

    async def exit_fullscreen(self) -> None:
        self._fullscreen_active = False

    async def start_media(self) -> None:
        self._media_active = True

    async def stop_media(self) -> None:
        self._media_active = False

    def subscribe(self, listener: SignalListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, signal: IntegritySignal, detail: str | None = None) -> None:
        """Apply a browser report and fan it out to subscribers."""
        if signal is IntegritySignal.FULLSCREEN_ENTER:
            self._fullscreen_active = True
        elif signal is IntegritySignal.FULLSCREEN_EXIT:
            self._fullscreen_active = False
        elif signal is IntegritySignal.MEDIA_ENDED:
            self._media_active = False
        for listener in list(self._listeners):
            listener(signal, detail)


@dataclass
class LiveAttempt:
    engine: AttemptEngine
    relay: ClientRelayCapability
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class EngineRegistry:
    """Live engines keyed by attempt id. One engine per attempt per process."""

    def __init__(
        self,
        store: AttemptStore,
        *,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._config = config
        self._live: dict[str, LiveAttempt] = {}

    def __len__(self) -> int:
        return len(self._live)

    def __contains__(self, attempt_id: str) -> bool:
        return attempt_id in self._live

    async def open(self, attempt_id: str) -> LiveAttempt:
        """Get or create the engine for ``attempt_id`` and make sure it is loaded."""
        live = self._live.get(attempt_id)
        if live is None:
            relay = ClientRelayCapability()
            engine = AttemptEngine(
                attempt_id,
                self._store,
                relay,
                clock=self._clock,
                config=self._config,
            )
            live = LiveAttempt(engine=engine, relay=relay)
            self._live[attempt_id] = live
            logger.info("Opened engine for attempt %s", attempt_id)
        async with live.lock:
            await live.engine.load()
        return live

    def get(self, attempt_id: str) -> LiveAttempt:
        live = self._live.get(attempt_id)
        if live is None:
            raise AttemptNotFoundError(
                "No open attempt with this id",
                details={"attempt_id": attempt_id},
            )
        return live

    async def close(self, attempt_id: str) -> None:
        live = self._live.pop(attempt_id, None)
        if live is None:
            raise AttemptNotFoundError(
                "No open attempt with this id",
                details={"attempt_id": attempt_id},
            )
        await live.engine.close()
        logger.info("Closed engine for attempt %s", attempt_id)

    async def close_all(self) -> None:
        for attempt_id in list(self._live):
            live = self._live.pop(attempt_id)
            try:
                await live.engine.close()
            except Exception as e:
                logger.error("Failed to close engine for attempt %s: %s", attempt_id, e)


def get_registry(request: Request) -> EngineRegistry:
    """FastAPI dependency: the registry created at startup."""
    return request.app.state.registry
