"""Integrity monitoring: platform signals in, violation counts out.

The monitor never decides to submit. It reports each counted violation to its
owner, which holds the threshold policy.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from attempt_engine.core.app_exceptions import LockdownError
from attempt_engine.models.attempt import IntegritySignal
from attempt_engine.observability.logging import audit_log
from attempt_engine.services.clock import Clock

logger = logging.getLogger(__name__)

SignalListener = Callable[[IntegritySignal, str | None], None]

VIOLATION_REASONS: dict[IntegritySignal, str] = {
    IntegritySignal.VISIBILITY_HIDDEN: "Tab switched or window hidden",
    IntegritySignal.WINDOW_BLUR: "Window blurred",
    IntegritySignal.FULLSCREEN_EXIT: "Exited fullscreen",
    IntegritySignal.CONTEXT_MENU: "Context menu opened",
    IntegritySignal.BLOCKED_KEY: "Blocked key",
}


class IntegrityCapability(Protocol):
    """Platform capability provider (fullscreen, media capture, focus signals)."""

    @property
    def is_fullscreen_active(self) -> bool: ...

    @property
    def is_media_active(self) -> bool: ...

    async def enter_fullscreen(self) -> None: ...

    async def exit_fullscreen(self) -> None: ...

    async def start_media(self) -> None: ...

    async def stop_media(self) -> None: ...

    def subscribe(self, listener: SignalListener) -> Callable[[], None]:
        """Register a signal listener; returns the unsubscribe callable."""
        ...


class IntegrityMonitor:
    """Counts violations while armed and brokers capability requests."""

    def __init__(
        self,
        attempt_id: str,
        capability: IntegrityCapability,
        clock: Clock,
        *,
        max_violations: int = 3,
        fullscreen_required: bool = True,
        media_required: bool = True,
        media_restart_throttle_s: float = 5.0,
        on_violation: Callable[[str, int], None] | None = None,
        on_lockdown_failed: Callable[[LockdownError], None] | None = None,
    ) -> None:
        if max_violations < 1:
            raise ValueError("max_violations must be >= 1")
        self._attempt_id = attempt_id
        self._capability = capability
        self._clock = clock
        self._max_violations = max_violations
        self._fullscreen_required = fullscreen_required
        self._media_required = media_required
        self._media_restart_throttle_s = media_restart_throttle_s
        self._on_violation = on_violation
        self._on_lockdown_failed = on_lockdown_failed

        self._violations = 0
        self._unsubscribe: Callable[[], None] | None = None
        self._fullscreen_requested = False
        self._media_requested = False
        self._last_media_restart = None
        self._restart_task: asyncio.Task | None = None

    @property
    def violations(self) -> int:
        return self._violations

    @property
    def max_violations(self) -> int:
        return self._max_violations

    @property
    def armed(self) -> bool:
        return self._unsubscribe is not None

    @property
    def fullscreen_requested(self) -> bool:
        return self._fullscreen_requested

    @property
    def media_requested(self) -> bool:
        return self._media_requested

    def arm(self) -> None:
        if self.armed:
            return
        self._unsubscribe = self._capability.subscribe(self.handle_signal)

    def disarm(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
        if self._restart_task is not None and not self._restart_task.done():
            self._restart_task.cancel()
        self._restart_task = None

    def report_violation(self, reason: str) -> int | None:
        """Count a violation. Ignored unless armed and below the cap."""
        if not self.armed or self._violations >= self._max_violations:
            return None
        self._violations += 1
        count = self._violations
        logger.warning("Integrity violation %d/%d: %s", count, self._max_violations, reason)
        audit_log(
            "integrity_violation",
            attempt_id=self._attempt_id,
            action="violation",
            reason=reason,
            count=count,
            max_violations=self._max_violations,
        )
        if self._on_violation is not None:
            self._on_violation(reason, count)
        return count

    def handle_signal(self, signal: IntegritySignal, detail: str | None = None) -> None:
        if not self.armed:
            return
        if signal is IntegritySignal.MEDIA_ENDED:
            self._maybe_restart_media()
            return
        if signal is IntegritySignal.FULLSCREEN_ENTER:
            return
        if signal is IntegritySignal.FULLSCREEN_EXIT and not self._fullscreen_required:
            return
        reason = VIOLATION_REASONS[signal]
        if detail:
            reason = f"{reason}: {detail}"
        self.report_violation(reason)

    # ---------------------------------------------------------- capabilities

    async def enter_fullscreen(self) -> bool:
        if not self._fullscreen_required:
            return True
        self._fullscreen_requested = True
        if self._capability.is_fullscreen_active:
            return True
        try:
            await self._capability.enter_fullscreen()
        except Exception as e:
            logger.warning("Failed to enter fullscreen: %s", e)
            self._lockdown_failed("Failed to enter fullscreen")
            return False
        return True

    async def exit_fullscreen(self) -> None:
        requested, self._fullscreen_requested = self._fullscreen_requested, False
        if not (requested or self._capability.is_fullscreen_active):
            return
        try:
            await self._capability.exit_fullscreen()
        except Exception as e:
            logger.info("Exit fullscreen failed (ignored): %s", e)

    async def start_media(self) -> bool:
        if not self._media_required:
            return True
        self._media_requested = True
        if self._capability.is_media_active:
            return True
        try:
            await self._capability.start_media()
        except Exception as e:
            reason = str(e) or "Camera/Mic permissions denied"
            logger.warning("Failed to start media: %s", reason)
            self._lockdown_failed(reason)
            return False
        return True

    async def stop_media(self) -> None:
        requested, self._media_requested = self._media_requested, False
        if not (requested or self._capability.is_media_active):
            return
        try:
            await self._capability.stop_media()
        except Exception as e:
            logger.info("Stop media failed (ignored): %s", e)

    async def release(self) -> None:
        """Release media and fullscreen. Safe to call on every exit path, repeatedly."""
        await self.stop_media()
        await self.exit_fullscreen()

    # -------------------------------------------------------------- internal

    def _lockdown_failed(self, reason: str) -> None:
        if self._on_lockdown_failed is not None:
            self._on_lockdown_failed(LockdownError(reason))

    def _maybe_restart_media(self) -> None:
        if not (self._media_required and self._media_requested):
            return
        if self._restart_task is not None and not self._restart_task.done():
            return
        now = self._clock.now()
        if (
            self._last_media_restart is not None
            and (now - self._last_media_restart).total_seconds() < self._media_restart_throttle_s
        ):
            logger.debug("Media restart throttled")
            return
        self._last_media_restart = now
        self._restart_task = asyncio.get_running_loop().create_task(
            self._restart_media(), name="media-restart"
        )

    async def _restart_media(self) -> None:
        try:
            await self._capability.start_media()
        except Exception as e:
            logger.warning("Media restart failed: %s", e)
            self._lockdown_failed(str(e) or "Media track ended")
