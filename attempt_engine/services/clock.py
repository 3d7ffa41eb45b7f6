"""Countdown derived from a fixed deadline, plus the ticker that drives re-evaluation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Protocol

logger = logging.getLogger(__name__)


class Clock(Protocol):
    """Wall-clock abstraction.

    Engine logic depends on this interface rather than calling real time directly.
    """

    def now(self) -> datetime:
        """Return the current instant (timezone-aware, UTC)."""


class SystemClock:
    """Production clock backed by datetime.now(UTC)."""

    def now(self) -> datetime:
        return datetime.now(UTC)


def format_remaining(remaining_ms: int) -> tuple[int, int]:
    """Split milliseconds into whole (minutes, seconds) for display."""
    remaining_ms = max(0, remaining_ms)
    return remaining_ms // 60_000, (remaining_ms % 60_000) // 1000


class Countdown:
    """Remaining time = deadline - now, recomputed on every read.

    Nothing is decremented, so a suspended host, a slow loop or a reload cannot
    introduce drift. Inert until a start instant is assigned.
    """

    def __init__(self, clock: Clock, duration_minutes: int) -> None:
        if duration_minutes <= 0:
            raise ValueError("duration_minutes must be > 0")
        self._clock = clock
        self._duration = timedelta(minutes=duration_minutes)
        self._started_at: datetime | None = None

    @property
    def started_at(self) -> datetime | None:
        return self._started_at

    @property
    def deadline(self) -> datetime | None:
        if self._started_at is None:
            return None
        return self._started_at + self._duration

    def start(self, started_at: datetime) -> None:
        if self._started_at is not None:
            raise RuntimeError("Countdown already started")
        if started_at.tzinfo is None:
            started_at = started_at.replace(tzinfo=UTC)
        self._started_at = started_at

    def remaining_ms(self) -> int | None:
        deadline = self.deadline
        if deadline is None:
            return None
        delta = deadline - self._clock.now()
        return max(0, int(delta.total_seconds() * 1000))

    def is_expired(self) -> bool:
        return self.remaining_ms() == 0


class ExpiryLatch:
    """Fires once on the first zero reading; later zero readings are ignored."""

    def __init__(self) -> None:
        self._fired = False

    @property
    def fired(self) -> bool:
        return self._fired

    def check(self, remaining_ms: int | None) -> bool:
        if self._fired or remaining_ms is None or remaining_ms > 0:
            return False
        self._fired = True
        return True


class Ticker:
    """Owned interval task. One acquire/release pair; both are idempotent."""

    def __init__(self, interval_s: float, on_tick: Callable[[], Awaitable[None]]) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        self._interval_s = interval_s
        self._on_tick = on_tick
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def acquire(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="attempt-ticker")

    def release(self) -> None:
        task, self._task = self._task, None
        # Never cancel ourselves mid-tick; the loop exits on its own once released.
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _run(self) -> None:
        me = asyncio.current_task()
        while self._task is me:
            await asyncio.sleep(self._interval_s)
            if self._task is not me:
                break
            try:
                await self._on_tick()
            except Exception:
                logger.exception("Tick handler failed")
