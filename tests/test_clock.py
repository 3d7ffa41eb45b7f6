"""Tests for the countdown, expiry latch and ticker."""

import asyncio
from datetime import datetime

import pytest

from attempt_engine.services.clock import Countdown, ExpiryLatch, Ticker, format_remaining
from tests.helpers.fakes import T0, FakeClock


class TestCountdown:
    """Remaining time is derived from the deadline on every read."""

    def test_inert_until_started(self):
        countdown = Countdown(FakeClock(), 30)
        assert countdown.remaining_ms() is None
        assert countdown.deadline is None
        assert not countdown.is_expired()

    def test_remaining_after_reload_mid_attempt(self):
        """Scenario: 30-minute attempt started 10 minutes ago reads 20:00."""
        clock = FakeClock()
        countdown = Countdown(clock, 30)
        countdown.start(T0)
        clock.advance(minutes=10)
        assert countdown.remaining_ms() == 20 * 60 * 1000
        assert format_remaining(countdown.remaining_ms()) == (20, 0)

    def test_clamped_to_zero_after_deadline(self):
        clock = FakeClock()
        countdown = Countdown(clock, 1)
        countdown.start(T0)
        clock.advance(minutes=5)
        assert countdown.remaining_ms() == 0
        assert countdown.is_expired()

    def test_suspended_host_does_not_drift(self):
        """A long gap between reads is reflected in full on the next read."""
        clock = FakeClock()
        countdown = Countdown(clock, 60)
        countdown.start(T0)
        clock.advance(seconds=1)
        first = countdown.remaining_ms()
        clock.advance(minutes=15)
        assert first - countdown.remaining_ms() == 15 * 60 * 1000

    def test_start_only_once(self):
        countdown = Countdown(FakeClock(), 10)
        countdown.start(T0)
        with pytest.raises(RuntimeError):
            countdown.start(T0)

    def test_naive_start_is_treated_as_utc(self):
        clock = FakeClock()
        countdown = Countdown(clock, 10)
        countdown.start(datetime(2026, 3, 1, 9, 0, 0))
        assert countdown.started_at == T0
        assert countdown.remaining_ms() == 10 * 60 * 1000

    def test_rejects_non_positive_duration(self):
        with pytest.raises(ValueError):
            Countdown(FakeClock(), 0)


def test_format_remaining():
    assert format_remaining(0) == (0, 0)
    assert format_remaining(59_999) == (0, 59)
    assert format_remaining(4 * 60_000 + 30_500) == (4, 30)
    assert format_remaining(-10) == (0, 0)


class TestExpiryLatch:
    def test_fires_once(self):
        latch = ExpiryLatch()
        assert not latch.check(None)
        assert not latch.check(1000)
        assert latch.check(0)
        assert latch.fired
        assert not latch.check(0)


class TestTicker:
    @pytest.mark.asyncio
    async def test_acquire_is_idempotent_and_release_stops(self):
        ticks = 0

        async def on_tick():
            nonlocal ticks
            ticks += 1

        ticker = Ticker(0.001, on_tick)
        ticker.acquire()
        first_task = ticker._task
        ticker.acquire()
        assert ticker._task is first_task

        for _ in range(50):
            if ticks >= 2:
                break
            await asyncio.sleep(0.005)
        assert ticks >= 2

        ticker.release()
        ticker.release()
        assert not ticker.running
        seen = ticks
        await asyncio.sleep(0.02)
        assert ticks == seen

    @pytest.mark.asyncio
    async def test_release_from_inside_tick(self):
        """Releasing during the tick callback ends the loop without self-cancel."""
        ticks = 0
        ticker: Ticker

        async def on_tick():
            nonlocal ticks
            ticks += 1
            ticker.release()
            await asyncio.sleep(0)

        ticker = Ticker(0.001, on_tick)
        ticker.acquire()
        await asyncio.sleep(0.05)
        assert ticks == 1
        assert not ticker.running

    @pytest.mark.asyncio
    async def test_tick_errors_are_logged_not_raised(self):
        ticks = 0

        async def on_tick():
            nonlocal ticks
            ticks += 1
            raise RuntimeError("boom")

        ticker = Ticker(0.001, on_tick)
        ticker.acquire()
        for _ in range(50):
            if ticks >= 2:
                break
            await asyncio.sleep(0.005)
        ticker.release()
        assert ticks >= 2
