"""Property-based tests for attempt engine invariants."""

import asyncio
from datetime import timedelta

from hypothesis import given, settings, strategies as st

from attempt_engine.models.attempt import ALLOWED_TRANSITIONS, AttemptStatus, IntegritySignal
from attempt_engine.services.attempt_engine import AttemptEngine, EngineConfig
from attempt_engine.services.clock import Countdown
from tests.helpers.fakes import T0, FakeAttemptStore, FakeCapability, FakeClock, make_payload

CONFIG = EngineConfig(
    max_violations=3,
    tick_interval_s=3600,
    sync_retry_delay_s=0,
    submit_max_attempts=2,
    results_poll_interval_s=3600,
    results_poll_max_attempts=1,
)

ACTIONS = st.sampled_from(
    [
        "answer",
        "next",
        "previous",
        "jump",
        "review",
        "request_submit",
        "confirm_submit",
        "cancel_submit",
        "advance",
        "tick",
        "violation",
        "fail_next_submit",
    ]
)


def make_engine(duration_minutes: int = 30):
    clock = FakeClock()
    calls: list[tuple] = []
    store = FakeAttemptStore(make_payload(duration_minutes=duration_minutes), clock=clock, calls=calls)
    capability = FakeCapability(calls)
    engine = AttemptEngine("att-p", store, capability, clock=clock, config=CONFIG)
    return engine, store, capability, clock


async def apply(action: str, arg: int, engine, store, capability, clock) -> None:
    if action == "answer":
        engine.record_answer("q1", "ab"[arg % 2])
    elif action == "next":
        engine.next()
    elif action == "previous":
        engine.previous()
    elif action == "jump":
        engine.jump_to(arg % 4)
    elif action == "review":
        engine.toggle_review()
    elif action == "request_submit":
        engine.request_submit()
    elif action == "confirm_submit":
        await engine.confirm_submit()
    elif action == "cancel_submit":
        engine.cancel_submit()
    elif action == "advance":
        clock.advance(minutes=arg)
    elif action == "tick":
        await engine.tick()
    elif action == "violation":
        capability.emit(IntegritySignal.WINDOW_BLUR)
    elif action == "fail_next_submit":
        store.submit_failures += 1
    await asyncio.sleep(0)


@settings(max_examples=60, deadline=None, print_blob=True)
@given(steps=st.lists(st.tuples(ACTIONS, st.integers(min_value=0, max_value=20)), max_size=40))
def test_status_only_moves_along_lifecycle_edges(steps) -> None:
    """
    Property: Status changes follow the lifecycle graph.

    Invariants:
    - Every observed change is an allowed edge
    - SUBMITTED is terminal and submitted_at is set iff SUBMITTED
    - Violations never exceed the cap
    """

    async def scenario() -> None:
        engine, store, capability, clock = make_engine()
        await engine.load()

        history = [engine.status]
        transition = engine.session.transition

        def recording_transition(target: AttemptStatus) -> None:
            transition(target)
            history.append(target)

        engine.session.transition = recording_transition
        await engine.activate()
        try:
            for action, arg in steps:
                await apply(action, arg, engine, store, capability, clock)
                submitted = engine.status is AttemptStatus.SUBMITTED
                assert (engine.session.submitted_at is not None) == submitted
                assert engine.monitor.violations <= CONFIG.max_violations
            await engine.drain()

            for before, after in zip(history, history[1:]):
                assert after in ALLOWED_TRANSITIONS[before]
            if AttemptStatus.SUBMITTED in history:
                assert history[-1] is AttemptStatus.SUBMITTED
                assert engine.record_answer("q1", "a") is False
                assert engine.request_submit() is False
        finally:
            await engine.close()

    asyncio.run(scenario())


@settings(max_examples=100, deadline=None)
@given(
    duration=st.integers(min_value=1, max_value=240),
    started_ago_s=st.integers(min_value=0, max_value=20_000),
    advances=st.lists(st.integers(min_value=0, max_value=3_600), max_size=10),
)
def test_remaining_time_depends_only_on_deadline(duration, started_ago_s, advances) -> None:
    """
    Property: remaining = max(0, started_at + duration - now) on every read,
    regardless of how reads are spaced.
    """
    clock = FakeClock()
    started_at = T0 - timedelta(seconds=started_ago_s)
    countdown = Countdown(clock, duration)
    countdown.start(started_at)

    for step in [0, *advances]:
        clock.advance(seconds=step)
        elapsed_ms = int((clock.now() - started_at).total_seconds() * 1000)
        assert countdown.remaining_ms() == max(0, duration * 60_000 - elapsed_ms)


@settings(max_examples=60, deadline=None)
@given(
    writes=st.lists(
        st.tuples(st.sampled_from(["q1", "q2"]), st.sampled_from(["a", "b", "TRUE", "FALSE"])),
        min_size=1,
        max_size=25,
    )
)
def test_last_value_wins_per_question(writes) -> None:
    """
    Property: After all syncs settle, both the cache and the store hold the last
    accepted value for each question.
    """

    async def scenario() -> None:
        engine, store, _, _ = make_engine()
        await engine.load()
        await engine.activate()
        expected: dict[str, str] = {}
        try:
            for question_id, value in writes:
                if engine.record_answer(question_id, value):
                    expected[question_id] = value
            await engine.drain()

            for question_id, value in expected.items():
                assert engine.answers.value(question_id) == value
                last_saved = [p for p in store.saved if p.question_id == question_id][-1]
                assert last_saved.selected_option_id == value
        finally:
            await engine.close()

    asyncio.run(scenario())


@settings(max_examples=30, deadline=None)
@given(extra_signals=st.integers(min_value=0, max_value=10))
def test_violation_cap_forces_exactly_one_submission(extra_signals) -> None:
    """Property: reaching the cap submits once no matter how many signals follow."""

    async def scenario() -> None:
        engine, store, capability, _ = make_engine()
        await engine.load()
        await engine.activate()
        try:
            for _ in range(CONFIG.max_violations + extra_signals):
                capability.emit(IntegritySignal.VISIBILITY_HIDDEN)
            await engine.drain()
            assert engine.status is AttemptStatus.SUBMITTED
            assert store.submit_calls == 1
        finally:
            await engine.close()

    asyncio.run(scenario())
