"""Attempt engine: lifecycle, policy and view model for one timed attempt.

Status flow:
    NOT_STARTED -> ACTIVE -> SUBMITTING -> SUBMITTED
    SUBMITTING -> ACTIVE when the store does not acknowledge the submit.

Every policy decision (when to submit, what to reject) lives here. The answer
cache, integrity monitor and results poller only report facts back.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from attempt_engine.clients.attempt_store import AttemptStore
from attempt_engine.core.app_exceptions import (
    AppError,
    AttemptLoadError,
    AttemptStoreError,
    LockdownError,
    SubmitError,
    SyncError,
)
from attempt_engine.core.config import Settings, settings
from attempt_engine.models.attempt import AttemptSession, AttemptStatus, SubmitTrigger
from attempt_engine.observability.logging import audit_log
from attempt_engine.schemas.attempt import (
    AttemptPayload,
    AttemptViewModel,
    EngineErrorView,
)
from attempt_engine.services.answer_cache import AnswerCache
from attempt_engine.services.clock import (
    Clock,
    Countdown,
    ExpiryLatch,
    SystemClock,
    Ticker,
    format_remaining,
)
from attempt_engine.services.integrity import IntegrityCapability, IntegrityMonitor
from attempt_engine.services.navigation import NavigationModel
from attempt_engine.services.results import ResultsPoller

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Per-engine tunables. Defaults mirror Settings."""

    max_violations: int = 3
    require_fullscreen: bool = True
    require_media: bool = True
    media_restart_throttle_s: float = 5.0
    tick_interval_s: float = 1.0
    low_time_warning_minutes: int = 5
    sync_max_attempts: int = 3
    sync_retry_delay_s: float = 1.0
    submit_max_attempts: int = 3
    results_poll_interval_s: float = 5.0
    results_poll_max_attempts: int = 60

    @classmethod
    def from_settings(cls, s: Settings = settings) -> EngineConfig:
        return cls(
            max_violations=s.MAX_VIOLATIONS,
            require_fullscreen=s.REQUIRE_FULLSCREEN,
            require_media=s.REQUIRE_MEDIA,
            media_restart_throttle_s=s.MEDIA_RESTART_THROTTLE_SECONDS,
            tick_interval_s=s.TICK_INTERVAL_SECONDS,
            low_time_warning_minutes=s.LOW_TIME_WARNING_MINUTES,
            sync_max_attempts=s.SYNC_MAX_ATTEMPTS,
            sync_retry_delay_s=s.SYNC_RETRY_DELAY_SECONDS,
            submit_max_attempts=s.SUBMIT_MAX_ATTEMPTS,
            results_poll_interval_s=s.RESULTS_POLL_INTERVAL_SECONDS,
            results_poll_max_attempts=s.RESULTS_POLL_MAX_ATTEMPTS,
        )


class AttemptEngine:
    """Drives one attempt from load to submission and exposes its view model."""

    def __init__(
        self,
        attempt_id: str,
        store: AttemptStore,
        capability: IntegrityCapability,
        *,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.attempt_id = attempt_id
        self._store = store
        self._clock = clock or SystemClock()
        self._config = config or EngineConfig.from_settings()

        self._monitor = IntegrityMonitor(
            attempt_id,
            capability,
            self._clock,
            max_violations=self._config.max_violations,
            fullscreen_required=self._config.require_fullscreen,
            media_required=self._config.require_media,
            media_restart_throttle_s=self._config.media_restart_throttle_s,
            on_violation=self._on_violation,
            on_lockdown_failed=self._on_lockdown_failed,
        )
        self._ticker = Ticker(self._config.tick_interval_s, self.tick)
        self._expiry = ExpiryLatch()
        self._results = ResultsPoller(
            attempt_id,
            store,
            interval_s=self._config.results_poll_interval_s,
            max_attempts=self._config.results_poll_max_attempts,
        )

        self._session: AttemptSession | None = None
        self._countdown: Countdown | None = None
        self._cache: AnswerCache | None = None
        self._nav: NavigationModel | None = None

        self._activating = False
        self._confirmation_pending = False
        self._focus_started: datetime | None = None
        self._error: EngineErrorView | None = None
        self._background: set[asyncio.Task] = set()
        self._closed = False

    # ================================================================ state

    @property
    def status(self) -> AttemptStatus:
        return self._session.status if self._session else AttemptStatus.NOT_STARTED

    @property
    def session(self) -> AttemptSession:
        if self._session is None:
            raise RuntimeError("Attempt not loaded")
        return self._session

    @property
    def monitor(self) -> IntegrityMonitor:
        return self._monitor

    @property
    def answers(self) -> AnswerCache:
        if self._cache is None:
            raise RuntimeError("Attempt not loaded")
        return self._cache

    @property
    def navigation(self) -> NavigationModel:
        if self._nav is None:
            raise RuntimeError("Attempt not loaded")
        return self._nav

    @property
    def results(self) -> ResultsPoller:
        return self._results

    @property
    def error(self) -> EngineErrorView | None:
        return self._error

    @property
    def confirmation_pending(self) -> bool:
        return self._confirmation_pending

    def remaining_ms(self) -> int | None:
        if self._countdown is None or self.status is AttemptStatus.SUBMITTED:
            return None
        return self._countdown.remaining_ms()

    # ============================================================ lifecycle

    async def load(self) -> None:
        """Fetch the attempt and rebuild local state (fresh start or resume)."""
        if self._session is not None:
            return
        try:
            payload = await self._store.load_attempt(self.attempt_id)
        except Exception as e:
            logger.error("Failed to load attempt %s: %s", self.attempt_id, e)
            error = AttemptLoadError(
                "This test could not be loaded. Please go back and try again.",
                details={"attempt_id": self.attempt_id},
            )
            self._set_error(error, terminal=True)
            raise error from e
        self._error = None
        self._build(payload)

    def _build(self, payload: AttemptPayload) -> None:
        questions = payload.flattened_questions()
        session = AttemptSession(
            attempt_id=self.attempt_id,
            duration_minutes=payload.duration_minutes,
            questions=questions,
        )
        cache = AnswerCache(
            self.attempt_id,
            self._store,
            session.answers,
            max_attempts=self._config.sync_max_attempts,
            retry_delay_s=self._config.sync_retry_delay_s,
            on_sync_failed=self._on_sync_failed,
        )
        cache.seed([a for a in payload.answers if session.has_question(a.question_id)])
        session.marked_for_review.update(
            qid for qid, record in session.answers.items() if record.is_marked_for_review
        )

        self._session = session
        self._cache = cache
        self._nav = NavigationModel(questions, session.marked_for_review)
        self._countdown = Countdown(self._clock, payload.duration_minutes)

        if payload.submitted_at is not None:
            if payload.started_at is not None:
                self._countdown.start(payload.started_at)
            session.started_at = payload.started_at
            session.submitted_at = payload.submitted_at
            session.transition(AttemptStatus.SUBMITTED)
            self._results.start()
        elif payload.started_at is not None:
            logger.info("Resuming attempt %s started at %s", self.attempt_id, payload.started_at)
            self._enter_active(payload.started_at)

    async def activate(self) -> bool:
        """NOT_STARTED -> ACTIVE. The store assigns and persists the start instant."""
        if self._session is None or self.status is not AttemptStatus.NOT_STARTED or self._activating:
            logger.info("Activate ignored: attempt %s is %s", self.attempt_id, self.status.value)
            return False
        self._activating = True
        try:
            started_at = await self._store.start_attempt(self.attempt_id)
        except Exception as e:
            logger.error("Failed to start attempt %s: %s", self.attempt_id, e)
            self._set_error(
                AttemptStoreError("The test could not be started. Please try again.", code="START_FAILED")
            )
            return False
        finally:
            self._activating = False
        if self._closed or self.status is not AttemptStatus.NOT_STARTED:
            return False
        self._enter_active(started_at)
        return True

    def _enter_active(self, started_at: datetime) -> None:
        session = self.session
        self._countdown.start(started_at)
        session.started_at = self._countdown.started_at
        session.transition(AttemptStatus.ACTIVE)
        self._monitor.arm()
        self._focus_started = self._clock.now()
        self._ticker.acquire()
        audit_log("attempt_activated", attempt_id=self.attempt_id, started_at=session.started_at.isoformat())

    async def tick(self) -> None:
        """Periodic evaluation: accrue focus time, fire expiry once."""
        if self.status is not AttemptStatus.ACTIVE:
            return
        self._accrue_focus_time()
        if self._expiry.check(self._countdown.remaining_ms()):
            logger.info("Attempt %s time is up", self.attempt_id)
            await self._force_submit(SubmitTrigger.TIMER_EXPIRED)

    async def close(self) -> None:
        """Tear down: stop timers and polling, release integrity, let syncs finish."""
        if self._closed:
            return
        self._closed = True
        self._ticker.release()
        self._results.cancel()
        self._monitor.disarm()
        await self._monitor.release()
        # Pending answer syncs are allowed to complete; they are never cancelled.
        await self.drain()

    async def drain(self) -> None:
        """Wait for background submissions and answer syncs."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        if self._cache is not None:
            await self._cache.drain()

    # ============================================================== actions

    def record_answer(self, question_id: str, value: Any) -> bool:
        if not self._can_mutate("record_answer"):
            return False
        session = self.session
        if not session.has_question(question_id):
            logger.warning("Rejected answer for unknown question %s", question_id)
            return False
        question = session.question(question_id)
        value = value if isinstance(value, str) else str(value)
        if not question.accepts(value):
            logger.warning("Rejected answer %r for %s question %s", value, question.type.value, question_id)
            return False
        self.answers.record(question, value, marked_for_review=question_id in session.marked_for_review)
        return True

    def next(self) -> bool:
        return self._navigate("next", lambda nav: nav.next())

    def previous(self) -> bool:
        return self._navigate("previous", lambda nav: nav.previous())

    def jump_to(self, index: int) -> bool:
        if self._nav is not None and not 0 <= index < self._nav.total:
            logger.warning("Rejected jump to index %d (total %d)", index, self._nav.total)
            return False
        return self._navigate("jump_to", lambda nav: nav.jump_to(index))

    def toggle_review(self) -> bool:
        if not self._can_mutate("toggle_review"):
            return False
        nav = self.navigation
        marked = nav.toggle_review()
        self.answers.set_review_flag(nav.current_question, marked)
        return True

    def request_submit(self) -> bool:
        """Open the submit confirmation (user path only)."""
        if self.status is not AttemptStatus.ACTIVE:
            return False
        self._confirmation_pending = True
        return True

    def cancel_submit(self) -> bool:
        was_pending, self._confirmation_pending = self._confirmation_pending, False
        return was_pending

    async def confirm_submit(self) -> bool:
        """Confirmed user submission. A second concurrent call is a no-op."""
        if not self._confirmation_pending:
            logger.info("Submit confirmation ignored: nothing pending")
            return False
        self._confirmation_pending = False
        if not self._begin_submit(SubmitTrigger.USER):
            return False
        return await self._finish_submit(SubmitTrigger.USER)

    async def enter_fullscreen(self) -> bool:
        if self.status is not AttemptStatus.ACTIVE:
            return False
        return await self._monitor.enter_fullscreen()

    async def start_media(self) -> bool:
        if self.status is not AttemptStatus.ACTIVE:
            return False
        return await self._monitor.start_media()

    def dismiss_error(self) -> None:
        if self._error is not None and not self._error.terminal:
            self._error = None

    # ========================================================== submission

    async def _force_submit(self, trigger: SubmitTrigger) -> bool:
        if not self._begin_submit(trigger):
            return False
        return await self._finish_submit(trigger)

    def _begin_submit(self, trigger: SubmitTrigger) -> bool:
        """Synchronous half: guard and transition before any suspension point."""
        session = self._session
        if session is None or session.status is not AttemptStatus.ACTIVE:
            logger.info("Submit (%s) ignored: attempt is %s", trigger.value, self.status.value)
            return False
        self._accrue_focus_time()
        session.transition(AttemptStatus.SUBMITTING)
        self._confirmation_pending = False
        self._monitor.disarm()
        self._ticker.release()
        if trigger is not SubmitTrigger.USER:
            audit_log(
                "forced_submission",
                attempt_id=self.attempt_id,
                action="submit",
                trigger=trigger.value,
                violations=self._monitor.violations,
            )
        return True

    async def _finish_submit(self, trigger: SubmitTrigger) -> bool:
        session = self.session
        # Integrity teardown strictly before the submit request.
        await self._monitor.release()
        # Flush queued answers so the final submit sees them.
        await self.answers.drain()

        max_attempts = 1 if trigger is SubmitTrigger.USER else self._config.submit_max_attempts
        try:
            await self._submit_with_retry(max_attempts)
        except Exception as e:
            logger.error("Submit (%s) failed for attempt %s: %s", trigger.value, self.attempt_id, e)
            session.transition(AttemptStatus.ACTIVE)
            # Monitoring is not re-armed; the ticker resumes so the countdown stays live.
            self._focus_started = self._clock.now()
            if not self._closed:
                self._ticker.acquire()
            self._set_error(SubmitError("Your test could not be submitted. Please try again."))
            return False

        session.submitted_at = self._clock.now()
        session.transition(AttemptStatus.SUBMITTED)
        self._error = None
        audit_log(
            "attempt_submitted",
            attempt_id=self.attempt_id,
            action="submit",
            trigger=trigger.value,
            answered=sum(1 for qid in session.answers if self.answers.is_answered(qid)),
        )
        if not self._closed:
            self._results.start()
        return True

    async def _submit_with_retry(self, max_attempts: int) -> None:
        for attempt in range(1, max_attempts + 1):
            try:
                await self._store.submit_attempt(self.attempt_id)
                return
            except Exception as e:
                if attempt == max_attempts:
                    raise
                logger.info("Submit attempt %d failed, retrying: %s", attempt, e)
                await asyncio.sleep(self._config.sync_retry_delay_s * attempt)

    # =========================================================== callbacks

    def _on_violation(self, reason: str, count: int) -> None:
        if count < self._monitor.max_violations:
            return
        logger.warning("Violation limit reached for attempt %s (%s)", self.attempt_id, reason)
        if self._begin_submit(SubmitTrigger.VIOLATION_LIMIT):
            self._spawn(self._finish_submit(SubmitTrigger.VIOLATION_LIMIT))

    def _on_lockdown_failed(self, error: LockdownError) -> None:
        self._set_error(error)

    def _on_sync_failed(self, error: SyncError) -> None:
        # Non-interrupting: the unsynced list in the view is the only indicator.
        logger.warning("Answer sync gave up: %s", error.details)

    # ============================================================= helpers

    def _can_mutate(self, action: str) -> bool:
        if self.status is not AttemptStatus.ACTIVE:
            logger.info("Rejected %s: attempt is %s", action, self.status.value)
            return False
        if self._countdown.is_expired():
            logger.info("Rejected %s: time is up", action)
            return False
        return True

    def _navigate(self, action: str, move) -> bool:
        if self.status is not AttemptStatus.ACTIVE:
            logger.info("Rejected %s: attempt is %s", action, self.status.value)
            return False
        self._accrue_focus_time()
        moved = move(self.navigation)
        if moved:
            self._focus_started = self._clock.now()
        return moved

    def _accrue_focus_time(self) -> None:
        if self._focus_started is None or self._nav is None:
            return
        now = self._clock.now()
        deadline = self._countdown.deadline
        if deadline is not None and now > deadline:
            now = deadline
        elapsed = int((now - self._focus_started).total_seconds())
        if elapsed <= 0:
            return
        self.answers.accrue_time(self._nav.current_question.id, elapsed)
        self._focus_started += timedelta(seconds=elapsed)

    def _set_error(self, error: AppError, *, terminal: bool = False) -> None:
        self._error = EngineErrorView(
            code=error.code,
            message=error.message,
            retryable=error.retryable,
            terminal=terminal,
        )

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ================================================================= view

    def view(self) -> AttemptViewModel:
        """Fresh snapshot for the presentation layer."""
        session = self._session
        if session is None:
            return AttemptViewModel(
                attempt_id=self.attempt_id,
                status=AttemptStatus.NOT_STARTED,
                remaining_ms=None,
                current_index=0,
                total_questions=0,
                current_question=None,
                answered_bitmap=[],
                review_bitmap=[],
                violation_count=0,
                max_violations=self._monitor.max_violations,
                error=self._error,
            )

        nav, cache = self.navigation, self.answers
        session.violation_count = self._monitor.violations
        remaining = self.remaining_ms() if session.status is not AttemptStatus.NOT_STARTED else None
        minutes = seconds = None
        if remaining is not None:
            minutes, seconds = format_remaining(remaining)

        return AttemptViewModel(
            attempt_id=self.attempt_id,
            status=session.status,
            remaining_ms=remaining,
            remaining_minutes=minutes,
            remaining_seconds=seconds,
            is_low_time=minutes is not None and minutes < self._config.low_time_warning_minutes,
            current_index=nav.current_index,
            total_questions=nav.total,
            current_question=nav.current_question,
            current_answer=cache.value(nav.current_question.id),
            answered_bitmap=nav.answered_bitmap(cache.is_answered),
            review_bitmap=nav.review_bitmap(),
            violation_count=session.violation_count,
            max_violations=self._monitor.max_violations,
            confirmation_pending=self._confirmation_pending,
            submitted_at=session.submitted_at,
            results_state=self._results.state,
            result=self._results.result,
            unsynced_question_ids=cache.unsynced_question_ids,
            fullscreen_requested=self._monitor.fullscreen_requested,
            media_requested=self._monitor.media_requested,
            error=self._error,
        )
