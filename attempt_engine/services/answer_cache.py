"""Write-through answer cache with per-question ordered sync to the attempt store.

IMPORTANT: Sync is best-effort. A failed sync never rolls back the local record;
local state is what the presentation layer shows.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from attempt_engine.core.app_exceptions import SyncError
from attempt_engine.models.attempt import AnswerRecord
from attempt_engine.models.question import Question, QuestionType
from attempt_engine.schemas.attempt import AnswerSyncPayload, StoredAnswer

logger = logging.getLogger(__name__)


class AnswerSink(Protocol):
    async def save_answer(self, attempt_id: str, payload: AnswerSyncPayload) -> None: ...


def _option_payload(record: AnswerRecord) -> AnswerSyncPayload:
    return AnswerSyncPayload(
        question_id=record.question_id,
        selected_option_id=record.value,
        time_spent_seconds=record.time_spent_seconds,
        is_marked_for_review=record.is_marked_for_review,
    )


def _text_payload(record: AnswerRecord) -> AnswerSyncPayload:
    return AnswerSyncPayload(
        question_id=record.question_id,
        text_answer=str(record.value),
        time_spent_seconds=record.time_spent_seconds,
        is_marked_for_review=record.is_marked_for_review,
    )


PAYLOAD_SHAPERS: dict[QuestionType, Callable[[AnswerRecord], AnswerSyncPayload]] = {
    QuestionType.MCQ: _option_payload,
    QuestionType.TRUE_FALSE: _option_payload,
    QuestionType.FILL_BLANK: _text_payload,
    QuestionType.NUMERICAL: _text_payload,
}


def shape_payload(question_type: QuestionType, record: AnswerRecord) -> AnswerSyncPayload:
    """Build the sync payload for ``record`` from the question's type tag."""
    return PAYLOAD_SHAPERS[question_type](record)


def is_answered(record: AnswerRecord | None) -> bool:
    return record is not None and record.value is not None and record.value != ""


class AnswerCache:
    """Local answer map plus the outbound sync queue.

    Each question has its own sync chain: a new request for a question starts only
    after the previous request for that same question has finished, so the store
    observes per-question writes in commit order. Different questions sync
    concurrently.
    """

    def __init__(
        self,
        attempt_id: str,
        sink: AnswerSink,
        answers: dict[str, AnswerRecord] | None = None,
        *,
        max_attempts: int = 3,
        retry_delay_s: float = 1.0,
        on_sync_failed: Callable[[SyncError], None] | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._attempt_id = attempt_id
        self._sink = sink
        self._answers: dict[str, AnswerRecord] = answers if answers is not None else {}
        self._max_attempts = max_attempts
        self._retry_delay_s = retry_delay_s
        self._on_sync_failed = on_sync_failed

        # Seconds accrued on questions that have no record yet.
        self._unrecorded_time: dict[str, int] = {}
        self._chains: dict[str, asyncio.Task] = {}
        self._unsynced: set[str] = set()

    # ------------------------------------------------------------------ reads

    @property
    def answers(self) -> dict[str, AnswerRecord]:
        return self._answers

    def get(self, question_id: str) -> AnswerRecord | None:
        return self._answers.get(question_id)

    def value(self, question_id: str) -> str | None:
        record = self._answers.get(question_id)
        return None if record is None else record.value

    def is_answered(self, question_id: str) -> bool:
        return is_answered(self._answers.get(question_id))

    def time_spent(self, question_id: str) -> int:
        record = self._answers.get(question_id)
        if record is not None:
            return record.time_spent_seconds
        return self._unrecorded_time.get(question_id, 0)

    @property
    def unsynced_question_ids(self) -> list[str]:
        return sorted(self._unsynced)

    @property
    def has_pending_sync(self) -> bool:
        return any(not task.done() for task in self._chains.values())

    # ----------------------------------------------------------------- writes

    def seed(self, stored: list[StoredAnswer]) -> None:
        """Load answers persisted earlier (resume). Does not sync."""
        for item in stored:
            if item.value is None:
                continue
            self._answers[item.question_id] = AnswerRecord(
                question_id=item.question_id,
                value=item.value,
                time_spent_seconds=item.time_spent_seconds,
                is_marked_for_review=item.is_marked_for_review,
            )

    def record(self, question: Question, value: str, *, marked_for_review: bool) -> AnswerRecord:
        """Optimistic local write followed by an enqueued sync."""
        record = self._answers.get(question.id)
        if record is None:
            record = AnswerRecord(
                question_id=question.id,
                value=value,
                time_spent_seconds=self._unrecorded_time.pop(question.id, 0),
            )
            self._answers[question.id] = record
        else:
            record.value = value
        record.is_marked_for_review = marked_for_review
        self._enqueue(question, record)
        return record

    def set_review_flag(self, question: Question, marked: bool) -> bool:
        """Mirror the review flag onto an existing record and sync it.

        Returns False when the question has no record; none is fabricated.
        """
        record = self._answers.get(question.id)
        if record is None:
            return False
        record.is_marked_for_review = marked
        self._enqueue(question, record)
        return True

    def accrue_time(self, question_id: str, seconds: int) -> None:
        if seconds <= 0:
            return
        record = self._answers.get(question_id)
        if record is not None:
            record.time_spent_seconds += seconds
        else:
            self._unrecorded_time[question_id] = self._unrecorded_time.get(question_id, 0) + seconds

    async def drain(self) -> None:
        """Wait for every queued sync to finish (successfully or not)."""
        while True:
            pending = [task for task in self._chains.values() if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # --------------------------------------------------------------- internal

    def _enqueue(self, question: Question, record: AnswerRecord) -> None:
        # Snapshot now: later local writes must not leak into this request.
        payload = shape_payload(question.type, record)
        previous = self._chains.get(question.id)
        self._chains[question.id] = asyncio.get_running_loop().create_task(
            self._sync_after(previous, payload),
            name=f"answer-sync:{question.id}",
        )

    async def _sync_after(self, previous: asyncio.Task | None, payload: AnswerSyncPayload) -> None:
        if previous is not None and not previous.done():
            await asyncio.gather(previous, return_exceptions=True)

        question_id = payload.question_id
        for attempt in range(1, self._max_attempts + 1):
            try:
                await self._sink.save_answer(self._attempt_id, payload)
            except Exception as e:
                if attempt < self._max_attempts:
                    logger.info(
                        "Answer sync failed, retrying",
                        extra={"question_id": question_id, "attempt": attempt, "error": str(e)},
                    )
                    await asyncio.sleep(self._retry_delay_s * attempt)
                    continue
                logger.warning(
                    "Answer sync failed after %d attempts for question %s: %s",
                    attempt,
                    question_id,
                    e,
                )
                self._unsynced.add(question_id)
                if self._on_sync_failed is not None:
                    self._on_sync_failed(
                        SyncError(
                            "Answer could not be saved; it is kept locally.",
                            details={"question_id": question_id, "attempts": attempt},
                        )
                    )
                return
            else:
                self._unsynced.discard(question_id)
                return
