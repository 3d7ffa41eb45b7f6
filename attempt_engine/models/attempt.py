"""Attempt session aggregate owned by the attempt engine."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum as PyEnum

from attempt_engine.models.question import Question


class AttemptStatus(str, PyEnum):
    """Attempt lifecycle status."""

    NOT_STARTED = "NOT_STARTED"
    ACTIVE = "ACTIVE"
    SUBMITTING = "SUBMITTING"
    SUBMITTED = "SUBMITTED"


class SubmitTrigger(str, PyEnum):
    """What caused the attempt to leave ACTIVE."""

    USER = "USER"
    TIMER_EXPIRED = "TIMER_EXPIRED"
    VIOLATION_LIMIT = "VIOLATION_LIMIT"


class IntegritySignal(str, PyEnum):
    """Platform signals observed while an attempt is active."""

    VISIBILITY_HIDDEN = "VISIBILITY_HIDDEN"
    WINDOW_BLUR = "WINDOW_BLUR"
    FULLSCREEN_EXIT = "FULLSCREEN_EXIT"
    FULLSCREEN_ENTER = "FULLSCREEN_ENTER"
    CONTEXT_MENU = "CONTEXT_MENU"
    BLOCKED_KEY = "BLOCKED_KEY"
    MEDIA_ENDED = "MEDIA_ENDED"


# SUBMITTING -> ACTIVE is the single backward edge (submit not acknowledged).
ALLOWED_TRANSITIONS: dict[AttemptStatus, frozenset[AttemptStatus]] = {
    AttemptStatus.NOT_STARTED: frozenset({AttemptStatus.ACTIVE, AttemptStatus.SUBMITTED}),
    AttemptStatus.ACTIVE: frozenset({AttemptStatus.SUBMITTING}),
    AttemptStatus.SUBMITTING: frozenset({AttemptStatus.SUBMITTED, AttemptStatus.ACTIVE}),
    AttemptStatus.SUBMITTED: frozenset(),
}


class InvalidTransitionError(RuntimeError):
    """Raised when a status change is not an edge of the lifecycle graph."""


@dataclass(slots=True)
class AnswerRecord:
    """Latest answer for one question. Overwritten in place, never appended."""

    question_id: str
    value: str
    time_spent_seconds: int = 0
    is_marked_for_review: bool = False


@dataclass
class AttemptSession:
    """Root aggregate for one timed attempt."""

    attempt_id: str
    duration_minutes: int
    questions: tuple[Question, ...] = ()
    started_at: datetime | None = None
    submitted_at: datetime | None = None
    status: AttemptStatus = AttemptStatus.NOT_STARTED
    answers: dict[str, AnswerRecord] = field(default_factory=dict)
    marked_for_review: set[str] = field(default_factory=set)
    violation_count: int = 0

    def __post_init__(self) -> None:
        self._question_index = {q.id: i for i, q in enumerate(self.questions)}

    @property
    def is_read_only(self) -> bool:
        return self.status is AttemptStatus.SUBMITTED

    def has_question(self, question_id: str) -> bool:
        return question_id in self._question_index

    def question(self, question_id: str) -> Question:
        return self.questions[self._question_index[question_id]]

    def transition(self, target: AttemptStatus) -> None:
        """Move to ``target`` or raise if the edge does not exist."""
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(f"{self.status.value} -> {target.value}")
        self.status = target
