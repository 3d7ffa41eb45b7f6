"""Pydantic schemas for the attempt store contract and the attempt view model."""

from datetime import datetime
from enum import Enum as PyEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from attempt_engine.models.attempt import AttemptStatus, IntegritySignal
from attempt_engine.models.question import Question


class StoreModel(BaseModel):
    """Base for payloads exchanged with the remote store (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ============================================================================
# Attempt Store Schemas
# ============================================================================


class StoredAnswer(StoreModel):
    """Answer previously persisted for this attempt (returned on load)."""

    question_id: str
    selected_option_id: str | None = None
    text_answer: str | None = None
    time_spent_seconds: int = Field(0, ge=0)
    is_marked_for_review: bool = False

    @property
    def value(self) -> str | None:
        if self.selected_option_id is not None:
            return self.selected_option_id
        return self.text_answer


class Section(StoreModel):
    """Question group as authored. Flattened in delivery order."""

    id: str
    name: str = ""
    questions: list[Question] = Field(default_factory=list)


class AttemptPayload(StoreModel):
    """Response of ``load_attempt``."""

    attempt_id: str | None = None
    started_at: datetime | None = None
    submitted_at: datetime | None = None
    duration_minutes: int = Field(..., ge=1)
    sections: list[Section] = Field(default_factory=list)
    questions: list[Question] = Field(default_factory=list)
    answers: list[StoredAnswer] = Field(default_factory=list)

    def flattened_questions(self) -> tuple[Question, ...]:
        """Sections first (in order), then loose questions. Never reshuffled."""
        flat: list[Question] = []
        for section in self.sections:
            for question in section.questions:
                if question.section_id is None:
                    question = question.model_copy(update={"section_id": section.id})
                flat.append(question)
        flat.extend(self.questions)
        return tuple(flat)

    @model_validator(mode="after")
    def validate_questions(self):
        """Require at least one question and unique question ids."""
        ids = [q.id for q in self.flattened_questions()]
        if not ids:
            raise ValueError("Attempt has no questions")
        if len(ids) != len(set(ids)):
            raise ValueError("Duplicate question ids in attempt")
        return self


class StartedAttempt(StoreModel):
    """Response of ``start_attempt``: the store-assigned start instant."""

    started_at: datetime


class AnswerSyncPayload(StoreModel):
    """Body of ``save_answer``. Exactly one of selected_option_id/text_answer is set."""

    question_id: str
    selected_option_id: str | None = None
    text_answer: str | None = None
    time_spent_seconds: int = Field(0, ge=0)
    is_marked_for_review: bool = False

    @model_validator(mode="after")
    def validate_single_value(self):
        """Ensure the payload carries exactly one answer field."""
        if (self.selected_option_id is None) == (self.text_answer is None):
            raise ValueError("Exactly one of selected_option_id or text_answer must be set")
        return self


class AttemptResult(StoreModel):
    """Scored result from the scoring service. Passed through unchanged."""

    model_config = ConfigDict(extra="allow")

    total_score: float
    percentage: float
    rank: int | None = None
    percentile: float | None = None


# ============================================================================
# View Model
# ============================================================================


class ResultsState(str, PyEnum):
    """Results view state after submission."""

    NOT_REQUESTED = "NOT_REQUESTED"
    EVALUATING = "EVALUATING"
    AVAILABLE = "AVAILABLE"
    UNAVAILABLE = "UNAVAILABLE"


class EngineErrorView(BaseModel):
    """Last error surfaced through the engine's error channel."""

    code: str
    message: str
    retryable: bool = False
    terminal: bool = False


class AttemptViewModel(BaseModel):
    """Immutable snapshot consumed by the presentation layer."""

    model_config = ConfigDict(frozen=True)

    attempt_id: str
    status: AttemptStatus
    remaining_ms: int | None
    remaining_minutes: int | None = None
    remaining_seconds: int | None = None
    is_low_time: bool = False
    current_index: int
    total_questions: int
    current_question: Question | None
    current_answer: str | None = None
    answered_bitmap: list[bool]
    review_bitmap: list[bool]
    violation_count: int
    max_violations: int
    confirmation_pending: bool = False
    submitted_at: datetime | None = None
    results_state: ResultsState = ResultsState.NOT_REQUESTED
    result: AttemptResult | None = None
    unsynced_question_ids: list[str] = Field(default_factory=list)
    fullscreen_requested: bool = False
    media_requested: bool = False
    error: EngineErrorView | None = None


# ============================================================================
# HTTP Request Schemas
# ============================================================================


class AnswerIn(BaseModel):
    """Record an answer for a question."""

    question_id: str = Field(..., min_length=1)
    value: str | int | float = Field(..., description="Option id, free text or number")

    @field_validator("value")
    @classmethod
    def stringify_value(cls, v):
        """Answers are stored as strings regardless of input type."""
        return v if isinstance(v, str) else str(v)


class JumpIn(BaseModel):
    """Jump to a palette index (0-based)."""

    index: int = Field(..., ge=0)


class SignalIn(BaseModel):
    """Integrity signal reported by the browser."""

    signal: IntegritySignal
    detail: str | None = Field(None, max_length=64)


class ActionOut(BaseModel):
    """Result of an action plus the refreshed view."""

    accepted: bool
    view: AttemptViewModel
