"""Domain models."""

from attempt_engine.models.attempt import (
    AnswerRecord,
    AttemptSession,
    AttemptStatus,
    IntegritySignal,
    SubmitTrigger,
)
from attempt_engine.models.question import Question, QuestionOption, QuestionType

__all__ = [
    "AttemptSession",
    "AttemptStatus",
    "AnswerRecord",
    "IntegritySignal",
    "SubmitTrigger",
    "Question",
    "QuestionOption",
    "QuestionType",
]
