"""Read-only question payload supplied by the question bank."""

from decimal import Decimal, InvalidOperation
from enum import Enum as PyEnum

from pydantic import BaseModel, ConfigDict, Field

TRUE_FALSE_OPTION_IDS = ("TRUE", "FALSE")


class QuestionType(str, PyEnum):
    """Question type tag. Drives answer validation and sync payload shape."""

    MCQ = "MCQ"
    TRUE_FALSE = "TRUE_FALSE"
    FILL_BLANK = "FILL_BLANK"
    NUMERICAL = "NUMERICAL"

    @property
    def uses_options(self) -> bool:
        return self in (QuestionType.MCQ, QuestionType.TRUE_FALSE)


class QuestionOption(BaseModel):
    """Answer option. Correctness is dropped at parse time and never reaches the engine."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str
    text: str = ""
    image_url: str | None = Field(None, alias="imageUrl")


class Question(BaseModel):
    """Immutable question as delivered for one attempt."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str
    text: str
    type: QuestionType
    options: tuple[QuestionOption, ...] = ()
    marks: float = 0
    negative_marks: float = Field(0, alias="negativeMarks")
    section_id: str | None = Field(None, alias="sectionId")
    image_url: str | None = Field(None, alias="imageUrl")

    @property
    def option_ids(self) -> tuple[str, ...]:
        if self.type is QuestionType.TRUE_FALSE and not self.options:
            return TRUE_FALSE_OPTION_IDS
        return tuple(option.id for option in self.options)

    def accepts(self, value: str) -> bool:
        """Whether ``value`` is a well-formed answer for this question type."""
        if self.type.uses_options:
            return value in self.option_ids
        if self.type is QuestionType.NUMERICAL and value != "":
            try:
                return Decimal(value).is_finite()
            except InvalidOperation:
                return False
        return True
