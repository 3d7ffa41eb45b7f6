"""Cursor over the flattened question list plus review flags and palette bitmaps."""

from __future__ import annotations

from collections.abc import Callable, Sequence

from attempt_engine.models.question import Question


class NavigationModel:
    """Clamped cursor (no wraparound) and marked-for-review membership."""

    def __init__(self, questions: Sequence[Question], marked_for_review: set[str]) -> None:
        if not questions:
            raise ValueError("NavigationModel requires at least one question")
        self._questions = tuple(questions)
        self._marked = marked_for_review
        self._index = 0

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def total(self) -> int:
        return len(self._questions)

    @property
    def current_question(self) -> Question:
        return self._questions[self._index]

    @property
    def is_first(self) -> bool:
        return self._index == 0

    @property
    def is_last(self) -> bool:
        return self._index == len(self._questions) - 1

    def next(self) -> bool:
        """Advance by one. Returns False at the end of the list."""
        return self._move_to(min(self._index + 1, len(self._questions) - 1))

    def previous(self) -> bool:
        """Step back by one. Returns False at the start of the list."""
        return self._move_to(max(self._index - 1, 0))

    def jump_to(self, index: int) -> bool:
        if not 0 <= index < len(self._questions):
            raise IndexError(f"Question index {index} out of range [0, {len(self._questions) - 1}]")
        return self._move_to(index)

    def toggle_review(self) -> bool:
        """Flip review membership of the current question; returns the new flag."""
        question_id = self.current_question.id
        if question_id in self._marked:
            self._marked.discard(question_id)
            return False
        self._marked.add(question_id)
        return True

    def is_marked(self, question_id: str) -> bool:
        return question_id in self._marked

    def review_bitmap(self) -> list[bool]:
        return [q.id in self._marked for q in self._questions]

    def answered_bitmap(self, is_answered: Callable[[str], bool]) -> list[bool]:
        # Computed on demand from the cache so the palette cannot drift from answers.
        return [is_answered(q.id) for q in self._questions]

    def _move_to(self, index: int) -> bool:
        if index == self._index:
            return False
        self._index = index
        return True
