"""Test catalog schemas.

Everything here is safe to send to a student before submission: option
correctness flags and accepted answers never appear outside
``AnswerKeyRead``.
"""

import uuid
from enum import Enum

from pydantic import BaseModel


class QuestionType(str, Enum):
    SINGLE_CHOICE = "single-choice"
    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"
    NUMERICAL = "numerical"
    FILL_IN_BLANK = "fill-in-blank"

    @property
    def is_choice(self) -> bool:
        return self in (
            QuestionType.SINGLE_CHOICE,
            QuestionType.MULTIPLE_CHOICE,
            QuestionType.TRUE_FALSE,
        )

    @property
    def is_exclusive(self) -> bool:
        """At most one option may be selected."""
        return self in (QuestionType.SINGLE_CHOICE, QuestionType.TRUE_FALSE)


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class OptionRead(BaseModel):
    """A selectable option. ``index`` is the option's position in the
    question bank, which is what answers refer to, even when the display
    order is shuffled."""

    index: int
    text: str
    image_url: str | None = None


class QuestionRead(BaseModel):
    """Single question inside a test payload (no answer data)."""

    id: uuid.UUID
    position: int
    text: str
    question_type: QuestionType
    options: list[OptionRead] = []
    marks: int
    difficulty: Difficulty
    subject: str | None = None
    chapter: str | None = None
    topic: str | None = None
    hint: str | None = None
    estimated_time_seconds: int | None = None


class TestSummary(BaseModel):
    """Test listing entry."""

    __test__ = False

    id: uuid.UUID
    title: str
    description: str | None = None
    duration_minutes: int
    total_marks: int
    passing_score: float
    allowed_attempts: int
    question_count: int
    show_results: bool = True


class TestRead(TestSummary):
    """Full test served to a student."""

    questions: list[QuestionRead]


class AnswerKeyEntryRead(BaseModel):
    question_id: uuid.UUID
    question_type: QuestionType
    marks: int
    correct_options: list[int] = []
    accepted_answers: list[str] = []
    explanation: str | None = None


class AnswerKeyRead(BaseModel):
    """GET /api/tests/{id}/answer-key — admin only."""

    test_id: uuid.UUID
    passing_score: float
    negative_marking_ratio: float
    partial_credit: bool
    entries: list[AnswerKeyEntryRead]
