"""Attempt, submission and result schemas."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from lms.schemas.test import Difficulty, QuestionType, TestRead


class AttemptStatus(str, Enum):
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    AUTO_SUBMITTED = "auto-submitted"
    ABANDONED = "abandoned"


class SubmitType(str, Enum):
    MANUAL = "manual"  # student pressed submit
    AUTO = "auto"  # timer expired


# ── Answer values (tagged by kind) ───────────────────────────────────────────


class ChoiceAnswer(BaseModel):
    """Selected option indices for single / multiple-choice and true-false."""

    kind: Literal["choice"] = "choice"
    selected: list[Annotated[int, Field(ge=0)]]

    model_config = {"frozen": True}


class TextAnswer(BaseModel):
    """Free text for numerical and fill-in-blank questions."""

    kind: Literal["text"] = "text"
    value: str

    model_config = {"frozen": True}


AnswerValue = Annotated[Union[ChoiceAnswer, TextAnswer], Field(discriminator="kind")]


# ── Auto-save ────────────────────────────────────────────────────────────────


class LedgerEntryData(BaseModel):
    """One question's slot in a ledger snapshot."""

    answer: AnswerValue | None = None
    time_taken: int = Field(default=0, ge=0)
    flagged: bool = False
    visited: bool = False


class AutoSaveRequest(BaseModel):
    """PUT /api/attempts/{id}/autosave — full ledger snapshot (overwrite)."""

    snapshot: dict[str, LedgerEntryData]
    current_index: int = 0


class AutoSaveAck(BaseModel):
    attempt_id: uuid.UUID
    last_auto_save: datetime


# ── Submission ───────────────────────────────────────────────────────────────


class SubmittedAnswer(BaseModel):
    question_id: uuid.UUID
    answer: AnswerValue | None = None
    time_spent: int = Field(default=0, ge=0)
    flagged: bool = False


class SubmissionPayload(BaseModel):
    """POST /api/attempts/{id}/submit — every question of the test, unanswered
    ones with ``answer=None``."""

    answers: list[SubmittedAnswer]
    total_time_spent: int = Field(default=0, ge=0)
    submit_type: SubmitType = SubmitType.MANUAL


# ── Scoring results ──────────────────────────────────────────────────────────


class Breakdown(BaseModel):
    correct: int = 0
    incorrect: int = 0
    skipped: int = 0
    flagged: int = 0


class BucketScore(BaseModel):
    """Correct / total / percentage for one difficulty bucket."""

    correct: int = 0
    total: int = 0
    percentage: float = 0.0


class TopicScore(BucketScore):
    """Per‑topic score in an attempt result."""

    topic: str


class GradedAnswer(BaseModel):
    question_id: uuid.UUID
    question_type: QuestionType
    answer: AnswerValue | None = None
    is_correct: bool
    is_skipped: bool
    flagged: bool = False
    marks_obtained: float
    max_marks: int
    time_spent: int = 0
    difficulty: Difficulty
    topic: str


class ScoreResult(BaseModel):
    """Output of the scoring engine for one submission."""

    answers: list[GradedAnswer]
    total_points: float
    max_points: int
    percentage: float
    grade: str
    is_passed: bool
    breakdown: Breakdown
    difficulty_breakdown: dict[Difficulty, BucketScore]
    topic_breakdown: list[TopicScore]


# ── Analytics ────────────────────────────────────────────────────────────────


class QuestionTime(BaseModel):
    question_id: uuid.UUID
    time: int


class Recommendation(BaseModel):
    type: str
    title: str
    description: str
    priority: Literal["high", "medium", "low"]


class PerformanceReport(BaseModel):
    accuracy: float
    average_time_per_question: float
    total_time_spent: int
    fastest_question: QuestionTime | None = None
    slowest_question: QuestionTime | None = None
    strengths: list[str] = []
    improvement_areas: list[str] = []
    overall_feedback: str
    motivational_message: str
    recommendations: list[Recommendation] = []


# ── Attempts ─────────────────────────────────────────────────────────────────


class AttemptStart(BaseModel):
    """POST /api/attempts — start (or resume) an attempt on a test."""

    test_id: uuid.UUID


class AttemptRead(BaseModel):
    """Attempt state; score fields stay empty until the attempt is terminal
    and the test shows results."""

    id: uuid.UUID
    test_id: uuid.UUID
    student_id: uuid.UUID
    attempt_number: int
    status: AttemptStatus
    start_time: datetime
    deadline: datetime
    remaining_seconds: int
    end_time: datetime | None = None
    total_time_spent: int = 0
    last_auto_save: datetime | None = None
    marks_obtained: float | None = None
    max_marks: int | None = None
    percentage: float | None = None
    grade: str | None = None
    is_passed: bool | None = None


class AttemptSession(AttemptRead):
    """Returned when a session starts or resumes: the test laid out for this
    attempt plus the last auto-saved ledger."""

    is_resume: bool = False
    test: TestRead
    auto_save_data: dict[str, LedgerEntryData] | None = None
    current_index: int = 0


class AttemptAnswerRead(BaseModel):
    """Single answer within an attempt detail view."""

    question_id: uuid.UUID
    question_text: str
    answer: AnswerValue | None = None
    is_correct: bool
    is_skipped: bool
    flagged: bool
    marks_obtained: float
    time_spent: int
    correct_options: list[int] = []
    accepted_answers: list[str] = []
    explanation: str | None = None


class AttemptDetailRead(AttemptRead):
    """Attempt with full answer details for review."""

    answers: list[AttemptAnswerRead] = []


class AttemptResult(BaseModel):
    """Graded outcome returned by submit and report endpoints."""

    attempt: AttemptRead
    score: ScoreResult | None = None  # withheld when the test hides results
    report: PerformanceReport | None = None
