"""SQLAlchemy ORM models for the test-attempt platform.

Tables
------
- users           – student / admin identities (tokens issued elsewhere)
- tests           – timed tests with pass / retake / marking policy
- questions       – question bank entries, including the answer key
- test_questions  – ordered test ↔ question membership
- attempts        – one student's timed run through a test
- attempt_answers – per‑question graded answers of a finished attempt
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lms.db.session import Base


# ── helpers ───────────────────────────────────────────────────────────────────


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> uuid.UUID:
    return uuid.uuid4()


# ── Enums (stored as VARCHAR via SQLAlchemy Enum) ─────────────────────────────


class RoleEnum(str, enum.Enum):
    STUDENT = "student"
    ADMIN = "admin"


class QuestionTypeEnum(str, enum.Enum):
    SINGLE_CHOICE = "single-choice"
    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"
    NUMERICAL = "numerical"
    FILL_IN_BLANK = "fill-in-blank"


class DifficultyEnum(str, enum.Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class AttemptStatusEnum(str, enum.Enum):
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    AUTO_SUBMITTED = "auto-submitted"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self is not AttemptStatusEnum.IN_PROGRESS


# shared by questions and attempt_answers (one database enum type each)
question_type_column = Enum(
    QuestionTypeEnum,
    name="question_type_enum",
    values_callable=lambda e: [m.value for m in e],
)
difficulty_column = Enum(
    DifficultyEnum,
    name="difficulty_enum",
    values_callable=lambda e: [m.value for m in e],
)


# ── Users ─────────────────────────────────────────────────────────────────────


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    full_name: Mapped[str] = mapped_column(String(255))
    role: Mapped[RoleEnum] = mapped_column(
        Enum(RoleEnum, name="role_enum", values_callable=lambda e: [m.value for m in e]),
        default=RoleEnum.STUDENT,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    attempts: Mapped[list["Attempt"]] = relationship(back_populates="student")


# ── Questions ─────────────────────────────────────────────────────────────────


class Question(Base):
    __tablename__ = "questions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    text: Mapped[str] = mapped_column(Text)
    question_type: Mapped[QuestionTypeEnum] = mapped_column(
        question_type_column, default=QuestionTypeEnum.SINGLE_CHOICE
    )
    # [{"text": ..., "is_correct": bool, "image_url": ...}] for choice types,
    # [{"text": accepted answer}] for numerical / fill-in-blank
    options: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    marks: Mapped[int] = mapped_column(Integer, default=1)
    difficulty: Mapped[DifficultyEnum] = mapped_column(
        difficulty_column, default=DifficultyEnum.MEDIUM
    )
    subject: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    class_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    chapter: Mapped[str | None] = mapped_column(String(200), nullable=True)
    topic: Mapped[str | None] = mapped_column(String(200), nullable=True)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
    hint: Mapped[str | None] = mapped_column(Text, nullable=True)
    estimated_time_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )


# ── Tests ─────────────────────────────────────────────────────────────────────


class Test(Base):
    __tablename__ = "tests"
    __test__ = False  # not a pytest class

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    title: Mapped[str] = mapped_column(String(300))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer)
    passing_score: Mapped[float] = mapped_column(Float, default=40.0)  # percentage
    allowed_attempts: Mapped[int] = mapped_column(Integer, default=1)
    randomize_questions: Mapped[bool] = mapped_column(Boolean, default=False)
    randomize_options: Mapped[bool] = mapped_column(Boolean, default=False)
    show_results: Mapped[bool] = mapped_column(Boolean, default=True)
    negative_marking_ratio: Mapped[float] = mapped_column(Float, default=0.0)
    partial_credit: Mapped[bool] = mapped_column(Boolean, default=False)
    is_published: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    test_questions: Mapped[list["TestQuestion"]] = relationship(
        back_populates="test",
        cascade="all, delete-orphan",
        order_by="TestQuestion.position",
    )

    @property
    def questions(self) -> list["Question"]:
        return [tq.question for tq in self.test_questions]

    @property
    def total_marks(self) -> int:
        return sum(q.marks for q in self.questions)


class TestQuestion(Base):
    """Join table between Test and Question with ordering."""

    __tablename__ = "test_questions"
    __test__ = False

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    test_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tests.id")
    )
    question_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("questions.id")
    )
    position: Mapped[int] = mapped_column(Integer, default=0)

    test: Mapped["Test"] = relationship(back_populates="test_questions")
    question: Mapped["Question"] = relationship("Question")

    __table_args__ = (
        UniqueConstraint("test_id", "question_id", name="uq_test_question"),
    )


# ── Attempts ──────────────────────────────────────────────────────────────────


class Attempt(Base):
    __tablename__ = "attempts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    test_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tests.id"), index=True
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), index=True
    )
    attempt_number: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[AttemptStatusEnum] = mapped_column(
        Enum(
            AttemptStatusEnum,
            name="attempt_status_enum",
            values_callable=lambda e: [m.value for m in e],
        ),
        default=AttemptStatusEnum.IN_PROGRESS,
        index=True,
    )
    # question ids in the order served to this student
    question_order: Mapped[list[str]] = mapped_column(JSON, default=list)
    start_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    end_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    total_time_spent: Mapped[int] = mapped_column(Integer, default=0)
    marks_obtained: Mapped[float] = mapped_column(Float, default=0.0)
    max_marks: Mapped[int] = mapped_column(Integer, default=0)
    percentage: Mapped[float] = mapped_column(Float, default=0.0)
    grade: Mapped[str | None] = mapped_column(String(4), nullable=True)
    is_passed: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_save_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    last_auto_save: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    student: Mapped["User"] = relationship(back_populates="attempts")
    test: Mapped["Test"] = relationship("Test")
    answers: Mapped[list["AttemptAnswer"]] = relationship(
        back_populates="attempt", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint(
            "test_id", "student_id", "attempt_number", name="uq_attempt_number"
        ),
    )


class AttemptAnswer(Base):
    """Individual graded answer within an attempt.

    Holds everything grading decided (type, marks, difficulty, topic) so a
    report never depends on later edits to the question bank.
    """

    __tablename__ = "attempt_answers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=_uuid
    )
    attempt_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("attempts.id")
    )
    question_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("questions.id")
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    question_type: Mapped[QuestionTypeEnum] = mapped_column(
        question_type_column, default=QuestionTypeEnum.SINGLE_CHOICE
    )
    max_marks: Mapped[int] = mapped_column(Integer, default=0)
    difficulty: Mapped[DifficultyEnum] = mapped_column(
        difficulty_column, default=DifficultyEnum.MEDIUM
    )
    topic: Mapped[str] = mapped_column(String(200), default="General")
    selected_options: Mapped[list[int]] = mapped_column(JSON, default=list)
    text_answer: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False)
    is_skipped: Mapped[bool] = mapped_column(Boolean, default=False)
    flagged: Mapped[bool] = mapped_column(Boolean, default=False)
    marks_obtained: Mapped[float] = mapped_column(Float, default=0.0)
    time_spent: Mapped[int] = mapped_column(Integer, default=0)

    attempt: Mapped["Attempt"] = relationship(back_populates="answers")
    question: Mapped["Question"] = relationship("Question")
