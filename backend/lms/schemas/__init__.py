"""Pydantic schemas — re‑exported for convenience."""

from lms.schemas.common import ErrorResponse  # noqa: F401
from lms.schemas.test import (  # noqa: F401
    Difficulty,
    QuestionType,
    QuestionRead,
    TestRead,
    TestSummary,
    AnswerKeyRead,
)
from lms.schemas.attempt import (  # noqa: F401
    AnswerValue,
    AttemptStatus,
    ChoiceAnswer,
    TextAnswer,
    SubmitType,
    SubmittedAnswer,
    SubmissionPayload,
    ScoreResult,
    PerformanceReport,
    AttemptRead,
    AttemptSession,
    AttemptResult,
)
