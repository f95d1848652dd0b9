"""Scoring engine: turns a submission into a graded ``ScoreResult``.

Grading is a pure function of (submission, answer key). It dispatches on
the question type recorded in the key and on the tagged answer value,
never on the runtime shape of what the client sent.

Rules per question type:
  - single-choice / true-false: exactly one pick, equal to the correct
    option. Full marks or zero.
  - multiple-choice: the picked set must equal the correct set. With
    ``partial_credit`` on, a non-empty subset without wrong picks earns a
    proportional share of the marks (the answer still counts as incorrect).
  - numerical / fill-in-blank: trimmed, case-folded text equal to one of
    the accepted answers; numerical answers also match by value.
  - nothing answered: zero marks, counted as skipped.
Wrong (answered) questions lose ``marks * negative_marking_ratio``; the
total never drops below zero.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Iterable

from lms.core.exceptions import (
    AnswerValidationError,
    AttemptIntegrityError,
    UnknownQuestionError,
)
from lms.db.models import Question, Test
from lms.schemas.attempt import (
    AnswerValue,
    Breakdown,
    BucketScore,
    ChoiceAnswer,
    GradedAnswer,
    ScoreResult,
    SubmissionPayload,
    SubmittedAnswer,
    TextAnswer,
    TopicScore,
)
from lms.schemas.test import Difficulty, QuestionType

logger = logging.getLogger(__name__)

# (minimum percentage, letter), checked top-down
GRADE_TABLE: tuple[tuple[float, str], ...] = (
    (90.0, "A+"),
    (85.0, "A"),
    (80.0, "A-"),
    (75.0, "B+"),
    (70.0, "B"),
    (65.0, "B-"),
    (60.0, "C+"),
    (55.0, "C"),
    (50.0, "C-"),
    (45.0, "D"),
)
FAILING_GRADE = "F"
DEFAULT_TOPIC = "General"


# ── Answer key ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class KeyEntry:
    """Authoritative grading data for one question."""

    question_id: uuid.UUID
    question_type: QuestionType
    marks: int
    option_count: int = 0
    correct_options: frozenset[int] = frozenset()
    accepted_answers: tuple[str, ...] = ()
    difficulty: Difficulty = Difficulty.MEDIUM
    topic: str = DEFAULT_TOPIC
    explanation: str | None = None


@dataclass(frozen=True)
class AnswerKey:
    """Immutable answer key for one test, in the order questions were served."""

    entries: tuple[KeyEntry, ...]
    passing_score: float
    negative_marking_ratio: float = 0.0
    partial_credit: bool = False
    _index: dict[uuid.UUID, KeyEntry] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        self._index.update({e.question_id: e for e in self.entries})

    def get(self, question_id: uuid.UUID) -> KeyEntry | None:
        return self._index.get(question_id)

    def __contains__(self, question_id: object) -> bool:
        return question_id in self._index

    @property
    def max_points(self) -> int:
        return sum(e.marks for e in self.entries)


def validate_key_entry(entry: KeyEntry) -> None:
    """Raise ``AttemptIntegrityError`` if the entry violates its type's key rule."""
    qtype = entry.question_type
    if entry.marks <= 0:
        raise AttemptIntegrityError(f"Question {entry.question_id} has non-positive marks")
    if qtype.is_exclusive and len(entry.correct_options) != 1:
        raise AttemptIntegrityError(
            f"Question {entry.question_id} ({qtype.value}) needs exactly one correct option"
        )
    if qtype is QuestionType.MULTIPLE_CHOICE and not entry.correct_options:
        raise AttemptIntegrityError(
            f"Question {entry.question_id} (multiple-choice) has no correct option"
        )
    if not qtype.is_choice and not entry.accepted_answers:
        raise AttemptIntegrityError(
            f"Question {entry.question_id} ({qtype.value}) has no accepted answer"
        )


def key_entry_for(question: Question) -> KeyEntry:
    qtype = QuestionType(question.question_type.value)
    options = question.options or []
    if qtype.is_choice:
        entry = KeyEntry(
            question_id=question.id,
            question_type=qtype,
            marks=question.marks,
            option_count=len(options),
            correct_options=frozenset(
                i for i, opt in enumerate(options) if opt.get("is_correct")
            ),
            difficulty=Difficulty(question.difficulty.value),
            topic=question.topic or question.chapter or DEFAULT_TOPIC,
            explanation=question.explanation,
        )
    else:
        entry = KeyEntry(
            question_id=question.id,
            question_type=qtype,
            marks=question.marks,
            accepted_answers=tuple(
                str(opt["text"]) for opt in options if str(opt.get("text", "")).strip()
            ),
            difficulty=Difficulty(question.difficulty.value),
            topic=question.topic or question.chapter or DEFAULT_TOPIC,
            explanation=question.explanation,
        )
    validate_key_entry(entry)
    return entry


def build_answer_key(test: Test, question_order: Iterable[str] | None = None) -> AnswerKey:
    """Build the answer key for *test*, optionally in a per-attempt order."""
    questions = {str(q.id): q for q in test.questions}
    order = list(question_order) if question_order else list(questions)
    entries = tuple(key_entry_for(questions[qid]) for qid in order if qid in questions)
    return AnswerKey(
        entries=entries,
        passing_score=test.passing_score,
        negative_marking_ratio=test.negative_marking_ratio or 0.0,
        partial_credit=bool(test.partial_credit),
    )


# ── Helpers ──────────────────────────────────────────────────────────────────


def letter_grade(percentage: float) -> str:
    for minimum, letter in GRADE_TABLE:
        if percentage >= minimum:
            return letter
    return FAILING_GRADE


def _pct(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def _normalise_text(text: str) -> str:
    return " ".join(text.strip().casefold().split())


def _as_number(text: str) -> Decimal | None:
    try:
        value = Decimal(text.strip().replace(",", ""))
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def is_answered(answer: AnswerValue | None) -> bool:
    if answer is None:
        return False
    if isinstance(answer, ChoiceAnswer):
        return bool(answer.selected)
    return bool(answer.value.strip())


def check_answer_shape(entry: KeyEntry, answer: AnswerValue | None) -> None:
    """Raise ``AnswerValidationError`` when *answer* cannot belong to *entry*."""
    if answer is None:
        return
    qtype = entry.question_type
    if qtype.is_choice:
        if not isinstance(answer, ChoiceAnswer):
            raise AnswerValidationError(
                f"Question {entry.question_id} ({qtype.value}) expects selected options"
            )
        picks = set(answer.selected)
        if qtype.is_exclusive and len(picks) > 1:
            raise AnswerValidationError(
                f"Question {entry.question_id} ({qtype.value}) accepts a single option"
            )
        out_of_range = [i for i in picks if i >= entry.option_count]
        if out_of_range:
            raise AnswerValidationError(
                f"Question {entry.question_id} has no option {out_of_range[0]}"
            )
    elif not isinstance(answer, TextAnswer):
        raise AnswerValidationError(
            f"Question {entry.question_id} ({qtype.value}) expects a text answer"
        )


# ── Per-question grading ─────────────────────────────────────────────────────


def _text_matches(entry: KeyEntry, value: str) -> bool:
    given = _normalise_text(value)
    if any(given == _normalise_text(a) for a in entry.accepted_answers):
        return True
    if entry.question_type is QuestionType.NUMERICAL:
        number = _as_number(value)
        if number is not None:
            return any(number == _as_number(a) for a in entry.accepted_answers)
    return False


def grade_question(
    entry: KeyEntry,
    answer: AnswerValue | None,
    *,
    negative_marking_ratio: float = 0.0,
    partial_credit: bool = False,
) -> tuple[bool, float]:
    """Return ``(is_correct, marks_obtained)`` for one answered question."""
    check_answer_shape(entry, answer)
    if not is_answered(answer):
        return False, 0.0

    penalty = -round(entry.marks * negative_marking_ratio, 2) if negative_marking_ratio else 0.0

    if isinstance(answer, ChoiceAnswer):
        picks = set(answer.selected)
        if picks == entry.correct_options:
            return True, float(entry.marks)
        if (
            partial_credit
            and entry.question_type is QuestionType.MULTIPLE_CHOICE
            and picks < entry.correct_options
        ):
            return False, round(entry.marks * len(picks) / len(entry.correct_options), 2)
        return False, penalty

    if _text_matches(entry, answer.value):
        return True, float(entry.marks)
    return False, penalty


# ── Whole submission ─────────────────────────────────────────────────────────


def _index_submission(
    answers: Iterable[SubmittedAnswer], key: AnswerKey
) -> dict[uuid.UUID, SubmittedAnswer]:
    indexed: dict[uuid.UUID, SubmittedAnswer] = {}
    for item in answers:
        if item.question_id not in key:
            raise UnknownQuestionError(str(item.question_id))
        if item.question_id in indexed:
            raise AnswerValidationError(
                f"Question {item.question_id} appears more than once"
            )
        indexed[item.question_id] = item
    return indexed


def validate_submission(submission: SubmissionPayload, key: AnswerKey) -> None:
    """Reject unknown questions and malformed answers without grading."""
    indexed = _index_submission(submission.answers, key)
    for qid, item in indexed.items():
        check_answer_shape(key.get(qid), item.answer)


def tally(
    graded: Iterable[GradedAnswer],
) -> tuple[Breakdown, dict[Difficulty, BucketScore], list[TopicScore]]:
    """Outcome counts, difficulty buckets and per-topic scores of graded answers."""
    breakdown = Breakdown()
    difficulty_tallies = {d: {"correct": 0, "total": 0} for d in Difficulty}
    topic_tallies: dict[str, dict[str, int]] = {}

    for answer in graded:
        if answer.is_skipped:
            breakdown.skipped += 1
        elif answer.is_correct:
            breakdown.correct += 1
        else:
            breakdown.incorrect += 1
        if answer.flagged:
            breakdown.flagged += 1

        bucket = difficulty_tallies[answer.difficulty]
        bucket["total"] += 1
        topic = topic_tallies.setdefault(answer.topic, {"correct": 0, "total": 0})
        topic["total"] += 1
        if answer.is_correct:
            bucket["correct"] += 1
            topic["correct"] += 1

    difficulty_breakdown = {
        d: BucketScore(
            correct=t["correct"], total=t["total"], percentage=_pct(t["correct"], t["total"])
        )
        for d, t in difficulty_tallies.items()
    }
    topic_breakdown = [
        TopicScore(
            topic=name,
            correct=t["correct"],
            total=t["total"],
            percentage=_pct(t["correct"], t["total"]),
        )
        for name, t in topic_tallies.items()
    ]
    return breakdown, difficulty_breakdown, topic_breakdown


def grade(submission: SubmissionPayload, key: AnswerKey) -> ScoreResult:
    """Grade *submission* against *key*.

    Questions in the key that the submission omits are graded as skipped.
    Raises ``UnknownQuestionError`` / ``AnswerValidationError`` before any
    marks are computed.
    """
    validate_submission(submission, key)
    indexed = _index_submission(submission.answers, key)

    graded: list[GradedAnswer] = []
    raw_total = 0.0

    for entry in key.entries:
        item = indexed.get(entry.question_id)
        answer = item.answer if item else None
        answered = is_answered(answer)

        is_correct, marks = grade_question(
            entry,
            answer,
            negative_marking_ratio=key.negative_marking_ratio,
            partial_credit=key.partial_credit,
        )
        raw_total += marks

        graded.append(
            GradedAnswer(
                question_id=entry.question_id,
                question_type=entry.question_type,
                answer=answer if answered else None,
                is_correct=is_correct,
                is_skipped=not answered,
                flagged=item.flagged if item else False,
                marks_obtained=marks,
                max_marks=entry.marks,
                time_spent=item.time_spent if item else 0,
                difficulty=entry.difficulty,
                topic=entry.topic,
            )
        )

    max_points = key.max_points
    total_points = round(max(raw_total, 0.0), 2)
    raw_percentage = total_points / max_points * 100 if max_points else 0.0
    percentage = round(raw_percentage, 2)

    logger.debug(
        "Graded %d questions: %.2f/%d (%.2f%%)",
        len(graded), total_points, max_points, percentage,
    )

    breakdown, difficulty_breakdown, topic_breakdown = tally(graded)
    return ScoreResult(
        answers=graded,
        total_points=total_points,
        max_points=max_points,
        percentage=percentage,
        grade=letter_grade(raw_percentage),
        is_passed=raw_percentage >= key.passing_score,
        breakdown=breakdown,
        difficulty_breakdown=difficulty_breakdown,
        topic_breakdown=topic_breakdown,
    )
