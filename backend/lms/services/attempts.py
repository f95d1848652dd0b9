"""Server-side attempt lifecycle.

An attempt is created ``in-progress`` and makes exactly one terminal
transition (``completed``, ``auto-submitted`` or ``abandoned``). Every
terminal transition is a conditional ``UPDATE … WHERE status =
'in-progress'``; whoever loses the race gets ``AttemptTerminalError`` and
nothing they computed is written.

The server never trusts the client timer: an in-progress attempt whose
deadline (plus ``SUBMIT_GRACE_SECONDS``) has passed is auto-submitted from
its last auto-save as soon as anything reads it.
"""

from __future__ import annotations

import logging
import math
import random
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lms.config import settings
from lms.core.exceptions import (
    AnswerValidationError,
    AttemptIntegrityError,
    AttemptLimitError,
    AttemptTerminalError,
    UnknownQuestionError,
)
from lms.db.models import (
    Attempt,
    AttemptAnswer,
    AttemptStatusEnum,
    DifficultyEnum,
    Question,
    QuestionTypeEnum,
    Test,
    User,
)
from lms.schemas.attempt import (
    AutoSaveRequest,
    ChoiceAnswer,
    GradedAnswer,
    LedgerEntryData,
    PerformanceReport,
    ScoreResult,
    SubmissionPayload,
    SubmittedAnswer,
    SubmitType,
    TextAnswer,
)
from lms.schemas.test import Difficulty, QuestionType
from lms.services.analytics import analyze
from lms.services.grading import (
    FAILING_GRADE,
    AnswerKey,
    build_answer_key,
    check_answer_shape,
    grade,
    tally,
)

logger = logging.getLogger(__name__)


# ── Time helpers ─────────────────────────────────────────────────────────────


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def deadline_for(attempt: Attempt) -> datetime:
    return as_utc(attempt.start_time) + timedelta(minutes=attempt.test.duration_minutes)


def remaining_seconds(attempt: Attempt, now: datetime | None = None) -> int:
    if attempt.status.is_terminal:
        return 0
    now = now or utcnow()
    return max(0, math.ceil((deadline_for(attempt) - now).total_seconds()))


def is_overdue(attempt: Attempt, now: datetime | None = None) -> bool:
    """Past the deadline plus the submit grace period."""
    now = now or utcnow()
    grace = timedelta(seconds=settings.SUBMIT_GRACE_SECONDS)
    return now > deadline_for(attempt) + grace


def _elapsed_seconds(attempt: Attempt, now: datetime) -> int:
    elapsed = (now - as_utc(attempt.start_time)).total_seconds()
    return int(min(max(elapsed, 0), attempt.test.duration_minutes * 60))


# ── Ordering ─────────────────────────────────────────────────────────────────


def question_order_for(test: Test, seed: str) -> list[str]:
    """Question ids in the order served to one attempt."""
    order = [str(q.id) for q in test.questions]
    if test.randomize_questions:
        random.Random(seed).shuffle(order)
    return order


def option_order_for(question: Question, seed: str) -> list[int]:
    """Bank indices of *question*'s options in display order for one attempt."""
    order = list(range(len(question.options or [])))
    random.Random(f"{seed}:{question.id}").shuffle(order)
    return order


def ordered_questions(attempt: Attempt) -> list[Question]:
    by_id = {str(q.id): q for q in attempt.test.questions}
    order = attempt.question_order or list(by_id)
    return [by_id[qid] for qid in order if qid in by_id]


def answer_key_for(attempt: Attempt) -> AnswerKey:
    return build_answer_key(attempt.test, attempt.question_order)


# ── Start / resume ───────────────────────────────────────────────────────────


def _open_attempt(db: Session, test: Test, student: User) -> Attempt | None:
    return (
        db.query(Attempt)
        .filter(
            Attempt.test_id == test.id,
            Attempt.student_id == student.id,
            Attempt.status == AttemptStatusEnum.IN_PROGRESS,
        )
        .order_by(Attempt.attempt_number.desc())
        .first()
    )


def start_attempt(
    db: Session, test: Test, student: User, now: datetime | None = None
) -> tuple[Attempt, bool]:
    """Start a new attempt or resume the open one.

    Returns ``(attempt, resumed)``. Raises ``AttemptLimitError`` when every
    allowed attempt has been used.
    """
    now = now or utcnow()

    existing = _open_attempt(db, test, student)
    if existing is not None and not expire_if_due(db, existing, now):
        logger.info("Resuming attempt %s for student %s", existing.id, student.id)
        return existing, True

    used, last_number = (
        db.query(func.count(Attempt.id), func.max(Attempt.attempt_number))
        .filter(Attempt.test_id == test.id, Attempt.student_id == student.id)
        .one()
    )
    if used >= test.allowed_attempts:
        raise AttemptLimitError(
            f"All {test.allowed_attempts} allowed attempt(s) for this test are used"
        )

    attempt_id = uuid.uuid4()
    attempt = Attempt(
        id=attempt_id,
        test_id=test.id,
        student_id=student.id,
        attempt_number=(last_number or 0) + 1,
        status=AttemptStatusEnum.IN_PROGRESS,
        question_order=question_order_for(test, str(attempt_id)),
        start_time=now,
        max_marks=test.total_marks,
    )
    db.add(attempt)
    try:
        db.commit()
    except IntegrityError:
        # a concurrent start took this attempt number
        db.rollback()
        existing = _open_attempt(db, test, student)
        if existing is None:
            raise
        return existing, True
    db.refresh(attempt)
    logger.info(
        "Started attempt %s (#%d) on test %s for student %s",
        attempt.id, attempt.attempt_number, test.id, student.id,
    )
    return attempt, False


# ── Auto-save ────────────────────────────────────────────────────────────────


def save_snapshot(
    db: Session, attempt: Attempt, request: AutoSaveRequest, now: datetime | None = None
) -> datetime:
    """Overwrite the stored snapshot (last write wins).

    Every saved answer must fit its question, so a later resume or expiry
    can always restore it.
    """
    now = now or utcnow()
    if expire_if_due(db, attempt, now) or attempt.status.is_terminal:
        raise AttemptTerminalError(str(attempt.id), attempt.status.value)

    allowed = set(attempt.question_order or ())
    unknown = [qid for qid in request.snapshot if qid not in allowed]
    if unknown:
        logger.warning("Auto-save for %s names unknown question %s", attempt.id, unknown[0])
        raise UnknownQuestionError(unknown[0])

    key = answer_key_for(attempt)
    for qid, entry in request.snapshot.items():
        key_entry = key.get(uuid.UUID(qid))
        if key_entry is None:
            raise UnknownQuestionError(qid)
        try:
            check_answer_shape(key_entry, entry.answer)
        except AnswerValidationError as exc:
            logger.warning("Rejected auto-save for %s: %s", attempt.id, exc)
            raise

    data = {
        "current_index": request.current_index,
        "snapshot": {
            qid: entry.model_dump(mode="json") for qid, entry in request.snapshot.items()
        },
    }
    result = db.execute(
        update(Attempt)
        .where(Attempt.id == attempt.id, Attempt.status == AttemptStatusEnum.IN_PROGRESS)
        .values(auto_save_data=data, last_auto_save=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        db.refresh(attempt)
        raise AttemptTerminalError(str(attempt.id), attempt.status.value)
    db.commit()
    db.refresh(attempt)
    return now


def saved_snapshot(attempt: Attempt) -> tuple[dict[str, LedgerEntryData], int]:
    """The stored auto-save as ``(entries, current_index)``."""
    data = attempt.auto_save_data or {}
    entries = {
        qid: LedgerEntryData.model_validate(raw)
        for qid, raw in (data.get("snapshot") or {}).items()
    }
    return entries, int(data.get("current_index", 0))


def submission_from_snapshot(attempt: Attempt, now: datetime | None = None) -> SubmissionPayload:
    """Build an ``auto`` submission from the last auto-save.

    Snapshot answers that no longer fit their question are dropped (graded
    as skipped) so a bad snapshot cannot block expiry.
    """
    now = now or utcnow()
    key = answer_key_for(attempt)
    entries, _ = saved_snapshot(attempt)

    answers = []
    for key_entry in key.entries:
        saved = entries.get(str(key_entry.question_id))
        if saved is None:
            continue
        answer = saved.answer
        try:
            check_answer_shape(key_entry, answer)
        except AnswerValidationError as exc:
            logger.warning("Dropping saved answer on attempt %s: %s", attempt.id, exc)
            answer = None
        answers.append(
            SubmittedAnswer(
                question_id=key_entry.question_id,
                answer=answer,
                time_spent=saved.time_taken,
                flagged=saved.flagged,
            )
        )
    return SubmissionPayload(
        answers=answers,
        total_time_spent=_elapsed_seconds(attempt, now),
        submit_type=SubmitType.AUTO,
    )


# ── Terminal transitions ─────────────────────────────────────────────────────


def _answer_row(attempt: Attempt, position: int, graded: GradedAnswer) -> AttemptAnswer:
    answer = graded.answer
    return AttemptAnswer(
        attempt_id=attempt.id,
        question_id=graded.question_id,
        position=position,
        question_type=QuestionTypeEnum(graded.question_type.value),
        max_marks=graded.max_marks,
        difficulty=DifficultyEnum(graded.difficulty.value),
        topic=graded.topic,
        selected_options=list(answer.selected) if isinstance(answer, ChoiceAnswer) else [],
        text_answer=answer.value if isinstance(answer, TextAnswer) else None,
        is_correct=graded.is_correct,
        is_skipped=graded.is_skipped,
        flagged=graded.flagged,
        marks_obtained=graded.marks_obtained,
        time_spent=graded.time_spent,
    )


def finalize(
    db: Session,
    attempt: Attempt,
    payload: SubmissionPayload,
    now: datetime | None = None,
) -> ScoreResult:
    """Grade *payload* and make the attempt terminal.

    ``submit_type`` picks the final status: ``auto`` → auto-submitted,
    ``manual`` → completed. An ``auto`` submit only counts as such once the
    time is up; earlier ones are recorded as completed. Grading errors are
    raised before any write.
    """
    now = now or utcnow()
    if attempt.status.is_terminal:
        raise AttemptTerminalError(str(attempt.id), attempt.status.value)

    score = grade(payload, answer_key_for(attempt))
    status = AttemptStatusEnum.COMPLETED
    if payload.submit_type is SubmitType.AUTO:
        if remaining_seconds(attempt, now) > 0:
            logger.info(
                "Auto submit for %s arrived with time left, recording as completed",
                attempt.id,
            )
        else:
            status = AttemptStatusEnum.AUTO_SUBMITTED
    time_spent = min(payload.total_time_spent, attempt.test.duration_minutes * 60)

    result = db.execute(
        update(Attempt)
        .where(Attempt.id == attempt.id, Attempt.status == AttemptStatusEnum.IN_PROGRESS)
        .values(
            status=status,
            end_time=now,
            total_time_spent=time_spent,
            marks_obtained=score.total_points,
            max_marks=score.max_points,
            percentage=score.percentage,
            grade=score.grade,
            is_passed=score.is_passed,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        db.refresh(attempt)
        logger.warning("Rejected second terminal transition for attempt %s", attempt.id)
        raise AttemptTerminalError(str(attempt.id), attempt.status.value)

    for position, graded in enumerate(score.answers):
        db.add(_answer_row(attempt, position, graded))
    db.commit()
    db.refresh(attempt)

    logger.info(
        "Attempt %s %s: %.2f/%d (%.2f%%, %s)",
        attempt.id, status.value, score.total_points, score.max_points,
        score.percentage, score.grade,
    )
    return score


def expire_if_due(db: Session, attempt: Attempt, now: datetime | None = None) -> bool:
    """Auto-submit an overdue in-progress attempt. Returns ``True`` if it did."""
    now = now or utcnow()
    if attempt.status.is_terminal or not is_overdue(attempt, now):
        return False
    logger.info("Attempt %s is past its deadline, auto-submitting", attempt.id)
    try:
        finalize(db, attempt, submission_from_snapshot(attempt, now), now)
    except AttemptTerminalError:
        # finished concurrently
        return False
    return True


def expire_overdue(db: Session, now: datetime | None = None) -> int:
    """Auto-submit every overdue in-progress attempt; returns how many."""
    now = now or utcnow()
    expired = 0
    for attempt in (
        db.query(Attempt).filter(Attempt.status == AttemptStatusEnum.IN_PROGRESS).all()
    ):
        try:
            if expire_if_due(db, attempt, now):
                expired += 1
        except AttemptIntegrityError as exc:
            db.rollback()
            logger.warning("Could not auto-submit attempt %s: %s", attempt.id, exc)
    return expired


def abandon(db: Session, attempt: Attempt, now: datetime | None = None) -> Attempt:
    now = now or utcnow()
    if expire_if_due(db, attempt, now) or attempt.status.is_terminal:
        raise AttemptTerminalError(str(attempt.id), attempt.status.value)
    result = db.execute(
        update(Attempt)
        .where(Attempt.id == attempt.id, Attempt.status == AttemptStatusEnum.IN_PROGRESS)
        .values(
            status=AttemptStatusEnum.ABANDONED,
            end_time=now,
            total_time_spent=_elapsed_seconds(attempt, now),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        db.refresh(attempt)
        raise AttemptTerminalError(str(attempt.id), attempt.status.value)
    db.commit()
    db.refresh(attempt)
    logger.info("Attempt %s abandoned", attempt.id)
    return attempt


# ── Results ──────────────────────────────────────────────────────────────────


def _graded_from_row(row: AttemptAnswer) -> GradedAnswer:
    if row.is_skipped:
        answer = None
    elif row.text_answer is not None:
        answer = TextAnswer(value=row.text_answer)
    else:
        answer = ChoiceAnswer(selected=list(row.selected_options or []))
    return GradedAnswer(
        question_id=row.question_id,
        question_type=QuestionType(row.question_type.value),
        answer=answer,
        is_correct=row.is_correct,
        is_skipped=row.is_skipped,
        flagged=row.flagged,
        marks_obtained=row.marks_obtained,
        max_marks=row.max_marks,
        time_spent=row.time_spent,
        difficulty=Difficulty(row.difficulty.value),
        topic=row.topic,
    )


def stored_score(attempt: Attempt) -> ScoreResult:
    """The ``ScoreResult`` recorded at submission.

    Built from the stored answer rows and attempt totals only, so later
    edits to the questions or the test never change a past result.
    """
    graded = [
        _graded_from_row(row) for row in sorted(attempt.answers, key=lambda r: r.position)
    ]
    breakdown, difficulty_breakdown, topic_breakdown = tally(graded)
    return ScoreResult(
        answers=graded,
        total_points=attempt.marks_obtained or 0.0,
        max_points=attempt.max_marks or 0,
        percentage=attempt.percentage or 0.0,
        grade=attempt.grade or FAILING_GRADE,
        is_passed=bool(attempt.is_passed),
        breakdown=breakdown,
        difficulty_breakdown=difficulty_breakdown,
        topic_breakdown=topic_breakdown,
    )


def report_for(attempt: Attempt) -> tuple[ScoreResult, PerformanceReport]:
    """``ScoreResult`` and ``PerformanceReport`` of a graded attempt."""
    score = stored_score(attempt)
    return score, analyze(score)
