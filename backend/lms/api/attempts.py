"""Attempt lifecycle routes: start/resume, auto-save, submit, abandon, report."""

import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from lms.api.deps import get_current_user
from lms.api.tests import get_test_or_404
from lms.core.exceptions import (
    AnswerValidationError,
    AttemptError,
    AttemptIntegrityError,
    AttemptLimitError,
    AttemptTerminalError,
    UnknownQuestionError,
)
from lms.db.models import Attempt, AttemptStatusEnum, User
from lms.db.session import get_db
from lms.schemas.attempt import (
    AttemptAnswerRead,
    AttemptDetailRead,
    AttemptRead,
    AttemptResult,
    AttemptSession,
    AttemptStart,
    AutoSaveAck,
    AutoSaveRequest,
    ChoiceAnswer,
    SubmissionPayload,
    TextAnswer,
)
from lms.services import attempts as lifecycle
from lms.services.analytics import analyze
from lms.services.catalog import serve_test
from lms.services.grading import key_entry_for

logger = logging.getLogger(__name__)
router = APIRouter()


# ── helpers ───────────────────────────────────────────────────────────────────


def _http_error(exc: AttemptError) -> HTTPException:
    """Map a domain error onto its HTTP status."""
    if isinstance(exc, AnswerValidationError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, UnknownQuestionError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, AttemptTerminalError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, AttemptLimitError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, AttemptIntegrityError):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(exc))


def _get_own_attempt(db: Session, attempt_id: uuid.UUID, user: User) -> Attempt:
    attempt = (
        db.query(Attempt)
        .filter(Attempt.id == attempt_id, Attempt.student_id == user.id)
        .first()
    )
    if attempt is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Attempt not found"
        )
    return attempt


def _results_visible(attempt: Attempt) -> bool:
    return (
        attempt.status in (AttemptStatusEnum.COMPLETED, AttemptStatusEnum.AUTO_SUBMITTED)
        and attempt.test.show_results
    )


def _attempt_fields(attempt: Attempt, now: datetime | None = None) -> dict:
    fields = dict(
        id=attempt.id,
        test_id=attempt.test_id,
        student_id=attempt.student_id,
        attempt_number=attempt.attempt_number,
        status=attempt.status.value,
        start_time=lifecycle.as_utc(attempt.start_time),
        deadline=lifecycle.deadline_for(attempt),
        remaining_seconds=lifecycle.remaining_seconds(attempt, now),
        end_time=lifecycle.as_utc(attempt.end_time) if attempt.end_time else None,
        total_time_spent=attempt.total_time_spent,
        last_auto_save=(
            lifecycle.as_utc(attempt.last_auto_save) if attempt.last_auto_save else None
        ),
    )
    if _results_visible(attempt):
        fields.update(
            marks_obtained=attempt.marks_obtained,
            max_marks=attempt.max_marks,
            percentage=attempt.percentage,
            grade=attempt.grade,
            is_passed=attempt.is_passed,
        )
    return fields


def _attempt_read(attempt: Attempt, now: datetime | None = None) -> AttemptRead:
    return AttemptRead(**_attempt_fields(attempt, now))


def _attempt_session(attempt: Attempt, resumed: bool, now: datetime | None = None) -> AttemptSession:
    entries, current_index = lifecycle.saved_snapshot(attempt)
    return AttemptSession(
        **_attempt_fields(attempt, now),
        is_resume=resumed,
        test=serve_test(attempt.test, attempt),
        auto_save_data=entries or None,
        current_index=current_index,
    )


def _attempt_detail(attempt: Attempt) -> AttemptDetailRead:
    visible = _results_visible(attempt)
    questions = {q.id: q for q in attempt.test.questions}
    answers = []
    for row in sorted(attempt.answers, key=lambda a: a.position):
        question = questions.get(row.question_id) or row.question
        if row.is_skipped:
            answer = None
        elif row.text_answer is not None:
            answer = TextAnswer(value=row.text_answer)
        else:
            answer = ChoiceAnswer(selected=list(row.selected_options or []))
        read = AttemptAnswerRead(
            question_id=row.question_id,
            question_text=question.text,
            answer=answer,
            is_correct=row.is_correct if visible else False,
            is_skipped=row.is_skipped,
            flagged=row.flagged,
            marks_obtained=row.marks_obtained if visible else 0.0,
            time_spent=row.time_spent,
        )
        if visible:
            try:
                entry = key_entry_for(question)
            except AttemptIntegrityError as exc:
                # edited into an unusable key since grading; show the answer only
                logger.warning("No answer key for question %s: %s", row.question_id, exc)
            else:
                read.correct_options = sorted(entry.correct_options)
                read.accepted_answers = list(entry.accepted_answers)
                read.explanation = entry.explanation
        answers.append(read)
    return AttemptDetailRead(**_attempt_fields(attempt), answers=answers)


# ── start / resume ────────────────────────────────────────────────────────────


@router.post("/", response_model=AttemptSession, status_code=status.HTTP_201_CREATED)
def start_attempt(
    body: AttemptStart,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Start a new attempt (201) or resume the open one (200)."""
    test = get_test_or_404(db, body.test_id)
    try:
        attempt, resumed = lifecycle.start_attempt(db, test, current_user)
    except AttemptError as exc:
        raise _http_error(exc)
    if resumed:
        response.status_code = status.HTTP_200_OK
    return _attempt_session(attempt, resumed)


@router.get("/", response_model=list[AttemptRead])
def list_attempts(
    skip: int = 0,
    limit: int = 20,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List the current student's attempts, newest first."""
    rows = (
        db.query(Attempt)
        .filter(Attempt.student_id == current_user.id)
        .order_by(Attempt.start_time.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    now = lifecycle.utcnow()
    for attempt in rows:
        lifecycle.expire_if_due(db, attempt, now)
    return [_attempt_read(a, now) for a in rows]


@router.get("/{attempt_id}", response_model=AttemptDetailRead)
def get_attempt(
    attempt_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Attempt with per-question answers; correctness only once results are out."""
    attempt = _get_own_attempt(db, attempt_id, current_user)
    lifecycle.expire_if_due(db, attempt)
    return _attempt_detail(attempt)


# ── auto-save ─────────────────────────────────────────────────────────────────


@router.put("/{attempt_id}/autosave", response_model=AutoSaveAck)
def autosave_attempt(
    attempt_id: uuid.UUID,
    body: AutoSaveRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Overwrite the stored snapshot with the client's full ledger."""
    attempt = _get_own_attempt(db, attempt_id, current_user)
    try:
        saved_at = lifecycle.save_snapshot(db, attempt, body)
    except AttemptError as exc:
        raise _http_error(exc)
    return AutoSaveAck(attempt_id=attempt.id, last_auto_save=saved_at)


# ── terminal transitions ──────────────────────────────────────────────────────


@router.post("/{attempt_id}/submit", response_model=AttemptResult)
def submit_attempt(
    attempt_id: uuid.UUID,
    body: SubmissionPayload,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Grade the submission and close the attempt.

    Manual submits end ``completed``, timer submits ``auto-submitted``. A
    submit for a terminal (or overdue, hence auto-submitted) attempt is 409.
    """
    attempt = _get_own_attempt(db, attempt_id, current_user)
    try:
        if lifecycle.expire_if_due(db, attempt):
            raise AttemptTerminalError(str(attempt.id), attempt.status.value)
        score = lifecycle.finalize(db, attempt, body)
    except AttemptError as exc:
        raise _http_error(exc)

    if not attempt.test.show_results:
        return AttemptResult(attempt=_attempt_read(attempt))
    return AttemptResult(
        attempt=_attempt_read(attempt),
        score=score,
        report=analyze(score),
    )


@router.post("/{attempt_id}/abandon", response_model=AttemptRead)
def abandon_attempt(
    attempt_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    attempt = _get_own_attempt(db, attempt_id, current_user)
    try:
        lifecycle.abandon(db, attempt)
    except AttemptError as exc:
        raise _http_error(exc)
    return _attempt_read(attempt)


# ── results ───────────────────────────────────────────────────────────────────


@router.get("/{attempt_id}/report", response_model=AttemptResult)
def get_report(
    attempt_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Score and performance report of a graded attempt."""
    attempt = _get_own_attempt(db, attempt_id, current_user)
    lifecycle.expire_if_due(db, attempt)
    if attempt.status in (AttemptStatusEnum.IN_PROGRESS, AttemptStatusEnum.ABANDONED):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Attempt is {attempt.status.value}; no result available",
        )
    if not attempt.test.show_results:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Results for this test are not released",
        )
    score, report = lifecycle.report_for(attempt)
    return AttemptResult(attempt=_attempt_read(attempt), score=score, report=report)
