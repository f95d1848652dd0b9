"""Test catalog routes (no answer data leaves here except the admin key)."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from lms.api.deps import get_current_user, require_admin
from lms.core.exceptions import AttemptIntegrityError
from lms.db.models import Test, User
from lms.db.session import get_db
from lms.schemas.test import AnswerKeyRead, TestRead, TestSummary
from lms.services.catalog import answer_key_read, serve_test, summarize_test

router = APIRouter()


def get_test_or_404(db: Session, test_id: uuid.UUID, *, published_only: bool = True) -> Test:
    query = db.query(Test).filter(Test.id == test_id)
    if published_only:
        query = query.filter(Test.is_published.is_(True))
    test = query.first()
    if test is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Test not found")
    return test


@router.get("/", response_model=list[TestSummary])
def list_tests(
    skip: int = 0,
    limit: int = 50,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List published tests."""
    rows = (
        db.query(Test)
        .filter(Test.is_published.is_(True))
        .order_by(Test.created_at.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    return [summarize_test(t) for t in rows]


@router.get("/{test_id}", response_model=TestRead)
def get_test(
    test_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Client-safe test payload: no correctness flags, no accepted answers."""
    return serve_test(get_test_or_404(db, test_id))


@router.get("/{test_id}/answer-key", response_model=AnswerKeyRead)
def get_answer_key(
    test_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    test = get_test_or_404(db, test_id, published_only=False)
    try:
        return answer_key_read(test)
    except AttemptIntegrityError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
