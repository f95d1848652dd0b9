"""Builds the final submission from the answer ledger.

Manual submit and timer expiry both go through ``assemble``; only
``submit_type`` differs.
"""

from __future__ import annotations

import uuid

from lms.core.exceptions import AnswerValidationError
from lms.schemas.attempt import (
    ChoiceAnswer,
    SubmissionPayload,
    SubmittedAnswer,
    SubmitType,
    TextAnswer,
)
from lms.session.ledger import AnswerLedger, LedgerEntry


def _check_entry(entry: LedgerEntry) -> None:
    answer = entry.answer
    if answer is None:
        return
    qtype = entry.question_type
    if qtype.is_choice:
        if not isinstance(answer, ChoiceAnswer):
            raise AnswerValidationError(
                f"Question {entry.question_id} ({qtype.value}) expects selected options"
            )
        if qtype.is_exclusive and len(set(answer.selected)) > 1:
            raise AnswerValidationError(
                f"Question {entry.question_id} ({qtype.value}) accepts a single option"
            )
    elif not isinstance(answer, TextAnswer):
        raise AnswerValidationError(
            f"Question {entry.question_id} ({qtype.value}) expects a text answer"
        )


def assemble(
    ledger: AnswerLedger,
    elapsed_seconds: int,
    submit_type: SubmitType = SubmitType.MANUAL,
) -> SubmissionPayload:
    """Return the payload for every question in ledger order.

    Unanswered questions are included with ``answer=None``. Raises
    ``AnswerValidationError`` before anything leaves the client.
    """
    snapshot = ledger.snapshot()
    answers = []
    for entry in snapshot:
        _check_entry(entry)
        answers.append(
            SubmittedAnswer(
                question_id=uuid.UUID(entry.question_id),
                answer=entry.answer,
                time_spent=entry.time_taken,
                flagged=entry.flagged,
            )
        )
    return SubmissionPayload(
        answers=answers,
        total_time_spent=max(0, int(elapsed_seconds)),
        submit_type=submit_type,
    )
