"""Tests for assembling the final submission payload."""

import uuid

import pytest

from lms.schemas.attempt import ChoiceAnswer, SubmitType, TextAnswer
from lms.schemas.test import QuestionType
from lms.session.ledger import AnswerLedger
from lms.session.submission import assemble

from _helpers import question_read


@pytest.fixture
def ledger_and_ids():
    questions = [
        question_read(QuestionType.SINGLE_CHOICE, position=0),
        question_read(QuestionType.MULTIPLE_CHOICE, position=1),
        question_read(QuestionType.NUMERICAL, position=2),
        question_read(QuestionType.TRUE_FALSE, n=2, position=3),
    ]
    return AnswerLedger(questions), [str(q.id) for q in questions]


def test_every_question_included_in_order(ledger_and_ids):
    ledger, ids = ledger_and_ids
    ledger.set_answer(ids[0], 2)
    payload = assemble(ledger, 42)

    assert [str(a.question_id) for a in payload.answers] == ids
    assert payload.answers[0].answer == ChoiceAnswer(selected=[2])
    assert [a.answer for a in payload.answers[1:]] == [None, None, None]


def test_carries_answers_flags_and_time(ledger_and_ids):
    ledger, ids = ledger_and_ids
    ledger.set_answer(ids[1], 3)
    ledger.set_answer(ids[1], 0)
    ledger.set_answer(ids[2], " 9.81 ")
    ledger.toggle_flag(ids[3])
    ledger.add_time_spent(ids[2], 17.6)

    payload = assemble(ledger, 90)
    by_id = {str(a.question_id): a for a in payload.answers}

    assert by_id[ids[1]].answer.selected == [0, 3]
    assert by_id[ids[2]].answer == TextAnswer(value=" 9.81 ")
    assert by_id[ids[2]].time_spent == 18
    assert by_id[ids[3]].flagged is True
    assert by_id[ids[3]].answer is None


def test_submit_type_and_total_time(ledger_and_ids):
    ledger, _ = ledger_and_ids
    manual = assemble(ledger, 125)
    auto = assemble(ledger, 600, SubmitType.AUTO)

    assert manual.submit_type is SubmitType.MANUAL
    assert manual.total_time_spent == 125
    assert auto.submit_type is SubmitType.AUTO
    assert auto.total_time_spent == 600


def test_negative_elapsed_is_clamped(ledger_and_ids):
    ledger, _ = ledger_and_ids
    assert assemble(ledger, -3).total_time_spent == 0


def test_question_ids_are_uuids(ledger_and_ids):
    ledger, _ = ledger_and_ids
    for answer in assemble(ledger, 0).answers:
        assert isinstance(answer.question_id, uuid.UUID)


def test_same_ledger_gives_same_answers_for_both_paths(ledger_and_ids):
    ledger, ids = ledger_and_ids
    ledger.set_answer(ids[0], 1)
    ledger.set_answer(ids[2], "3")
    manual = assemble(ledger, 10, SubmitType.MANUAL)
    auto = assemble(ledger, 10, SubmitType.AUTO)
    assert manual.answers == auto.answers
