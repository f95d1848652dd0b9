"""Unit tests for the scoring engine (lms.services.grading).

Grading is pure, so these tests build answer keys directly instead of going
through the database, except for ``build_answer_key`` itself.
"""

import uuid

import pytest

from lms.core.exceptions import (
    AnswerValidationError,
    AttemptIntegrityError,
    UnknownQuestionError,
)
from lms.db.models import DifficultyEnum
from lms.schemas.attempt import (
    ChoiceAnswer,
    SubmissionPayload,
    SubmittedAnswer,
    TextAnswer,
)
from lms.schemas.test import Difficulty, QuestionType
from lms.services.grading import (
    AnswerKey,
    KeyEntry,
    build_answer_key,
    grade,
    grade_question,
    letter_grade,
    validate_key_entry,
)

from _helpers import multiple_choice, single_choice, text_question


# ── Helpers ────────────────────────────────────────────────────────────────────


def _choice_entry(correct, *, qtype=QuestionType.SINGLE_CHOICE, marks=2, n=4, **kw) -> KeyEntry:
    return KeyEntry(
        question_id=uuid.uuid4(),
        question_type=qtype,
        marks=marks,
        option_count=n,
        correct_options=frozenset(correct),
        **kw,
    )


def _text_entry(*accepted, qtype=QuestionType.FILL_IN_BLANK, marks=1, **kw) -> KeyEntry:
    return KeyEntry(
        question_id=uuid.uuid4(),
        question_type=qtype,
        marks=marks,
        accepted_answers=tuple(accepted),
        **kw,
    )


def _key(*entries, passing_score=50.0, **kw) -> AnswerKey:
    return AnswerKey(entries=tuple(entries), passing_score=passing_score, **kw)


def _pick(entry: KeyEntry, *selected: int, **kw) -> SubmittedAnswer:
    return SubmittedAnswer(
        question_id=entry.question_id, answer=ChoiceAnswer(selected=list(selected)), **kw
    )


def _write(entry: KeyEntry, value: str, **kw) -> SubmittedAnswer:
    return SubmittedAnswer(question_id=entry.question_id, answer=TextAnswer(value=value), **kw)


def _blank(entry: KeyEntry, **kw) -> SubmittedAnswer:
    return SubmittedAnswer(question_id=entry.question_id, answer=None, **kw)


def _submission(*answers, total_time_spent=0) -> SubmissionPayload:
    return SubmissionPayload(answers=list(answers), total_time_spent=total_time_spent)


# ── Worked scenarios ───────────────────────────────────────────────────────────


class TestScenarios:
    def test_one_right_one_wrong_one_blank(self):
        q1, q2, q3 = _choice_entry({0}), _choice_entry({1}), _choice_entry({2})
        key = _key(q1, q2, q3, passing_score=50.0)

        result = grade(_submission(_pick(q1, 0), _pick(q2, 3), _blank(q3)), key)

        assert result.total_points == 2
        assert result.max_points == 6
        assert result.percentage == pytest.approx(33.33, abs=0.01)
        assert result.is_passed is False
        assert result.breakdown.correct == 1
        assert result.breakdown.incorrect == 1
        assert result.breakdown.skipped == 1

    def test_multiple_choice_superset_is_incorrect(self):
        q = _choice_entry({0, 2}, qtype=QuestionType.MULTIPLE_CHOICE)
        result = grade(_submission(_pick(q, 0, 1, 2)), _key(q))
        assert result.answers[0].is_correct is False
        assert result.total_points == 0
        assert result.breakdown.incorrect == 1


# ── Per question type ──────────────────────────────────────────────────────────


class TestChoiceQuestions:
    def test_single_choice_correct(self):
        q = _choice_entry({2})
        assert grade_question(q, ChoiceAnswer(selected=[2])) == (True, 2.0)

    def test_single_choice_wrong(self):
        q = _choice_entry({2})
        assert grade_question(q, ChoiceAnswer(selected=[1])) == (False, 0.0)

    def test_true_false(self):
        q = _choice_entry({1}, qtype=QuestionType.TRUE_FALSE, n=2, marks=1)
        assert grade_question(q, ChoiceAnswer(selected=[1]))[0] is True
        assert grade_question(q, ChoiceAnswer(selected=[0]))[0] is False

    def test_single_choice_rejects_two_picks(self):
        q = _choice_entry({0})
        with pytest.raises(AnswerValidationError):
            grade_question(q, ChoiceAnswer(selected=[0, 1]))

    def test_out_of_range_option_rejected(self):
        q = _choice_entry({0}, n=3)
        with pytest.raises(AnswerValidationError):
            grade_question(q, ChoiceAnswer(selected=[3]))

    def test_multiple_choice_exact_set(self):
        q = _choice_entry({0, 2}, qtype=QuestionType.MULTIPLE_CHOICE)
        assert grade_question(q, ChoiceAnswer(selected=[2, 0])) == (True, 2.0)

    def test_multiple_choice_subset_is_incorrect_without_partial_credit(self):
        q = _choice_entry({0, 2}, qtype=QuestionType.MULTIPLE_CHOICE)
        assert grade_question(q, ChoiceAnswer(selected=[0])) == (False, 0.0)

    def test_multiple_choice_partial_credit(self):
        q = _choice_entry({0, 1, 2}, qtype=QuestionType.MULTIPLE_CHOICE, marks=3)
        is_correct, marks = grade_question(q, ChoiceAnswer(selected=[0, 2]), partial_credit=True)
        assert is_correct is False
        assert marks == 2.0

    def test_partial_credit_needs_no_wrong_picks(self):
        q = _choice_entry({0, 1}, qtype=QuestionType.MULTIPLE_CHOICE)
        assert grade_question(q, ChoiceAnswer(selected=[0, 3]), partial_credit=True) == (False, 0.0)

    def test_empty_selection_is_skipped(self):
        q = _choice_entry({0})
        assert grade_question(q, ChoiceAnswer(selected=[])) == (False, 0.0)

    def test_text_answer_for_choice_question_rejected(self):
        q = _choice_entry({0})
        with pytest.raises(AnswerValidationError):
            grade_question(q, TextAnswer(value="0"))


class TestTextQuestions:
    def test_fill_in_blank_is_trimmed_and_case_insensitive(self):
        q = _text_entry("Photosynthesis")
        assert grade_question(q, TextAnswer(value="  photosynthesis ")) == (True, 1.0)

    def test_inner_whitespace_is_collapsed(self):
        q = _text_entry("New Delhi")
        assert grade_question(q, TextAnswer(value="new   delhi"))[0] is True

    def test_any_accepted_answer_matches(self):
        q = _text_entry("colour", "color")
        assert grade_question(q, TextAnswer(value="Color"))[0] is True

    def test_wrong_text(self):
        q = _text_entry("Paris")
        assert grade_question(q, TextAnswer(value="Lyon")) == (False, 0.0)

    def test_numerical_matches_by_value(self):
        q = _text_entry("3.5", qtype=QuestionType.NUMERICAL)
        assert grade_question(q, TextAnswer(value="3.50"))[0] is True
        assert grade_question(q, TextAnswer(value="3.6"))[0] is False

    def test_numerical_non_number_is_just_wrong(self):
        q = _text_entry("42", qtype=QuestionType.NUMERICAL)
        assert grade_question(q, TextAnswer(value="forty-two")) == (False, 0.0)

    def test_blank_text_is_skipped(self):
        q = _text_entry("x")
        result = grade(_submission(_write(q, "   ")), _key(q))
        assert result.breakdown.skipped == 1
        assert result.answers[0].is_skipped is True
        assert result.answers[0].answer is None

    def test_choice_answer_for_text_question_rejected(self):
        q = _text_entry("x")
        with pytest.raises(AnswerValidationError):
            grade_question(q, ChoiceAnswer(selected=[0]))


# ── Aggregates ─────────────────────────────────────────────────────────────────


class TestAggregate:
    def test_grading_is_idempotent(self):
        q1, q2 = _choice_entry({0}), _text_entry("yes")
        key = _key(q1, q2)
        submission = _submission(_pick(q1, 0, flagged=True), _write(q2, "no"))
        assert grade(submission, key) == grade(submission, key)

    def test_missing_questions_are_skipped(self):
        q1, q2 = _choice_entry({0}), _choice_entry({1})
        result = grade(_submission(_pick(q1, 0)), _key(q1, q2))
        assert result.breakdown.skipped == 1
        assert [a.question_id for a in result.answers] == [q1.question_id, q2.question_id]

    def test_pass_is_by_percentage_at_boundary(self):
        q1, q2 = _choice_entry({0}), _choice_entry({0})
        result = grade(_submission(_pick(q1, 0), _pick(q2, 1)), _key(q1, q2, passing_score=50.0))
        assert result.percentage == 50.0
        assert result.is_passed is True

    def test_flagged_counted_separately(self):
        q1, q2 = _choice_entry({0}), _choice_entry({0})
        result = grade(_submission(_pick(q1, 0, flagged=True), _blank(q2, flagged=True)), _key(q1, q2))
        assert result.breakdown.flagged == 2
        assert result.breakdown.correct == 1
        assert result.breakdown.skipped == 1

    def test_negative_marking(self):
        q1, q2, q3 = _choice_entry({0}, marks=4), _choice_entry({0}, marks=4), _choice_entry({0}, marks=4)
        key = _key(q1, q2, q3, negative_marking_ratio=0.25)
        result = grade(_submission(_pick(q1, 0), _pick(q2, 1), _blank(q3)), key)
        # +4 for the right answer, -1 for the wrong one, nothing for the blank
        assert result.total_points == 3.0
        assert result.answers[1].marks_obtained == -1.0
        assert result.answers[2].marks_obtained == 0.0

    def test_negative_total_is_floored_at_zero(self):
        q1, q2 = _choice_entry({0}), _choice_entry({0})
        key = _key(q1, q2, negative_marking_ratio=1.0)
        result = grade(_submission(_pick(q1, 1), _pick(q2, 1)), key)
        assert result.total_points == 0.0
        assert result.percentage == 0.0

    def test_difficulty_breakdown_has_every_bucket(self):
        easy = _choice_entry({0}, difficulty=Difficulty.EASY)
        hard = _choice_entry({0}, difficulty=Difficulty.HARD)
        result = grade(_submission(_pick(easy, 0), _pick(hard, 1)), _key(easy, hard))
        assert set(result.difficulty_breakdown) == {Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD}
        assert result.difficulty_breakdown[Difficulty.EASY].percentage == 100.0
        assert result.difficulty_breakdown[Difficulty.HARD].percentage == 0.0
        assert result.difficulty_breakdown[Difficulty.MEDIUM].total == 0

    def test_topic_breakdown_in_first_seen_order(self):
        a1 = _choice_entry({0}, topic="Algebra")
        g1 = _choice_entry({0}, topic="Geometry")
        a2 = _choice_entry({0}, topic="Algebra")
        result = grade(_submission(_pick(a1, 0), _pick(g1, 0), _pick(a2, 1)), _key(a1, g1, a2))
        topics = [(t.topic, t.correct, t.total, t.percentage) for t in result.topic_breakdown]
        assert topics == [("Algebra", 1, 2, 50.0), ("Geometry", 1, 1, 100.0)]

    def test_empty_key(self):
        result = grade(_submission(), _key())
        assert result.max_points == 0
        assert result.percentage == 0.0


class TestRejections:
    def test_unknown_question_rejected(self):
        q = _choice_entry({0})
        stranger = SubmittedAnswer(question_id=uuid.uuid4(), answer=ChoiceAnswer(selected=[0]))
        with pytest.raises(UnknownQuestionError):
            grade(_submission(_pick(q, 0), stranger), _key(q))

    def test_duplicate_question_rejected(self):
        q = _choice_entry({0})
        with pytest.raises(AnswerValidationError):
            grade(_submission(_pick(q, 0), _pick(q, 1)), _key(q))


class TestLetterGrade:
    @pytest.mark.parametrize(
        "percentage, expected",
        [
            (100.0, "A+"),
            (90.0, "A+"),
            (89.99, "A"),
            (85.0, "A"),
            (80.0, "A-"),
            (75.0, "B+"),
            (70.0, "B"),
            (65.0, "B-"),
            (60.0, "C+"),
            (55.0, "C"),
            (50.0, "C-"),
            (45.0, "D"),
            (44.99, "F"),
            (0.0, "F"),
        ],
    )
    def test_cutoffs(self, percentage, expected):
        assert letter_grade(percentage) == expected


# ── Answer keys ────────────────────────────────────────────────────────────────


class TestAnswerKey:
    def test_single_choice_needs_exactly_one_correct(self):
        with pytest.raises(AttemptIntegrityError):
            validate_key_entry(_choice_entry({0, 1}))

    def test_multiple_choice_needs_a_correct_option(self):
        with pytest.raises(AttemptIntegrityError):
            validate_key_entry(_choice_entry(set(), qtype=QuestionType.MULTIPLE_CHOICE))

    def test_text_question_needs_an_accepted_answer(self):
        with pytest.raises(AttemptIntegrityError):
            validate_key_entry(_text_entry())

    def test_build_from_test(self, make_test):
        test = make_test(
            [
                single_choice(1, topic="Cells", difficulty=DifficultyEnum.EASY),
                multiple_choice({0, 3}),
                text_question("mitochondria"),
            ],
            passing_score=60.0,
            negative_marking_ratio=0.5,
        )
        key = build_answer_key(test)

        assert key.passing_score == 60.0
        assert key.negative_marking_ratio == 0.5
        assert key.max_points == 5
        first, second, third = key.entries
        assert first.correct_options == frozenset({1})
        assert first.topic == "Cells"
        assert first.difficulty is Difficulty.EASY
        assert second.correct_options == frozenset({0, 3})
        assert third.accepted_answers == ("mitochondria",)

    def test_build_follows_attempt_order(self, make_test):
        test = make_test([single_choice(0), single_choice(1), single_choice(2)])
        ids = [str(q.id) for q in test.questions]
        key = build_answer_key(test, list(reversed(ids)))
        assert [str(e.question_id) for e in key.entries] == list(reversed(ids))
