"""Client-safe views of tests and the admin answer-key view."""

from lms.db.models import Attempt, Question, Test
from lms.schemas.test import (
    AnswerKeyEntryRead,
    AnswerKeyRead,
    OptionRead,
    QuestionRead,
    QuestionType,
    TestRead,
    TestSummary,
)
from lms.services.attempts import option_order_for, ordered_questions
from lms.services.grading import build_answer_key


def question_read(
    question: Question, position: int, option_order: list[int] | None = None
) -> QuestionRead:
    """Question without correctness data.

    Text-answer questions store their accepted answers in ``options``, so
    they are served with no options at all.
    """
    options = question.options or []
    if not QuestionType(question.question_type.value).is_choice:
        options_read = []
    else:
        order = option_order if option_order is not None else range(len(options))
        options_read = [
            OptionRead(
                index=i,
                text=str(options[i].get("text", "")),
                image_url=options[i].get("image_url"),
            )
            for i in order
        ]
    return QuestionRead(
        id=question.id,
        position=position,
        text=question.text,
        question_type=question.question_type.value,
        options=options_read,
        marks=question.marks,
        difficulty=question.difficulty.value,
        subject=question.subject,
        chapter=question.chapter,
        topic=question.topic,
        hint=question.hint,
        estimated_time_seconds=question.estimated_time_seconds,
    )


def summarize_test(test: Test) -> TestSummary:
    return TestSummary(
        id=test.id,
        title=test.title,
        description=test.description,
        duration_minutes=test.duration_minutes,
        total_marks=test.total_marks,
        passing_score=test.passing_score,
        allowed_attempts=test.allowed_attempts,
        question_count=len(test.test_questions),
        show_results=test.show_results,
    )


def serve_test(test: Test, attempt: Attempt | None = None) -> TestRead:
    """The test as a student sees it.

    With an *attempt*, questions follow that attempt's order and options are
    shuffled per attempt when ``randomize_options`` is set; ``OptionRead.index``
    always keeps the bank index that answers refer to.
    """
    if attempt is None:
        questions = [question_read(q, i) for i, q in enumerate(test.questions)]
    else:
        questions = [
            question_read(
                q,
                i,
                option_order_for(q, str(attempt.id)) if test.randomize_options else None,
            )
            for i, q in enumerate(ordered_questions(attempt))
        ]
    summary = summarize_test(test)
    return TestRead(**summary.model_dump(), questions=questions)


def answer_key_read(test: Test) -> AnswerKeyRead:
    key = build_answer_key(test)
    return AnswerKeyRead(
        test_id=test.id,
        passing_score=key.passing_score,
        negative_marking_ratio=key.negative_marking_ratio,
        partial_credit=key.partial_credit,
        entries=[
            AnswerKeyEntryRead(
                question_id=e.question_id,
                question_type=e.question_type,
                marks=e.marks,
                correct_options=sorted(e.correct_options),
                accepted_answers=list(e.accepted_answers),
                explanation=e.explanation,
            )
            for e in key.entries
        ],
    )
