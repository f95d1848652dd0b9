"""Performance analytics derived from a graded attempt.

Conventions:
  - accuracy = correct / (correct + incorrect); skipped questions are left
    out of the denominator, and an attempt with nothing answered has 0.
  - timing statistics cover every response, answered or not.
  - a topic is a strength at or above ``STRENGTH_THRESHOLD`` percent and an
    improvement area strictly below ``IMPROVEMENT_THRESHOLD`` percent.
"""

from __future__ import annotations

from typing import Iterable

from lms.config import settings
from lms.schemas.attempt import (
    PerformanceReport,
    QuestionTime,
    Recommendation,
    ScoreResult,
    SubmittedAnswer,
)


# (minimum percentage, overall feedback, motivational message)
_FEEDBACK_BANDS: tuple[tuple[float, str, str], ...] = (
    (
        90.0,
        "Excellent performance! You have demonstrated a strong understanding of the material.",
        "Keep up the outstanding work! Your dedication is paying off.",
    ),
    (
        80.0,
        "Good job! You have a solid grasp of most concepts.",
        "You're doing well! A little more practice will help you excel.",
    ),
    (
        70.0,
        "Fair performance. There are areas that need improvement.",
        "Don't give up! With focused study, you can improve significantly.",
    ),
)
_FALLBACK_FEEDBACK = (
    "This attempt shows you need more preparation. Consider reviewing the fundamentals.",
    "Every expert was once a beginner. Keep practicing and you will improve!",
)

TOPIC_REVIEW_MIN_WRONG = 2


def feedback_for(percentage: float) -> tuple[str, str]:
    """Return ``(overall_feedback, motivational_message)`` for a score."""
    for minimum, overall, motivation in _FEEDBACK_BANDS:
        if percentage >= minimum:
            return overall, motivation
    return _FALLBACK_FEEDBACK


def classify_topics(
    score: ScoreResult,
    *,
    strength_threshold: float,
    improvement_threshold: float,
) -> tuple[list[str], list[str]]:
    strengths = [t.topic for t in score.topic_breakdown if t.percentage >= strength_threshold]
    improvement = [
        t.topic for t in score.topic_breakdown if t.percentage < improvement_threshold
    ]
    return strengths, improvement


def recommendations_for(
    score: ScoreResult, *, slow_answer_seconds: int
) -> list[Recommendation]:
    answered = score.breakdown.correct + score.breakdown.incorrect
    recs: list[Recommendation] = []

    if answered and score.breakdown.incorrect > answered * 0.5:
        recs.append(
            Recommendation(
                type="review",
                title="Overall Review Needed",
                description=(
                    "Consider reviewing the fundamental concepts before "
                    "attempting more tests."
                ),
                priority="high",
            )
        )

    if any(a.time_spent > slow_answer_seconds for a in score.answers):
        recs.append(
            Recommendation(
                type="time_management",
                title="Improve Time Management",
                description="Practice solving questions within time limits to improve speed.",
                priority="medium",
            )
        )

    wrong_by_topic: dict[str, int] = {}
    for a in score.answers:
        if not a.is_correct and not a.is_skipped:
            wrong_by_topic[a.topic] = wrong_by_topic.get(a.topic, 0) + 1
    for topic, count in wrong_by_topic.items():
        if count >= TOPIC_REVIEW_MIN_WRONG:
            recs.append(
                Recommendation(
                    type="topic_review",
                    title=f"Review {topic}",
                    description=(
                        "Multiple questions incorrect in this topic. "
                        "Focus on understanding key concepts."
                    ),
                    priority="high",
                )
            )
    return recs


def analyze(
    score: ScoreResult,
    responses: Iterable[SubmittedAnswer] | None = None,
    *,
    strength_threshold: float | None = None,
    improvement_threshold: float | None = None,
    slow_answer_seconds: int | None = None,
) -> PerformanceReport:
    """Build the ``PerformanceReport`` for a graded attempt.

    Per-question times come from *responses* when given (the raw
    submission), otherwise from the graded answers.
    """
    strength_threshold = (
        settings.STRENGTH_THRESHOLD if strength_threshold is None else strength_threshold
    )
    improvement_threshold = (
        settings.IMPROVEMENT_THRESHOLD
        if improvement_threshold is None
        else improvement_threshold
    )
    slow_answer_seconds = (
        settings.SLOW_ANSWER_SECONDS if slow_answer_seconds is None else slow_answer_seconds
    )

    if responses is not None:
        times = [QuestionTime(question_id=r.question_id, time=r.time_spent) for r in responses]
    else:
        times = [QuestionTime(question_id=a.question_id, time=a.time_spent) for a in score.answers]

    answered = score.breakdown.correct + score.breakdown.incorrect
    accuracy = round(score.breakdown.correct / answered * 100, 2) if answered else 0.0
    total_time = sum(t.time for t in times)
    average = round(total_time / len(times), 2) if times else 0.0
    # min/max keep the first of equal times
    fastest = min(times, key=lambda t: t.time) if times else None
    slowest = max(times, key=lambda t: t.time) if times else None

    strengths, improvement = classify_topics(
        score,
        strength_threshold=strength_threshold,
        improvement_threshold=improvement_threshold,
    )
    overall, motivation = feedback_for(score.percentage)

    return PerformanceReport(
        accuracy=accuracy,
        average_time_per_question=average,
        total_time_spent=total_time,
        fastest_question=fastest,
        slowest_question=slowest,
        strengths=strengths,
        improvement_areas=improvement,
        overall_feedback=overall,
        motivational_message=motivation,
        recommendations=recommendations_for(score, slow_answer_seconds=slow_answer_seconds),
    )
