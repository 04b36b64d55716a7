"""
Score arithmetic shared by the progress tracker, eligibility and reports.
"""
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from awareness.core.config import settings


def round_half_up(value: float) -> int:
    """Whole-number rounding with .5 going up, never banker's rounding."""
    return int(math.floor(value + 0.5))


def round2(value: float) -> float:
    """Two-decimal rounding for report percentages."""
    return round_half_up(value * 100) / 100


def percent(part: float, whole: float) -> float:
    """``part / whole * 100`` with a zero denominator yielding 0."""
    if not whole:
        return 0.0
    return round2(part / whole * 100)


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def pass_threshold_for(quiz: Any) -> int:
    """The quiz's own threshold, or the configured default."""
    threshold = getattr(quiz, "pass_threshold", None)
    if threshold is None:
        return settings.DEFAULT_QUIZ_PASS_THRESHOLD
    return threshold


@dataclass
class QuizScore:
    score: int
    total_questions: int
    percentage: int
    passed: bool


def score_answers(
    questions: Sequence[Dict[str, Any]],
    answers: Sequence[Optional[int]],
    pass_threshold: int,
) -> QuizScore:
    """
    Compare answers to the stored correct indices by position.

    Missing trailing answers count as unanswered.
    """
    correct = 0
    for index, question in enumerate(questions):
        if index < len(answers) and answers[index] == question.get("correct_answer_index"):
            correct += 1

    total = len(questions)
    percentage = round_half_up(correct / total * 100) if total else 0
    return QuizScore(
        score=correct,
        total_questions=total,
        percentage=percentage,
        passed=percentage >= pass_threshold,
    )
