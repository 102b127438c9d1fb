from typing import Iterable, Tuple

from assessly.models.orm import QuestionType


def is_answer_correct(question_type: QuestionType, selected: Iterable, correct: Iterable) -> bool:
    """Correctness verdict for one question.

    SINGLE needs exactly one selection and it must be the correct option.
    MULTIPLE needs the selected set to equal the correct set.
    """
    selected = [str(s) for s in selected]
    correct_set = {str(c) for c in correct}
    if QuestionType(question_type) is QuestionType.SINGLE:
        return len(selected) == 1 and selected[0] in correct_set
    return set(selected) == correct_set


def weighted_totals(verdicts: Iterable[Tuple[bool, int]]) -> Tuple[int, int]:
    earned, maximum = 0, 0
    for correct, weight in verdicts:
        maximum += weight
        if correct:
            earned += weight
    return earned, maximum


def score_percentage(earned: int, maximum: int) -> float:
    if maximum <= 0:
        return 0.0
    return round(earned / maximum * 100, 2)


def calculate_score(verdicts: Iterable[Tuple[bool, int]]) -> float:
    """Percentage of the total weight answered correctly, rounded to two decimals.

    Unanswered questions are passed in as incorrect, so they count toward
    the denominator only. A zero total weight scores 0.
    """
    return score_percentage(*weighted_totals(verdicts))
