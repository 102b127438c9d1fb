import itertools

import pytest

from assessly.models.orm import QuestionType
from assessly.services.scoring import calculate_score, is_answer_correct, score_percentage, weighted_totals

SINGLE = QuestionType.SINGLE
MULTIPLE = QuestionType.MULTIPLE


def test_single_exactly_one_correct_selection():
    assert is_answer_correct(SINGLE, ["2"], ["2"])
    assert not is_answer_correct(SINGLE, ["1"], ["2"])


@pytest.mark.parametrize("selected", [[], ["2", "1"], ["2", "3"], ["0", "1", "2"]])
def test_single_zero_or_several_selections_are_wrong(selected):
    assert not is_answer_correct(SINGLE, selected, ["2"])


def test_single_accepts_integer_ids():
    assert is_answer_correct("SINGLE", [0], ["0"])


def test_multiple_requires_exact_set_in_any_order():
    correct = ["0", "2", "3"]
    for perm in itertools.permutations(correct):
        assert is_answer_correct(MULTIPLE, list(perm), correct)


@pytest.mark.parametrize("selected", [["0", "2"], ["0", "1", "2", "3"], ["1"], []])
def test_multiple_missing_or_extra_selection_is_wrong(selected):
    assert not is_answer_correct(MULTIPLE, selected, ["0", "2", "3"])


def test_multiple_ignores_duplicates():
    assert is_answer_correct(MULTIPLE, ["1", "0", "1"], ["0", "1"])


def test_weighted_totals():
    assert weighted_totals([(True, 1), (False, 2), (True, 3)]) == (4, 6)


def test_score_example_one_of_five():
    assert calculate_score([(True, 1), (False, 2), (False, 2)]) == 20.0


def test_all_correct_scores_100():
    assert calculate_score([(True, 1), (True, 2), (True, 2)]) == 100.0


def test_all_wrong_scores_zero():
    assert calculate_score([(False, 1), (False, 5)]) == 0.0


def test_zero_weight_scores_zero():
    assert calculate_score([]) == 0.0
    assert score_percentage(0, 0) == 0.0


def test_percentage_rounded_to_two_decimals():
    assert score_percentage(1, 3) == 33.33
    assert score_percentage(2, 3) == 66.67


def test_percentage_within_bounds():
    for weights in itertools.product([1, 2, 5], repeat=3):
        for pattern in itertools.product([True, False], repeat=3):
            pct = calculate_score(list(zip(pattern, weights)))
            assert 0.0 <= pct <= 100.0
