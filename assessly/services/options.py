"""
Helpers for the keyed options format.

Options are stored as ``{"0": {"text", "is_correct", "explanation"?}, "1": {...}}``.
Keys are stable, so reordering never changes which option is correct.
"""
from typing import Any, Dict, List

from assessly.core.config import settings
from assessly.models.orm import QuestionType


def options_from_list(options: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    return {str(i): dict(opt) for i, opt in enumerate(options)}


def strip_answers(options: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, str]]:
    return {oid: {"text": opt["text"]} for oid, opt in options.items()}


def correct_option_ids(options: Dict[str, Dict[str, Any]]) -> List[str]:
    return [oid for oid, opt in options.items() if opt.get("is_correct")]


def validate_options(options: Dict[str, Dict[str, Any]], question_type: QuestionType) -> List[str]:
    errors = []
    if not settings.MIN_OPTIONS <= len(options) <= settings.MAX_OPTIONS:
        errors.append(f"Questions must have between {settings.MIN_OPTIONS} and {settings.MAX_OPTIONS} options")
    for oid, opt in options.items():
        text = opt.get("text")
        if not isinstance(text, str) or not text.strip():
            errors.append(f"Option {oid} is missing text")
        if not isinstance(opt.get("is_correct"), bool):
            errors.append(f"Option {oid} is missing is_correct boolean")
    n_correct = len(correct_option_ids(options))
    if QuestionType(question_type) is QuestionType.SINGLE and n_correct != 1:
        errors.append("SINGLE type questions must have exactly 1 correct answer")
    if QuestionType(question_type) is QuestionType.MULTIPLE and n_correct < 1:
        errors.append("MULTIPLE type questions must have at least 1 correct answer")
    return errors
