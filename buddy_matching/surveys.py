"""Survey scoring for the two onboarding assessments.

Loneliness: six Likert items answered 1 (Never) .. 4 (Always); the total
(6..24) is bucketed into a `LonelinessCategory`.

Leisure: five forced-choice word pairs; every answer resolves to one of the
seven leisure categories, and the tallies give each user's top categories.
"""
from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .data_models import LEISURE_LABELS, LeisureCategory, LonelinessCategory
from .errors import InvalidSurveyResponse


LONELINESS_QUESTIONS: List[str] = [
    "How often do you feel that you lack companionship?",
    "How often do you feel alone?",
    "How often do you feel that you are no longer close to anyone?",
    "How often do you feel left out?",
    "How often do you feel that no one really knows you well?",
    "How often do you feel that people are around you but not with you?",
]

LIKERT_OPTIONS: Dict[int, str] = {1: "Never", 2: "Rarely", 3: "Sometimes", 4: "Always"}

MIN_LONELINESS_SCORE = len(LONELINESS_QUESTIONS) * min(LIKERT_OPTIONS)
MAX_LONELINESS_SCORE = len(LONELINESS_QUESTIONS) * max(LIKERT_OPTIONS)

# Inclusive upper bound of each bucket, in category order
LONELINESS_THRESHOLDS: List[Tuple[int, LonelinessCategory]] = [
    (10, LonelinessCategory.LOW),
    (15, LonelinessCategory.MODERATE),
    (20, LonelinessCategory.MODERATELY_HIGH),
    (MAX_LONELINESS_SCORE, LonelinessCategory.HIGH),
]

# (option a, option b) for each forced-choice question, in question order
LEISURE_PAIRS: List[Tuple[Tuple[LeisureCategory, str], Tuple[LeisureCategory, str]]] = [
    ((LeisureCategory.A, "Play Football"), (LeisureCategory.G, "Hunting")),
    ((LeisureCategory.D, "Cooking"), (LeisureCategory.B, "Pilates")),
    ((LeisureCategory.G, "Hiking"), (LeisureCategory.F, "Collecting Figurines")),
    ((LeisureCategory.C, "Playing Cards"), (LeisureCategory.D, "Playing an Instrument")),
    ((LeisureCategory.B, "Karate"), (LeisureCategory.E, "Going Shopping")),
]

TOP_CATEGORY_COUNT = 3

_LEISURE_ALIASES: Dict[str, LeisureCategory] = {
    **{c.value.lower(): c for c in LeisureCategory},
    **{label.lower(): c for c, label in LEISURE_LABELS.items()},
}

_LONELINESS_ALIASES: Dict[str, LonelinessCategory] = {
    c.value.lower(): c for c in LonelinessCategory
}


def resolve_leisure_category(value: Union[str, LeisureCategory]) -> LeisureCategory:
    """Accept a category letter ("A") or its label ("Physical Activities")."""
    if isinstance(value, LeisureCategory):
        return value
    key = str(value).strip().lower()
    if key not in _LEISURE_ALIASES:
        raise InvalidSurveyResponse(f"Unknown leisure category: {value!r}")
    return _LEISURE_ALIASES[key]


def resolve_loneliness_category(value: Union[str, LonelinessCategory]) -> LonelinessCategory:
    if isinstance(value, LonelinessCategory):
        return value
    key = " ".join(str(value).strip().lower().replace("_", " ").split())
    if key not in _LONELINESS_ALIASES:
        raise InvalidSurveyResponse(f"Unknown loneliness category: {value!r}")
    return _LONELINESS_ALIASES[key]


def categorize_loneliness(total_score: int) -> LonelinessCategory:
    if not MIN_LONELINESS_SCORE <= total_score <= MAX_LONELINESS_SCORE:
        raise InvalidSurveyResponse(
            f"Loneliness score must be between {MIN_LONELINESS_SCORE} and "
            f"{MAX_LONELINESS_SCORE}, got {total_score}"
        )
    for upper, category in LONELINESS_THRESHOLDS:
        if total_score <= upper:
            return category
    return LonelinessCategory.HIGH


def score_loneliness(responses: Sequence[int]) -> Tuple[int, LonelinessCategory]:
    """Sum the Likert answers and bucket the total.

    Args:
        responses: One answer per question, in question order.

    Returns:
        (total_score, loneliness_category)
    """
    if len(responses) != len(LONELINESS_QUESTIONS):
        raise InvalidSurveyResponse("Please answer all questions")
    for answer in responses:
        if isinstance(answer, bool) or answer not in LIKERT_OPTIONS:
            raise InvalidSurveyResponse(f"Invalid answer {answer!r}; expected 1-4")
    total = int(sum(responses))
    return total, categorize_loneliness(total)


def tally_leisure(responses: Sequence[Union[str, LeisureCategory]]) -> Dict[LeisureCategory, int]:
    """Count how many forced-choice answers resolved to each category.

    Every category is present in the result, including those with a zero count.
    """
    if len(responses) != len(LEISURE_PAIRS):
        raise InvalidSurveyResponse("Please answer all questions")

    counts: Dict[LeisureCategory, int] = {c: 0 for c in LeisureCategory}
    for number, (answer, pair) in enumerate(zip(responses, LEISURE_PAIRS), start=1):
        category = resolve_leisure_category(answer)
        allowed = {option for option, _ in pair}
        if category not in allowed:
            choices = " or ".join(f"{c.value} ({label})" for c, label in pair)
            raise InvalidSurveyResponse(f"Question {number} must be answered with {choices}")
        counts[category] += 1
    return counts


def top_categories(
    weights: Mapping[LeisureCategory, int], n: int = TOP_CATEGORY_COUNT
) -> List[LeisureCategory]:
    """Top-n categories by count; equal counts keep the A..G order.

    Zero-count categories never make the list.
    """
    ordered = [c for c in LeisureCategory if weights.get(c, 0) > 0]
    ordered.sort(key=lambda c: weights.get(c, 0), reverse=True)
    return ordered[:n]


def parse_category_weights(raw: Optional[Mapping[str, int]]) -> Dict[LeisureCategory, int]:
    """Normalize stored/imported weights whose keys may be letters or labels."""
    out: Dict[LeisureCategory, int] = {}
    for key, value in (raw or {}).items():
        count = int(value or 0)
        if count < 0:
            raise InvalidSurveyResponse(f"Negative count for leisure category {key!r}")
        category = resolve_leisure_category(key)
        out[category] = out.get(category, 0) + count
    return out
