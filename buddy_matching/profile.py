from __future__ import annotations

import logging
from typing import Dict, Iterable, List

import numpy as np

from .data_models import LonelinessCategory, UserProfile
from .errors import InvalidSurveyResponse
from .store import SQLiteStore
from .surveys import parse_category_weights, resolve_leisure_category, resolve_loneliness_category, top_categories

logger = logging.getLogger(__name__)

DEFAULT_LONELINESS_CATEGORY = LonelinessCategory.MODERATE
DEFAULT_LONELINESS_SCORE = 15
DEFAULT_MOOD_AVERAGE = 3.0
RECENT_MOOD_WINDOW = 10


def build_profile(store: SQLiteStore, user_id: str) -> UserProfile:
    """
    Build the comparable profile for a user from their latest assessments.

    Missing assessments fall back to neutral defaults instead of raising: a
    Moderate category with a score of 15, no leisure categories, and a mood
    average of 3.0. Unreadable stored values are logged and treated the same
    way. Callers that need completed onboarding check it themselves.
    """
    loneliness = store.latest_loneliness(user_id)
    leisure = store.latest_leisure(user_id)
    moods = store.recent_moods(user_id, limit=RECENT_MOOD_WINDOW)

    fields: Dict[str, object] = {
        "user_id": user_id,
        "loneliness_category": DEFAULT_LONELINESS_CATEGORY,
        "loneliness_score": DEFAULT_LONELINESS_SCORE,
    }

    if loneliness is not None:
        try:
            fields["loneliness_category"] = resolve_loneliness_category(loneliness["loneliness_category"])
            fields["loneliness_score"] = int(loneliness["total_score"])
            fields["has_loneliness_assessment"] = True
        except ValueError:
            logger.warning("Unreadable loneliness assessment for %s; using defaults", user_id)
            fields["loneliness_category"] = DEFAULT_LONELINESS_CATEGORY
            fields["loneliness_score"] = DEFAULT_LONELINESS_SCORE

    if leisure is not None:
        try:
            weights = parse_category_weights(leisure["combined_scores"])
        except ValueError:
            logger.warning("Unreadable leisure weights for %s; ignoring them", user_id)
            weights = {}
        stored_top = leisure.get("top_categories") or []
        try:
            top = [resolve_leisure_category(c) for c in stored_top]
        except InvalidSurveyResponse:
            logger.warning("Unreadable top categories for %s; recomputing from weights", user_id)
            top = []
        fields["leisure_category_weights"] = weights
        fields["top_leisure_categories"] = top or top_categories(weights)
        fields["has_leisure_assessment"] = True

    fields["recent_mood_average"] = float(np.mean(moods)) if moods else DEFAULT_MOOD_AVERAGE

    return UserProfile(**fields)


def build_profiles(store: SQLiteStore, user_ids: Iterable[str]) -> List[UserProfile]:
    return [build_profile(store, uid) for uid in user_ids]
