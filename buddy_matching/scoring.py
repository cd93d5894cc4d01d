from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .data_models import LeisureCategory, LonelinessCategory, ScoredCandidate, UserProfile


class OverlapFormula(str, Enum):
    # |A & B| / max(|A|, |B|, 1); rewards partial overlap more generously
    OVERLAP = "overlap"
    # |A & B| / |A | B|
    JACCARD = "jaccard"


# Similarity by loneliness-category distance (0..3)
CATEGORY_DISTANCE_SIMILARITY: Tuple[float, ...] = (1.0, 0.7, 0.4, 0.1)
MISSING_CATEGORY_SIMILARITY = CATEGORY_DISTANCE_SIMILARITY[2]
EMPTY_LEISURE_SIMILARITY = 0.5
MOOD_SCALE_SPAN = 4.0


@dataclass(frozen=True)
class ScoreWeights:
    loneliness: float = 40.0
    leisure: float = 60.0
    mood: float = 0.0
    baseline: float = 25.0
    overlap_formula: OverlapFormula = OverlapFormula.OVERLAP

    def __post_init__(self) -> None:
        for name in ("loneliness", "leisure", "mood", "baseline"):
            if getattr(self, name) < 0:
                raise ValueError(f"score weight '{name}' must be non-negative")

    @property
    def maximum(self) -> float:
        return max(self.baseline, self.loneliness + self.leisure + self.mood)


def category_similarity(
    a: Optional[LonelinessCategory], b: Optional[LonelinessCategory]
) -> float:
    if a is None or b is None:
        return MISSING_CATEGORY_SIMILARITY
    return CATEGORY_DISTANCE_SIMILARITY[a.distance(b)]


def _assessed_category(profile: UserProfile) -> Optional[LonelinessCategory]:
    # the Moderate default on unassessed profiles is display data only
    if not profile.has_loneliness_assessment:
        return None
    return profile.loneliness_category


def leisure_similarity(
    a: Sequence[LeisureCategory],
    b: Sequence[LeisureCategory],
    formula: OverlapFormula = OverlapFormula.OVERLAP,
) -> float:
    if not a or not b:
        return EMPTY_LEISURE_SIMILARITY
    set_a, set_b = set(a), set(b)
    shared = len(set_a & set_b)
    if formula == OverlapFormula.JACCARD:
        return shared / len(set_a | set_b)
    return shared / max(len(set_a), len(set_b), 1)


def mood_similarity(a: float, b: float) -> float:
    # moods live on a 1-5 scale, closer is better
    return max(0.0, 1.0 - abs(a - b) / MOOD_SCALE_SPAN)


def score_pair(
    a: UserProfile, b: UserProfile, weights: Optional[ScoreWeights] = None
) -> Tuple[float, Dict[str, float]]:
    """Score two profiles and return the per-term similarities behind the score.

    The result is symmetric in its arguments and never below `weights.baseline`,
    so brand-new users with no assessments still surface as candidates.
    """
    if weights is None:
        weights = ScoreWeights()

    loneliness = category_similarity(_assessed_category(a), _assessed_category(b))
    leisure = leisure_similarity(
        a.top_leisure_categories, b.top_leisure_categories, weights.overlap_formula
    )
    mood = mood_similarity(a.recent_mood_average, b.recent_mood_average)

    weighted = (
        weights.loneliness * loneliness
        + weights.leisure * leisure
        + weights.mood * mood
    )
    score = max(weights.baseline, weighted)

    return score, {
        "loneliness": loneliness,
        "leisure": leisure,
        "mood": mood,
    }


def score(a: UserProfile, b: UserProfile, weights: Optional[ScoreWeights] = None) -> float:
    return score_pair(a, b, weights)[0]


def rank_profiles(
    requester: UserProfile,
    candidates: Iterable[UserProfile],
    weights: Optional[ScoreWeights] = None,
    limit: Optional[int] = None,
    display_names: Optional[Mapping[str, str]] = None,
) -> List[ScoredCandidate]:
    """Score every candidate against the requester, best first.

    Ties keep the candidates' input order. The requester is never returned.
    """
    names = display_names or {}
    scored: List[ScoredCandidate] = []
    for candidate in candidates:
        if candidate.user_id == requester.user_id:
            continue
        s, comps = score_pair(requester, candidate, weights)
        scored.append(
            ScoredCandidate(
                profile=candidate,
                display_name=names.get(candidate.user_id),
                match_score=s,
                components=comps,
            )
        )

    scored.sort(key=lambda c: c.match_score, reverse=True)
    if limit is not None:
        scored = scored[:limit]
    return scored


def mean_score_against(
    requester: UserProfile, members: Sequence[UserProfile], weights: Optional[ScoreWeights] = None
) -> float:
    """Average compatibility of the requester against a group's current members."""
    if not members:
        return 0.0
    return sum(score(requester, m, weights) for m in members) / len(members)
