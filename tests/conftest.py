from typing import List, Optional, Sequence

import pytest

from buddy_matching.config import Settings
from buddy_matching.data_models import LeisureCategory, LonelinessCategory, UserProfile
from buddy_matching.store import SQLiteStore
from buddy_matching.surveys import score_loneliness, tally_leisure, top_categories

LOW = [1, 1, 1, 1, 1, 1]
MODERATE = [2, 2, 2, 2, 2, 2]
MODERATELY_HIGH = [3, 3, 3, 3, 3, 3]
HIGH = [4, 4, 4, 4, 4, 4]

# one answer per forced-choice pair: (A|G, D|B, G|F, C|D, B|E)
LEISURE_ABC = ["A", "D", "G", "C", "B"]  # five singles -> top A, B, C
LEISURE_DGB = ["G", "D", "G", "D", "B"]  # D=2, G=2, B=1 -> top D, G, B
LEISURE_ABD = ["A", "B", "F", "D", "E"]  # five singles -> top A, B, D


@pytest.fixture
def store(tmp_path) -> SQLiteStore:
    s = SQLiteStore(tmp_path / "buddies.db")
    s.init_schema()
    return s


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(db_path=tmp_path / "buddies.db")


def add_assessed_user(
    store: SQLiteStore,
    user_id: str,
    loneliness: Optional[Sequence[int]] = LOW,
    leisure: Optional[Sequence[str]] = LEISURE_ABC,
    name: Optional[str] = None,
) -> None:
    store.add_user(user_id, name)
    if loneliness is not None:
        total, category = score_loneliness(list(loneliness))
        store.add_loneliness_assessment(user_id, list(loneliness), total, category)
    if leisure is not None:
        counts = tally_leisure(list(leisure))
        store.add_leisure_assessment(user_id, list(leisure), counts, top_categories(counts))


def make_profile(
    user_id: str,
    category: Optional[LonelinessCategory] = LonelinessCategory.LOW,
    top: Sequence[str] = ("A", "B", "C"),
    mood: float = 3.0,
) -> UserProfile:
    tops: List[LeisureCategory] = [LeisureCategory(c) for c in top]
    return UserProfile(
        user_id=user_id,
        loneliness_category=category,
        top_leisure_categories=tops,
        leisure_category_weights={c: 1 for c in tops},
        recent_mood_average=mood,
        has_loneliness_assessment=category is not None,
        has_leisure_assessment=bool(tops),
    )
