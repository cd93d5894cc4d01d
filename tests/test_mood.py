from datetime import datetime, timedelta, timezone

import pytest

from buddy_matching.errors import InvalidSurveyResponse, NotAuthenticated
from buddy_matching.mood import MoodAnalytics, mood_analytics, record_mood, validate_mood

NOW = datetime(2024, 5, 31, 18, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("mood", [0, 6, "3", 3.5, True, None])
def test_invalid_moods_rejected(mood):
    with pytest.raises(InvalidSurveyResponse, match="Invalid mood value"):
        validate_mood(mood)


def test_record_mood(store):
    entry_id = record_mood(store, "u1", 4, notes="good lecture")
    assert entry_id > 0
    assert store.recent_moods("u1") == [4]


def test_record_mood_requires_user(store):
    with pytest.raises(NotAuthenticated):
        record_mood(store, None, 3)


def test_analytics_empty(store):
    store.add_user("u1")
    assert mood_analytics(store, "u1", now=NOW) == MoodAnalytics()


def test_analytics_window_and_daily_averages(store):
    record_mood(store, "u1", 1, created_at=NOW - timedelta(days=40))
    record_mood(store, "u1", 4, created_at=NOW - timedelta(days=2, hours=3))
    record_mood(store, "u1", 5, created_at=NOW - timedelta(days=2, hours=1))
    record_mood(store, "u1", 3, created_at=NOW - timedelta(hours=2))

    stats = mood_analytics(store, "u1", now=NOW)
    assert stats.total_entries == 3
    assert stats.average == pytest.approx(4.0)
    assert stats.highest == 5
    assert stats.lowest == 3
    assert [(d.date, d.average) for d in stats.daily_averages] == [
        ("2024-05-29", 4.5),
        ("2024-05-31", 3.0),
    ]


def test_analytics_custom_window(store):
    record_mood(store, "u1", 2, created_at=NOW - timedelta(days=10))
    record_mood(store, "u1", 4, created_at=NOW - timedelta(days=1))
    stats = mood_analytics(store, "u1", days=7, now=NOW)
    assert stats.total_entries == 1
    assert stats.average == 4.0
