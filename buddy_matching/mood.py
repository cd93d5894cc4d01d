from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pandas as pd
from pydantic import BaseModel, Field

from .errors import InvalidSurveyResponse
from .onboarding import require_user
from .store import SQLiteStore

MOOD_MIN, MOOD_MAX = 1, 5
ANALYTICS_WINDOW_DAYS = 30


class DailyMood(BaseModel):
    date: str
    average: float


class MoodAnalytics(BaseModel):
    average: float = 0.0
    highest: int = 0
    lowest: int = 0
    total_entries: int = 0
    daily_averages: List[DailyMood] = Field(default_factory=list)


def validate_mood(mood: object) -> int:
    if isinstance(mood, bool) or not isinstance(mood, int) or not MOOD_MIN <= mood <= MOOD_MAX:
        raise InvalidSurveyResponse("Invalid mood value")
    return mood


def record_mood(
    store: SQLiteStore,
    user_id: Optional[str],
    mood: object,
    notes: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> int:
    user_id = require_user(user_id)
    return store.add_mood_entry(user_id, validate_mood(mood), notes=notes, created_at=created_at)


def mood_analytics(
    store: SQLiteStore,
    user_id: Optional[str],
    days: int = ANALYTICS_WINDOW_DAYS,
    now: Optional[datetime] = None,
) -> MoodAnalytics:
    """Summary of the last `days` days of mood entries; averages rounded to one decimal."""
    user_id = require_user(user_id)
    now = now or datetime.now(timezone.utc)
    entries = store.mood_entries_since(user_id, now - timedelta(days=days))
    if not entries:
        return MoodAnalytics()

    df = pd.DataFrame(entries, columns=["mood", "created_at"])
    df["date"] = pd.to_datetime(df["created_at"], utc=True, format="ISO8601").dt.strftime("%Y-%m-%d")
    daily = df.groupby("date", sort=True)["mood"].mean().round(1)

    return MoodAnalytics(
        average=round(float(df["mood"].mean()), 1),
        highest=int(df["mood"].max()),
        lowest=int(df["mood"].min()),
        total_entries=len(df),
        daily_averages=[DailyMood(date=d, average=float(avg)) for d, avg in daily.items()],
    )
