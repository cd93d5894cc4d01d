from typing import Optional

from pydantic import BaseModel

from .errors import NotAuthenticated, OnboardingIncomplete
from .store import SQLiteStore


class OnboardingStatus(BaseModel):
    user_id: str
    has_loneliness_assessment: bool
    has_leisure_assessment: bool

    @property
    def is_complete(self) -> bool:
        return self.has_loneliness_assessment and self.has_leisure_assessment

    @property
    def next_step(self) -> Optional[str]:
        """Which survey the user should take next, or None when done."""
        if not self.has_loneliness_assessment:
            return "loneliness"
        if not self.has_leisure_assessment:
            return "leisure"
        return None


def require_user(user_id: Optional[str]) -> str:
    if not user_id or not str(user_id).strip():
        raise NotAuthenticated()
    return str(user_id).strip()


def check_onboarding_status(store: SQLiteStore, user_id: str) -> OnboardingStatus:
    has_loneliness, has_leisure = store.has_assessments(user_id)
    return OnboardingStatus(
        user_id=user_id,
        has_loneliness_assessment=has_loneliness,
        has_leisure_assessment=has_leisure,
    )


def require_onboarding(store: SQLiteStore, user_id: str) -> OnboardingStatus:
    status = check_onboarding_status(store, user_id)
    if not status.is_complete:
        raise OnboardingIncomplete(
            f"Please complete the {status.next_step} survey first", next_step=status.next_step
        )
    return status
