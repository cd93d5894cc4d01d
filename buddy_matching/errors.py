"""Error taxonomy for the matching core.

Every error carries a short message that can be shown to the user as-is.
"""

from typing import Optional


class MatchingError(Exception):
    """Base class for all matching errors."""

    default_message = "Something went wrong while matching"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)

    @property
    def user_message(self) -> str:
        return str(self)


class NotAuthenticated(MatchingError):
    default_message = "Please sign in first"


class OnboardingIncomplete(MatchingError):
    """The caller has not finished the surveys needed for group allocation."""

    default_message = "Please complete your assessments first"

    def __init__(self, message: Optional[str] = None, next_step: Optional[str] = None):
        super().__init__(message)
        self.next_step = next_step


class CapacityRace(MatchingError):
    """A membership write was rejected because the group filled up concurrently."""

    default_message = "That group just filled up, please try again"

    def __init__(self, group_id: str, message: Optional[str] = None):
        super().__init__(message)
        self.group_id = group_id


class PersistenceUnavailable(MatchingError):
    default_message = "The matching service is temporarily unavailable"


class InvalidSurveyResponse(MatchingError, ValueError):
    default_message = "Invalid survey response"
