from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class LonelinessCategory(str, Enum):
    """Ordered loneliness buckets. Declaration order is the canonical ordering."""

    LOW = "Low"
    MODERATE = "Moderate"
    MODERATELY_HIGH = "Moderately High"
    HIGH = "High"

    @property
    def rank(self) -> int:
        return LONELINESS_ORDER.index(self)

    def distance(self, other: "LonelinessCategory") -> int:
        return abs(self.rank - other.rank)


LONELINESS_ORDER: List[LonelinessCategory] = list(LonelinessCategory)


class LeisureCategory(str, Enum):
    """The seven leisure clusters the forced-choice survey resolves to."""

    A = "A"
    B = "B"
    C = "C"
    D = "D"
    E = "E"
    F = "F"
    G = "G"

    @property
    def label(self) -> str:
        return LEISURE_LABELS[self]


LEISURE_LABELS: Dict[LeisureCategory, str] = {
    LeisureCategory.A: "Physical Activities",
    LeisureCategory.B: "Mind-Body",
    LeisureCategory.C: "Games",
    LeisureCategory.D: "Creative Expression",
    LeisureCategory.E: "Social Outings",
    LeisureCategory.F: "Collecting",
    LeisureCategory.G: "Nature",
}


class GroupStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class MemberRole(str, Enum):
    CREATOR = "creator"
    MEMBER = "member"


class UserProfile(BaseModel):
    """
    Comparable snapshot of one user's survey results and recent mood.

    Built on demand from the latest assessments; never persisted.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    loneliness_category: Optional[LonelinessCategory] = LonelinessCategory.MODERATE
    loneliness_score: int = 15
    leisure_category_weights: Dict[LeisureCategory, int] = Field(default_factory=dict)
    top_leisure_categories: List[LeisureCategory] = Field(default_factory=list)
    recent_mood_average: float = Field(default=3.0, ge=1.0, le=5.0)

    # Whether the values above came from real records or from defaults
    has_loneliness_assessment: bool = False
    has_leisure_assessment: bool = False

    @property
    def has_any_assessment(self) -> bool:
        return self.has_loneliness_assessment or self.has_leisure_assessment


class MatchingCriteria(BaseModel):
    """Write-once snapshot taken from the creator's profile when a group is created."""

    loneliness_category: LonelinessCategory
    leisure_categories: List[LeisureCategory] = Field(default_factory=list)
    target_size: int = 5
    match_scores: List[Dict[str, Union[float, str]]] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class GroupMembership(BaseModel):
    group_id: str
    user_id: str
    role: MemberRole
    joined_at: Optional[datetime] = None


class BuddyGroup(BaseModel):
    group_id: str
    created_by: str
    status: GroupStatus = GroupStatus.ACTIVE
    capacity: int = Field(default=5, ge=1)
    matching_criteria: MatchingCriteria
    is_ai_matched: bool = True
    created_at: Optional[datetime] = None
    members: List[GroupMembership] = Field(default_factory=list)

    @property
    def member_count(self) -> int:
        return len(self.members)

    @property
    def has_capacity(self) -> bool:
        return self.status == GroupStatus.ACTIVE and self.member_count < self.capacity


class ScoredCandidate(BaseModel):
    """
    A ranked discovery result: the candidate's profile, its compatibility score
    against the requester, and the per-term components behind that score.
    """

    profile: UserProfile
    display_name: Optional[str] = None
    match_score: float
    components: Dict[str, float] = Field(default_factory=dict)
