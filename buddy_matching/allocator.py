"""
Group allocation: place a user into an existing buddy group or start a new one.

Per call the user makes exactly one transition:

- already in an active group -> returned unchanged
- an eligible group exists   -> joined as `member`
- otherwise                  -> a new group is created with the user as `creator`

Eligible groups are active, share the user's loneliness category and have a
free seat. Among them the group whose current members score best against the
user wins; ties go to the oldest group. The seat check and the membership
insert happen in one store transaction. A group that fills up in between
surfaces as `CapacityRace` and allocation is re-run, a bounded number of
times, before falling back to creating a new group.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from .config import Settings
from .data_models import BuddyGroup, GroupMembership, MatchingCriteria, UserProfile
from .errors import CapacityRace
from .onboarding import require_onboarding, require_user
from .profile import build_profile, build_profiles
from .scoring import ScoreWeights, mean_score_against, rank_profiles
from .store import SQLiteStore

logger = logging.getLogger(__name__)


class AllocationOutcome(str, Enum):
    ALREADY_MEMBER = "already_member"
    JOINED = "joined"
    CREATED = "created"


class Allocation(BaseModel):
    group: BuddyGroup
    membership: GroupMembership
    outcome: AllocationOutcome

    @property
    def message(self) -> str:
        if self.outcome == AllocationOutcome.ALREADY_MEMBER:
            return "Already in a group"
        if self.outcome == AllocationOutcome.CREATED:
            return "Started a new buddy group"
        return "Successfully joined a buddy group"


def pick_group(
    store: SQLiteStore, profile: UserProfile, weights: Optional[ScoreWeights] = None
) -> Optional[BuddyGroup]:
    """Best eligible group for `profile`, or None when every group is full."""
    if profile.loneliness_category is None:
        return None
    groups = store.groups_with_capacity(profile.loneliness_category)
    if not groups:
        return None

    best: Optional[BuddyGroup] = None
    best_score = float("-inf")
    for group in groups:
        members = build_profiles(store, [m.user_id for m in group.members])
        group_score = mean_score_against(profile, members, weights)
        # strict comparison keeps the oldest group on ties
        if group_score > best_score:
            best, best_score = group, group_score
    return best


def _criteria_snapshot(
    store: SQLiteStore, profile: UserProfile, settings: Settings
) -> MatchingCriteria:
    pool_ids = [
        uid for uid in store.users_without_active_group()[: settings.similar_pool_size]
        if uid != profile.user_id
    ]
    ranked = rank_profiles(
        profile, build_profiles(store, pool_ids), settings.weights, limit=settings.group_capacity
    )
    return MatchingCriteria(
        loneliness_category=profile.loneliness_category,
        leisure_categories=list(profile.top_leisure_categories),
        target_size=settings.group_capacity,
        match_scores=[{"user_id": c.profile.user_id, "score": round(c.match_score, 2)} for c in ranked],
        created_at=datetime.now(timezone.utc),
    )


def _load_group(store: SQLiteStore, membership: GroupMembership) -> BuddyGroup:
    group = store.get_group(membership.group_id)
    if group is None:
        raise LookupError(f"group {membership.group_id} vanished after allocation")
    return group


def find_or_create_group(
    store: SQLiteStore, user_id: Optional[str], settings: Optional[Settings] = None
) -> Allocation:
    """Allocate `user_id` to a buddy group.

    Raises:
        NotAuthenticated: no caller identity.
        OnboardingIncomplete: the caller has not finished both surveys.
        PersistenceUnavailable: the store failed; not retried here.
    """
    settings = settings or Settings()
    user_id = require_user(user_id)

    existing = store.active_membership(user_id)
    if existing is not None:
        logger.info("User %s already in group %s", user_id, existing.group_id)
        return Allocation(
            group=_load_group(store, existing),
            membership=existing,
            outcome=AllocationOutcome.ALREADY_MEMBER,
        )

    require_onboarding(store, user_id)

    attempts = settings.capacity_retries + 1
    for attempt in range(1, attempts + 1):
        profile = build_profile(store, user_id)
        group = pick_group(store, profile, settings.weights)
        if group is None:
            break
        try:
            membership, created = store.join_group(group.group_id, user_id)
        except CapacityRace as e:
            logger.warning(
                "Group %s filled up before %s could join (attempt %d/%d)",
                e.group_id, user_id, attempt, attempts,
            )
            continue
        outcome = AllocationOutcome.JOINED if created else AllocationOutcome.ALREADY_MEMBER
        logger.info("User %s %s group %s", user_id, outcome.value, membership.group_id)
        return Allocation(group=_load_group(store, membership), membership=membership, outcome=outcome)

    profile = build_profile(store, user_id)
    criteria = _criteria_snapshot(store, profile, settings)
    group, membership, created = store.create_group(user_id, criteria, capacity=settings.group_capacity)
    outcome = AllocationOutcome.CREATED if created else AllocationOutcome.ALREADY_MEMBER
    logger.info("User %s %s group %s", user_id, outcome.value, group.group_id)
    return Allocation(group=group, membership=membership, outcome=outcome)


def group_member_profiles(store: SQLiteStore, group: BuddyGroup) -> List[UserProfile]:
    return build_profiles(store, [m.user_id for m in group.members])
