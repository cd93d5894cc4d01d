"""
Consumer-facing matching operations.

- get_candidates: rank every other assessed user the caller is not yet
  connected to.
- get_similar_users: rank users outside the caller's current buddy group.
- find_or_create_group: place the caller into a buddy group.
- get_my_group: the caller's active group and its members.

Discovery is advisory: store failures and unreadable records are logged and
produce an empty list instead of an error. Allocation errors are surfaced to
the caller.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from .allocator import Allocation
from .allocator import find_or_create_group as allocate_group
from .config import Settings
from .data_models import BuddyGroup, GroupMembership, MemberRole, ScoredCandidate
from .errors import MatchingError
from .onboarding import require_user
from .profile import build_profile, build_profiles
from .scoring import rank_profiles
from .store import SQLiteStore

logger = logging.getLogger(__name__)


class GroupMemberView(BaseModel):
    membership: GroupMembership
    display_name: Optional[str] = None


class MyGroup(BaseModel):
    group: BuddyGroup
    members: List[GroupMemberView] = Field(default_factory=list)
    my_role: MemberRole


def get_candidates(
    store: SQLiteStore, user_id: Optional[str], settings: Optional[Settings] = None
) -> List[ScoredCandidate]:
    """Assessed users not yet connected to the caller, best match first."""
    settings = settings or Settings()
    user_id = require_user(user_id)
    try:
        requester = build_profile(store, user_id)
        excluded = set(store.connected_user_ids(user_id))
        excluded.add(user_id)
        pool_ids = [uid for uid in store.assessed_user_ids() if uid not in excluded]
        if not pool_ids:
            return []
        return rank_profiles(
            requester,
            build_profiles(store, pool_ids),
            settings.weights,
            limit=settings.candidate_limit,
            display_names=store.display_names(pool_ids),
        )
    except (MatchingError, ValueError) as e:
        logger.warning("Candidate lookup for %s degraded to empty: %s", user_id, e)
        return []


def get_similar_users(
    store: SQLiteStore, user_id: Optional[str], settings: Optional[Settings] = None
) -> List[ScoredCandidate]:
    """Users outside the caller's current buddy group, most similar first."""
    settings = settings or Settings()
    user_id = require_user(user_id)
    try:
        requester = build_profile(store, user_id)
        excluded = {user_id}
        membership = store.active_membership(user_id)
        if membership is not None:
            group = store.get_group(membership.group_id)
            if group is not None:
                excluded.update(m.user_id for m in group.members)

        pool_ids = [
            uid for uid in store.list_user_ids(limit=settings.similar_pool_size)
            if uid not in excluded
        ]
        if not pool_ids:
            return []
        return rank_profiles(
            requester,
            build_profiles(store, pool_ids),
            settings.weights,
            limit=settings.similar_limit,
            display_names=store.display_names(pool_ids),
        )
    except (MatchingError, ValueError) as e:
        logger.warning("Similar-user lookup for %s degraded to empty: %s", user_id, e)
        return []


def find_or_create_group(
    store: SQLiteStore, user_id: Optional[str], settings: Optional[Settings] = None
) -> Allocation:
    return allocate_group(store, user_id, settings)


def get_my_group(store: SQLiteStore, user_id: Optional[str]) -> Optional[MyGroup]:
    user_id = require_user(user_id)
    membership = store.active_membership(user_id)
    if membership is None:
        return None
    group = store.get_group(membership.group_id)
    if group is None:
        return None
    names = store.display_names([m.user_id for m in group.members])
    return MyGroup(
        group=group,
        members=[GroupMemberView(membership=m, display_name=names.get(m.user_id)) for m in group.members],
        my_role=membership.role,
    )
