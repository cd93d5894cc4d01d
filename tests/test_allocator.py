from collections import Counter
from concurrent.futures import ThreadPoolExecutor

import pytest

from buddy_matching.allocator import AllocationOutcome, find_or_create_group, pick_group
from buddy_matching.config import Settings
from buddy_matching.data_models import GroupStatus, LonelinessCategory, MatchingCriteria, MemberRole
from buddy_matching.errors import CapacityRace, NotAuthenticated, OnboardingIncomplete
from buddy_matching.profile import build_profile
from buddy_matching.store import SQLiteStore
from conftest import HIGH, LEISURE_ABD, LEISURE_DGB, LOW, add_assessed_user


def _fill_group(store, settings, prefix, count, **kwargs):
    allocations = []
    for i in range(count):
        user_id = f"{prefix}{i}"
        add_assessed_user(store, user_id, **kwargs)
        allocations.append(find_or_create_group(store, user_id, settings))
    return allocations


def test_first_user_creates_group(store, settings):
    add_assessed_user(store, "u1")
    allocation = find_or_create_group(store, "u1", settings)
    assert allocation.outcome == AllocationOutcome.CREATED
    assert allocation.membership.role == MemberRole.CREATOR
    assert allocation.group.created_by == "u1"
    assert allocation.group.matching_criteria.loneliness_category == LonelinessCategory.LOW
    assert allocation.group.member_count == 1


def test_second_call_is_idempotent(store, settings):
    add_assessed_user(store, "u1")
    first = find_or_create_group(store, "u1", settings)
    again = find_or_create_group(store, "u1", settings)
    assert again.outcome == AllocationOutcome.ALREADY_MEMBER
    assert again.message == "Already in a group"
    assert again.group.group_id == first.group.group_id
    assert again.group.member_count == 1


def test_missing_identity(store, settings):
    with pytest.raises(NotAuthenticated):
        find_or_create_group(store, None, settings)
    with pytest.raises(NotAuthenticated):
        find_or_create_group(store, "  ", settings)


@pytest.mark.parametrize(
    "loneliness, leisure, next_step",
    [(None, None, "loneliness"), (None, LEISURE_DGB, "loneliness"), (LOW, None, "leisure")],
)
def test_onboarding_required(store, settings, loneliness, leisure, next_step):
    add_assessed_user(store, "u1", loneliness=loneliness, leisure=leisure)
    with pytest.raises(OnboardingIncomplete) as excinfo:
        find_or_create_group(store, "u1", settings)
    assert excinfo.value.next_step == next_step
    assert store.active_membership("u1") is None


def test_joins_group_with_same_category(store, settings):
    add_assessed_user(store, "creator")
    created = find_or_create_group(store, "creator", settings)
    add_assessed_user(store, "joiner", leisure=LEISURE_ABD)
    joined = find_or_create_group(store, "joiner", settings)
    assert joined.outcome == AllocationOutcome.JOINED
    assert joined.membership.role == MemberRole.MEMBER
    assert joined.group.group_id == created.group.group_id
    assert joined.group.member_count == 2


def test_different_category_starts_new_group(store, settings):
    add_assessed_user(store, "low")
    low = find_or_create_group(store, "low", settings)
    add_assessed_user(store, "high", loneliness=HIGH)
    high = find_or_create_group(store, "high", settings)
    assert high.outcome == AllocationOutcome.CREATED
    assert high.group.group_id != low.group.group_id


def test_full_group_is_skipped(store, settings):
    allocations = _fill_group(store, settings, "u", 5)
    group_id = allocations[0].group.group_id
    assert all(a.group.group_id == group_id for a in allocations)
    assert store.get_group(group_id).member_count == 5

    add_assessed_user(store, "late")
    late = find_or_create_group(store, "late", settings)
    assert late.outcome == AllocationOutcome.CREATED
    assert late.group.group_id != group_id
    assert store.get_group(group_id).member_count == 5


def test_inactive_group_is_skipped(store, settings):
    add_assessed_user(store, "u1")
    first = find_or_create_group(store, "u1", settings)
    store.set_group_status(first.group.group_id, GroupStatus.INACTIVE)

    add_assessed_user(store, "u2")
    second = find_or_create_group(store, "u2", settings)
    assert second.outcome == AllocationOutcome.CREATED
    assert second.group.group_id != first.group.group_id


def test_best_matching_group_wins(store, settings):
    # same loneliness category, different leisure tastes
    add_assessed_user(store, "abd-fan", leisure=LEISURE_ABD)
    add_assessed_user(store, "dgb-fan", leisure=LEISURE_DGB)
    criteria = MatchingCriteria(loneliness_category=LonelinessCategory.LOW)
    older, _, _ = store.create_group("abd-fan", criteria)
    newer, _, _ = store.create_group("dgb-fan", criteria)

    add_assessed_user(store, "joiner", leisure=LEISURE_DGB)
    profile = build_profile(store, "joiner")
    assert pick_group(store, profile).group_id == newer.group_id

    joined = find_or_create_group(store, "joiner", settings)
    assert joined.group.group_id == newer.group_id
    assert older.group_id != newer.group_id


def test_ties_go_to_oldest_group(store, settings):
    add_assessed_user(store, "a")
    add_assessed_user(store, "b")
    criteria = MatchingCriteria(loneliness_category=LonelinessCategory.LOW)
    older, _, _ = store.create_group("a", criteria)
    store.create_group("b", criteria)

    add_assessed_user(store, "c")
    assert find_or_create_group(store, "c", settings).group.group_id == older.group_id


def test_direct_join_into_full_group_raises(store):
    criteria = MatchingCriteria(loneliness_category=LonelinessCategory.LOW)
    group, _, _ = store.create_group("owner", criteria, capacity=2)
    store.join_group(group.group_id, "second")
    with pytest.raises(CapacityRace) as excinfo:
        store.join_group(group.group_id, "third")
    assert excinfo.value.group_id == group.group_id
    assert store.get_group(group.group_id).member_count == 2
    assert store.active_membership("third") is None


def test_capacity_race_falls_back_to_create(store, settings, monkeypatch):
    add_assessed_user(store, "u1")
    first = find_or_create_group(store, "u1", settings)
    add_assessed_user(store, "u2")

    calls = []

    def always_full(group_id, user_id):
        calls.append(group_id)
        raise CapacityRace(group_id)

    monkeypatch.setattr(store, "join_group", always_full)
    allocation = find_or_create_group(store, "u2", settings)
    assert len(calls) == settings.capacity_retries + 1
    assert allocation.outcome == AllocationOutcome.CREATED
    assert allocation.group.group_id != first.group.group_id


def test_custom_capacity(store, tmp_path):
    settings = Settings(db_path=tmp_path / "buddies.db", group_capacity=2)
    allocations = _fill_group(store, settings, "u", 3)
    assert allocations[0].group.group_id == allocations[1].group.group_id
    assert allocations[2].outcome == AllocationOutcome.CREATED
    assert allocations[2].group.capacity == 2


def test_match_scores_snapshot(store, settings):
    add_assessed_user(store, "twin")
    add_assessed_user(store, "far", loneliness=HIGH, leisure=LEISURE_DGB)
    add_assessed_user(store, "me")
    allocation = find_or_create_group(store, "me", settings)
    scores = allocation.group.matching_criteria.match_scores
    assert [s["user_id"] for s in scores] == ["twin", "far"]
    assert scores[0]["score"] == pytest.approx(100.0)
    assert allocation.group.matching_criteria.target_size == 5


def test_concurrent_allocation_never_overfills(tmp_path):
    db_path = tmp_path / "buddies.db"
    store = SQLiteStore(db_path, timeout=30.0)
    store.init_schema()
    settings = Settings(db_path=db_path, db_timeout=30.0, capacity_retries=3)
    user_ids = [f"u{i:02d}" for i in range(17)]
    for user_id in user_ids:
        add_assessed_user(store, user_id)

    with ThreadPoolExecutor(max_workers=8) as pool:
        allocations = list(pool.map(lambda uid: find_or_create_group(store, uid, settings), user_ids))

    assert len(allocations) == len(user_ids)
    sizes = Counter(a.membership.group_id for a in allocations)
    assert all(size <= 5 for size in sizes.values())
    for group_id in sizes:
        assert store.get_group(group_id).member_count <= 5
    for user_id in user_ids:
        membership = store.active_membership(user_id)
        assert membership is not None
    assert sum(store.get_group(g).member_count for g in sizes) == len(user_ids)
