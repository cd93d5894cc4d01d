from openai import OpenAIError

from buddy_matching import icebreakers
from buddy_matching.config import Settings
from buddy_matching.data_models import LeisureCategory
from buddy_matching.icebreakers import (
    CANNED_TOPICS,
    GENERIC_TOPICS,
    canned_icebreakers,
    shared_categories,
    suggest_icebreakers,
)
from buddy_matching.matcher import find_or_create_group
from conftest import LEISURE_ABD, add_assessed_user, make_profile

A, B, C, D, G = LeisureCategory.A, LeisureCategory.B, LeisureCategory.C, LeisureCategory.D, LeisureCategory.G


def test_canned_topics_round_robin():
    assert canned_icebreakers([D, G]) == [CANNED_TOPICS[D][0], CANNED_TOPICS[G][0], CANNED_TOPICS[D][1]]


def test_canned_topics_pad_with_generic():
    assert canned_icebreakers([]) == GENERIC_TOPICS[:3]
    assert canned_icebreakers([A])[2] == GENERIC_TOPICS[0]


def test_shared_categories_ranked_by_members(store, settings):
    add_assessed_user(store, "me")
    allocation = find_or_create_group(store, "me", settings)
    members = [make_profile("me", top="ABC"), make_profile("you", top="ABD")]
    assert shared_categories(allocation.group, members) == [A, B, C, D]
    # without member profiles the group's own criteria are used
    assert shared_categories(allocation.group, []) == [A, B, C]


def test_suggest_uses_group_interests(store, settings):
    add_assessed_user(store, "me")
    add_assessed_user(store, "you", leisure=LEISURE_ABD)
    find_or_create_group(store, "me", settings)
    group = find_or_create_group(store, "you", settings).group
    assert suggest_icebreakers(store, group, settings) == [
        CANNED_TOPICS[A][0],
        CANNED_TOPICS[B][0],
        CANNED_TOPICS[C][0],
    ]


def test_llm_failure_falls_back_to_canned(store, tmp_path, monkeypatch):
    class BrokenClient:
        def __init__(self, *args, **kwargs):
            raise OpenAIError("no api key")

    monkeypatch.setattr(icebreakers, "OpenAI", BrokenClient)
    settings = Settings(db_path=tmp_path / "buddies.db", llm_icebreakers=True)
    add_assessed_user(store, "me")
    group = find_or_create_group(store, "me", settings).group
    assert icebreakers.call_llm_icebreakers([A], model=settings.openai_model) == []
    assert suggest_icebreakers(store, group, settings) == canned_icebreakers([A, B, C])
