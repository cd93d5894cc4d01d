from __future__ import annotations

import json
import logging
import time
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

from openai import OpenAI, OpenAIError
from pydantic import BaseModel, Field

from .allocator import group_member_profiles
from .config import Settings
from .data_models import BuddyGroup, LeisureCategory, UserProfile
from .store import SQLiteStore

logger = logging.getLogger(__name__)

TOPIC_COUNT = 3

CANNED_TOPICS: Dict[LeisureCategory, List[str]] = {
    LeisureCategory.A: [
        "Which sport would you pick up if you had a free afternoon every week?",
        "Anyone up for a casual kickabout or a campus run this week?",
    ],
    LeisureCategory.B: [
        "What helps you switch off after a long day of lectures?",
        "Has anyone tried a yoga, pilates or martial arts class on campus?",
    ],
    LeisureCategory.C: [
        "What's a card or board game you could teach the group?",
        "Best game you've played this year, digital or on a table?",
    ],
    LeisureCategory.D: [
        "Share something you've made recently: a recipe, a song, a sketch.",
        "Which creative skill would you learn if time were no issue?",
    ],
    LeisureCategory.E: [
        "Favourite cheap spot near campus to hang out?",
        "What would a perfect Saturday out with this group look like?",
    ],
    LeisureCategory.F: [
        "What do you collect, or what did you collect as a kid?",
        "Which item in your collection has the best story behind it?",
    ],
    LeisureCategory.G: [
        "Best walk or hike you've done near here?",
        "Would you rather spend a day at the beach or in the mountains?",
    ],
}

GENERIC_TOPICS: List[str] = [
    "What's one thing that made you smile this week?",
    "What are you studying, and what made you choose it?",
    "If the group had a free day together, what should we do?",
]


class IcebreakerSuggestions(BaseModel):
    icebreaker_topics: List[str] = Field(default_factory=list)


def shared_categories(group: BuddyGroup, members: Sequence[UserProfile]) -> List[LeisureCategory]:
    """Leisure categories ranked by how many members list them; ties keep A..G order."""
    counts: Counter = Counter()
    for profile in members:
        counts.update(set(profile.top_leisure_categories))
    if not counts:
        counts.update(group.matching_criteria.leisure_categories)
    ordered = [c for c in LeisureCategory if counts[c] > 0]
    ordered.sort(key=lambda c: counts[c], reverse=True)
    return ordered


def canned_icebreakers(categories: Sequence[LeisureCategory], n: int = TOPIC_COUNT) -> List[str]:
    topics: List[str] = []
    # round-robin so the top categories each get a topic before any gets two
    for depth in range(2):
        for category in categories:
            options = CANNED_TOPICS[category]
            if depth < len(options):
                topics.append(options[depth])
    topics.extend(GENERIC_TOPICS)
    return topics[:n]


def call_llm_icebreakers(
    categories: Sequence[LeisureCategory],
    model: str,
    n: int = TOPIC_COUNT,
    max_retries: int = 2,
) -> List[str]:
    """Ask the OpenAI Responses API for icebreakers; empty list on any failure."""
    SYSTEM_PROMPT = (
        "You write warm, low-pressure conversation starters for small groups of university students "
        "who were just matched as buddies. Base every topic on the shared leisure interests provided. "
        "Never mention loneliness, wellbeing scores or why the students were grouped. "
        "Respond ONLY with the structured fields defined by the schema."
    )
    user_payload = {
        "shared_interests": [c.label for c in categories],
        "instructions": [f"Write exactly {n} icebreaker topics, one sentence each."],
    }
    messages: Any = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": json.dumps(user_payload, ensure_ascii=False)},
    ]

    try:
        client = OpenAI()
    except OpenAIError as e:
        logger.warning("OpenAI client init failed for icebreakers (%s); using canned topics", e)
        return []

    for attempt in range(1, max_retries + 1):
        try:
            parsed = client.responses.parse(  # type: ignore[call-arg]
                model=model,
                input=messages,
                text_format=IcebreakerSuggestions,  # type: ignore[arg-type]
            )
            if getattr(parsed, "output_parsed", None) is None:  # type: ignore[attr-defined]
                raise ValueError("Structured parse returned None")
            suggestions: IcebreakerSuggestions = parsed.output_parsed  # type: ignore[assignment]
            return [t.strip() for t in suggestions.icebreaker_topics if t.strip()][:n]
        except (OpenAIError, ValueError) as e:
            if attempt < max_retries:
                time.sleep(0.8 * attempt)
                continue
            logger.warning("OpenAI icebreakers failed (%s); using canned topics", e)
    return []


def suggest_icebreakers(
    store: SQLiteStore, group: BuddyGroup, settings: Optional[Settings] = None
) -> List[str]:
    settings = settings or Settings()
    categories = shared_categories(group, group_member_profiles(store, group))
    if settings.llm_icebreakers and categories:
        topics = call_llm_icebreakers(categories, model=settings.openai_model)
        if topics:
            return topics
    return canned_icebreakers(categories)
