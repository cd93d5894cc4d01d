import os
from pathlib import Path

import pytest

from buddy_matching.config import Settings, load_settings
from buddy_matching.scoring import OverlapFormula


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    env = {k: v for k, v in os.environ.items() if not k.startswith("BUDDY_")}
    monkeypatch.setattr(os, "environ", env)
    return env


def test_defaults(tmp_path):
    settings = load_settings(tmp_path / "missing.env")
    assert settings.group_capacity == 5
    assert settings.capacity_retries == 1
    assert settings.weights.loneliness == 40.0
    assert settings.weights.leisure == 60.0
    assert settings.weights.mood == 0.0
    assert settings.weights.baseline == 25.0
    assert settings.weights.overlap_formula == OverlapFormula.OVERLAP
    assert settings.candidate_limit == 20
    assert settings.similar_pool_size == 100
    assert settings.llm_icebreakers is False
    assert settings == Settings(db_path=settings.db_path, openai_model=settings.openai_model)


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("BUDDY_GROUP_CAPACITY", "4")
    monkeypatch.setenv("BUDDY_WEIGHT_MOOD", "20")
    monkeypatch.setenv("BUDDY_OVERLAP_FORMULA", "Jaccard")
    monkeypatch.setenv("BUDDY_LLM_ICEBREAKERS", "yes")
    monkeypatch.setenv("BUDDY_DB_PATH", str(tmp_path / "x.db"))
    settings = load_settings(tmp_path / "missing.env")
    assert settings.group_capacity == 4
    assert settings.weights.mood == 20.0
    assert settings.weights.overlap_formula == OverlapFormula.JACCARD
    assert settings.llm_icebreakers is True
    assert settings.db_path == Path(tmp_path / "x.db")


def test_env_file_is_loaded(tmp_path, clean_env):
    env_file = tmp_path / ".env"
    env_file.write_text("BUDDY_CANDIDATE_LIMIT=7\nBUDDY_CAPACITY_RETRIES=3\n")
    settings = load_settings(env_file)
    assert settings.candidate_limit == 7
    assert settings.capacity_retries == 3
    assert clean_env["BUDDY_CANDIDATE_LIMIT"] == "7"


@pytest.mark.parametrize(
    "name, value",
    [
        ("BUDDY_OVERLAP_FORMULA", "cosine"),
        ("BUDDY_GROUP_CAPACITY", "0"),
        ("BUDDY_GROUP_CAPACITY", "five"),
        ("BUDDY_WEIGHT_LEISURE", "-1"),
        ("BUDDY_DB_TIMEOUT", "soon"),
    ],
)
def test_invalid_values_raise(monkeypatch, tmp_path, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        load_settings(tmp_path / "missing.env")
