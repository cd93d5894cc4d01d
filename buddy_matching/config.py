import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .scoring import OverlapFormula, ScoreWeights


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    db_path: Path = Path("buddy_matching.db")
    db_timeout: float = 5.0
    group_capacity: int = 5
    capacity_retries: int = 1
    weights: ScoreWeights = field(default_factory=ScoreWeights)
    candidate_limit: int = 20
    similar_limit: int = 20
    similar_pool_size: int = 100
    log_level: str = "INFO"
    openai_model: str = "gpt-5-mini"
    llm_icebreakers: bool = False


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """Read settings from the environment, after loading a `.env` file if present."""
    load_dotenv(dotenv_path=env_file)

    formula_raw = os.getenv("BUDDY_OVERLAP_FORMULA", OverlapFormula.OVERLAP.value).strip().lower()
    try:
        formula = OverlapFormula(formula_raw)
    except ValueError:
        allowed = ", ".join(f.value for f in OverlapFormula)
        raise ValueError(f"BUDDY_OVERLAP_FORMULA must be one of: {allowed}") from None

    weights = ScoreWeights(
        loneliness=_env_float("BUDDY_WEIGHT_LONELINESS", 40.0),
        leisure=_env_float("BUDDY_WEIGHT_LEISURE", 60.0),
        mood=_env_float("BUDDY_WEIGHT_MOOD", 0.0),
        baseline=_env_float("BUDDY_BASELINE_SCORE", 25.0),
        overlap_formula=formula,
    )

    return Settings(
        db_path=Path(os.getenv("BUDDY_DB_PATH", "buddy_matching.db")),
        db_timeout=_env_float("BUDDY_DB_TIMEOUT", 5.0),
        group_capacity=_env_int("BUDDY_GROUP_CAPACITY", 5, minimum=1),
        capacity_retries=_env_int("BUDDY_CAPACITY_RETRIES", 1),
        weights=weights,
        candidate_limit=_env_int("BUDDY_CANDIDATE_LIMIT", 20, minimum=1),
        similar_limit=_env_int("BUDDY_SIMILAR_LIMIT", 20, minimum=1),
        similar_pool_size=_env_int("BUDDY_SIMILAR_POOL_SIZE", 100, minimum=1),
        log_level=os.getenv("BUDDY_LOG_LEVEL", "INFO"),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-5-mini"),
        llm_icebreakers=_env_bool("BUDDY_LLM_ICEBREAKERS", False),
    )
