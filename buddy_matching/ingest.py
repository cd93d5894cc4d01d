from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pandas as pd
from pydantic import BaseModel, Field

from .data_models import LeisureCategory, LonelinessCategory
from .store import SQLiteStore
from .surveys import (
    LEISURE_PAIRS,
    LONELINESS_QUESTIONS,
    categorize_loneliness,
    resolve_leisure_category,
    resolve_loneliness_category,
    score_loneliness,
    tally_leisure,
    top_categories,
)

logger = logging.getLogger(__name__)


FIELD_ALIASES: Dict[str, List[str]] = {
    "id": ["user_id", "User ID", "id", "Respondent ID"],
    "name": ["display_name", "Display name", "name", "Your name"],
    "loneliness_total": ["total_score", "loneliness_score", "Loneliness score"],
    "loneliness_category": ["loneliness_category", "Loneliness category"],
    "top_categories": ["top_categories", "leisure_categories", "Top leisure categories"],
}

LONELINESS_ITEM_COLUMNS = [f"loneliness_q{i}" for i in range(1, len(LONELINESS_QUESTIONS) + 1)]
LEISURE_ITEM_COLUMNS = [f"leisure_q{i}" for i in range(1, len(LEISURE_PAIRS) + 1)]

_LIST_SPLIT = re.compile(r"\s*[;,|]\s*")
_BLANK_TOKENS = ["nan", "None", "<NA>", ""]


class IngestReport(BaseModel):
    rows: int = 0
    users: int = 0
    loneliness_assessments: int = 0
    leisure_assessments: int = 0
    skipped: List[str] = Field(default_factory=list)


def get_alias_column(df: pd.DataFrame, key: str) -> Optional[str]:
    for candidate in FIELD_ALIASES.get(key, []):
        if candidate in df.columns:
            return candidate
    return None


def resolve_aliases(df: pd.DataFrame) -> Dict[str, Optional[str]]:
    return {key: get_alias_column(df, key) for key in FIELD_ALIASES}


def clean_survey_df(df: pd.DataFrame) -> pd.DataFrame:
    """Trim headers and text cells; blank-like tokens become None."""
    out = df.copy()
    out.columns = [col.strip() if isinstance(col, str) else col for col in out.columns]
    for col in out.columns:
        if pd.api.types.is_object_dtype(out[col]) or pd.api.types.is_string_dtype(out[col]):
            text = (
                out[col]
                .astype(str)
                .str.replace("\n", " ")
                .str.replace(r"\s+", " ", regex=True)
                .str.strip()
            )
            keep = text.notna() & ~text.isin(_BLANK_TOKENS)
            out[col] = text.astype(object).where(keep, None)
    return out


def _cell(row: pd.Series, col: Optional[str]) -> Optional[str]:
    if col is None or col not in row.index:
        return None
    value = row[col]
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    text = str(value).strip()
    return text or None


def _has_all(row: pd.Series, cols: List[str]) -> bool:
    return all(_cell(row, c) is not None for c in cols)


def _parse_loneliness(
    row: pd.Series, alias_map: Dict[str, Optional[str]]
) -> Optional[Tuple[List[int], int, LonelinessCategory]]:
    if _has_all(row, LONELINESS_ITEM_COLUMNS):
        answers = [int(float(_cell(row, c))) for c in LONELINESS_ITEM_COLUMNS]
        total, category = score_loneliness(answers)
        return answers, total, category

    total_raw = _cell(row, alias_map["loneliness_total"])
    if total_raw is None:
        return None
    total = int(float(total_raw))
    category = categorize_loneliness(total)
    category_raw = _cell(row, alias_map["loneliness_category"])
    if category_raw is not None and resolve_loneliness_category(category_raw) != category:
        logger.warning(
            "Stored category %r disagrees with score %d; using %s", category_raw, total, category.value
        )
    return [], total, category


def _parse_leisure(
    row: pd.Series, alias_map: Dict[str, Optional[str]]
) -> Optional[Tuple[List[str], Dict[LeisureCategory, int], List[LeisureCategory]]]:
    if _has_all(row, LEISURE_ITEM_COLUMNS):
        answers = [_cell(row, c) for c in LEISURE_ITEM_COLUMNS]
        counts = tally_leisure(answers)
        return answers, counts, top_categories(counts)

    raw = _cell(row, alias_map["top_categories"])
    if raw is None:
        return None
    top = [resolve_leisure_category(part) for part in _LIST_SPLIT.split(raw) if part]
    # only the ranking survives in this export format, so each listed category counts once
    return [], {c: 1 for c in top}, top


def ingest_survey_df(store: SQLiteStore, df: pd.DataFrame) -> IngestReport:
    """Load survey results, one user per row, into the store.

    A row may carry the raw answers (`loneliness_q1..6`, `leisure_q1..5`) or
    the already-scored results (total score, top categories). Rows that fail
    validation are skipped and reported. Each row is written in one store
    transaction, so a store failure never leaves a partial row behind.
    """
    cleaned = clean_survey_df(df)
    alias_map = resolve_aliases(cleaned)
    if alias_map["id"] is None:
        raise KeyError(f"Missing user id column; expected one of {FIELD_ALIASES['id']}")

    report = IngestReport(rows=len(cleaned))
    for index, row in cleaned.iterrows():
        user_id = _cell(row, alias_map["id"])
        if user_id is None:
            report.skipped.append(f"row {index}: missing user id")
            continue
        try:
            loneliness = _parse_loneliness(row, alias_map)
            leisure = _parse_leisure(row, alias_map)
        except ValueError as e:
            report.skipped.append(f"row {index} ({user_id}): {e}")
            continue

        store.add_survey_results(user_id, _cell(row, alias_map["name"]), loneliness=loneliness, leisure=leisure)
        report.users += 1
        if loneliness is not None:
            report.loneliness_assessments += 1
        if leisure is not None:
            report.leisure_assessments += 1

    logger.info(
        "Ingested %d users (%d loneliness, %d leisure), skipped %d rows",
        report.users, report.loneliness_assessments, report.leisure_assessments, len(report.skipped),
    )
    return report


def ingest_survey_csv(store: SQLiteStore, csv_path: Path) -> IngestReport:
    return ingest_survey_df(store, pd.read_csv(csv_path))
