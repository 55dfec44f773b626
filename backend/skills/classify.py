"""
Column classification skill.

Assigns every column of a result set a semantic type (categorical, numeric,
date) from the first row alone. Rows of a stored report share one schema, so
a single representative sample keeps classification cheap and deterministic.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import pandas as pd

from core.models import ColumnProfile, SemanticType
from core.utils import looks_like_date, parse_number

logger = logging.getLogger("uvicorn.error")


# ---------------------------------------------------------------------------
# Semantic type detection
# ---------------------------------------------------------------------------

def is_identifier_name(col_name: str) -> bool:
    """Columns whose name mentions "id" hold opaque keys, never measures."""
    return "id" in col_name.lower()


def detect_semantic_type(col_name: str, sample: Any) -> SemanticType:
    """Infer the semantic type of a column from its name and one sample value."""
    # Identifier indicators (highest priority)
    if is_identifier_name(col_name):
        return SemanticType.categorical

    if looks_like_date(sample):
        return SemanticType.date

    num = parse_number(sample)
    if num is not None and num >= 0:
        return SemanticType.numeric

    return SemanticType.categorical


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def classify_columns(df: pd.DataFrame) -> List[ColumnProfile]:
    """Profile every column of the frame using row 0 as the sample."""
    if df.empty:
        return []

    first = df.iloc[0]
    profiles = [
        ColumnProfile(name=str(col), semantic_type=detect_semantic_type(str(col), first[col]))
        for col in df.columns
    ]
    logger.debug(
        "Classified %d columns: %s",
        len(profiles),
        {p.name: p.semantic_type.value for p in profiles},
    )
    return profiles


def columns_of_type(profiles: List[ColumnProfile], semantic_type: SemanticType) -> List[str]:
    return [p.name for p in profiles if p.semantic_type == semantic_type]


def type_counts(profiles: List[ColumnProfile]) -> Dict[str, int]:
    """Count of columns per semantic type, every type present as a key."""
    counts = {t.value: 0 for t in SemanticType}
    for p in profiles:
        counts[p.semantic_type.value] += 1
    return counts
