"""
Filter skill — narrows a result set to the rows matching every active filter.

Each filter kind becomes a boolean mask over the frame; masks are ANDed.
Values that do not parse under a range or date filter fail that filter
instead of raising.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

import pandas as pd

from core.models import (
    DateRangeFilter,
    FilterSpec,
    MultiSelectFilter,
    RangeFilter,
    SearchFilter,
)
from core.utils import date_series, numeric_series, stringify

logger = logging.getLogger("uvicorn.error")

DISTINCT_VALUES_LIMIT = 500


# ---------------------------------------------------------------------------
# Per-kind masks
# ---------------------------------------------------------------------------

def _all_rows(df: pd.DataFrame) -> pd.Series:
    return pd.Series(True, index=df.index)


def _no_rows(df: pd.DataFrame) -> pd.Series:
    return pd.Series(False, index=df.index)


def _text(series: pd.Series) -> pd.Series:
    return series.map(stringify).str.casefold()


def _search_mask(df: pd.DataFrame, spec: SearchFilter) -> pd.Series:
    needle = spec.query.strip().casefold()
    if not needle:
        return _all_rows(df)

    if spec.column is None:
        mask = _no_rows(df)
        for col in df.columns:
            mask |= _text(df[col]).str.contains(needle, regex=False)
        return mask

    if spec.column not in df.columns:
        return _no_rows(df)
    return _text(df[spec.column]).str.contains(needle, regex=False)


def _range_mask(df: pd.DataFrame, spec: RangeFilter) -> pd.Series:
    if spec.min is None and spec.max is None:
        return _all_rows(df)
    if spec.column not in df.columns:
        return _no_rows(df)

    nums = numeric_series(df[spec.column])
    mask = nums.notna()
    if spec.min is not None:
        mask &= nums >= spec.min
    if spec.max is not None:
        mask &= nums <= spec.max
    return mask


def _date_range_mask(df: pd.DataFrame, spec: DateRangeFilter) -> pd.Series:
    if spec.start is None and spec.end is None:
        return _all_rows(df)
    if spec.column not in df.columns:
        return _no_rows(df)

    # Bounds are whole days, so compare on the calendar day of each value
    days = date_series(df[spec.column]).dt.normalize()
    mask = days.notna()
    if spec.start is not None:
        mask &= days >= pd.Timestamp(spec.start)
    if spec.end is not None:
        mask &= days <= pd.Timestamp(spec.end)
    return mask


def _multi_select_mask(df: pd.DataFrame, spec: MultiSelectFilter) -> pd.Series:
    if not spec.values:
        return _all_rows(df)
    if spec.column not in df.columns:
        return _no_rows(df)
    allowed = set(spec.values)
    return df[spec.column].map(stringify).isin(allowed)


_MASKS = {
    "search": _search_mask,
    "range": _range_mask,
    "date_range": _date_range_mask,
    "multi_select": _multi_select_mask,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def apply_filters(df: pd.DataFrame, filters: Iterable[FilterSpec]) -> pd.DataFrame:
    """Return the rows that pass every filter. The input frame is not modified."""
    specs = list(filters)
    if df.empty or not specs:
        return df.copy()

    mask = _all_rows(df)
    for spec in specs:
        mask &= _MASKS[spec.kind](df, spec).fillna(False).astype(bool)

    result = df.loc[mask].reset_index(drop=True)
    logger.debug("Filters %s kept %d of %d rows", [s.kind for s in specs], len(result), len(df))
    return result


def distinct_values(
    df: pd.DataFrame,
    column: str,
    limit: Optional[int] = DISTINCT_VALUES_LIMIT,
) -> List[str]:
    """Stringified distinct values of a column, first-seen order, for multi-select options."""
    if df.empty or column not in df.columns:
        return []
    values = [v for v in df[column].map(stringify).drop_duplicates().tolist() if v]
    return values[:limit] if limit else values
