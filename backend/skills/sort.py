"""
Sort skill — stable, single-column ordering of the current view.

Values compare pairwise by kind: two numbers numerically, two dates
chronologically, anything else as Turkish-collated, case-insensitive text.
Each value gets a key ranked by kind (numbers, then dates, then text) so the
ordering stays transitive on mixed columns. Missing values always go last,
in either direction.
"""

from __future__ import annotations

from typing import Any, List, Optional, Tuple

import pandas as pd

from core.models import SortDirection, SortState
from core.utils import is_missing, parse_date, parse_number, stringify, turkish_collation_key

# Kind ranks within a sort key
_NUMBER, _DATE, _TEXT = 0, 1, 2


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

def sort_key(val: Any) -> Optional[Tuple[int, Any]]:
    """Kind-ranked key for one value; None marks a missing value."""
    if is_missing(val):
        return None
    num = parse_number(val)
    if num is not None:
        return (_NUMBER, num)
    ts = parse_date(val)
    if ts is not None:
        return (_DATE, ts)
    return (_TEXT, turkish_collation_key(stringify(val)))


def sort_keys(series: pd.Series) -> List[Optional[Tuple[int, Any]]]:
    return [sort_key(v) for v in series.tolist()]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def sort_frame(
    df: pd.DataFrame,
    column: Optional[str],
    direction: SortDirection = SortDirection.asc,
) -> pd.DataFrame:
    """Return a new frame ordered by one column; unknown or unset column keeps order."""
    if df.empty or not column or column not in df.columns:
        return df.copy()

    keys = sort_keys(df[column])
    present = [i for i, k in enumerate(keys) if k is not None]
    missing = [i for i, k in enumerate(keys) if k is None]

    # sorted() is stable in both directions
    present.sort(key=lambda i: keys[i], reverse=direction == SortDirection.desc)
    return df.iloc[present + missing].reset_index(drop=True)


def next_sort_state(state: SortState, column: str) -> SortState:
    """Toggle direction on the same column; a new column starts ascending."""
    if state.column == column:
        flipped = SortDirection.desc if state.direction == SortDirection.asc else SortDirection.asc
        return SortState(column=column, direction=flipped)
    return SortState(column=column, direction=SortDirection.asc)
