"""
Shared value helpers for the analysis skills.

Pure functions — no I/O, no side effects. Raw result rows arrive with
arbitrary scalar types, so every skill reads values through these parsers
instead of relying on pandas dtype inference.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd


# ---------------------------------------------------------------------------
# Result set materialization
# ---------------------------------------------------------------------------

def to_frame(rows: Sequence[Dict[str, Any]]) -> pd.DataFrame:
    """Materialize result rows as an object-dtype DataFrame.

    The schema (key set and order) comes from the first row. Missing keys
    become None and keys absent from row 0 are dropped. Values are kept as
    the original Python scalars.
    """
    if not rows:
        return pd.DataFrame()
    columns = list(rows[0].keys())
    df = pd.DataFrame(list(rows), columns=columns, dtype=object)
    return df.where(pd.notna(df), None)


def df_json_safe(df: pd.DataFrame) -> pd.DataFrame:
    """Replace +/-inf -> NaN, then NaN -> None so JSON serialization works."""
    if df.empty:
        return df
    tmp = df.replace([np.inf, -np.inf], np.nan)
    tmp = tmp.astype(object)
    return tmp.where(pd.notna(tmp), None)


def df_to_records_safe(df: pd.DataFrame) -> list[dict]:
    """Convert DataFrame to list of dicts with JSON-safe values."""
    if df.empty:
        return []
    return df_json_safe(df).to_dict(orient="records")


# ---------------------------------------------------------------------------
# Null / text helpers
# ---------------------------------------------------------------------------

def is_missing(val: Any) -> bool:
    """None, NaN/NaT and blank strings count as missing."""
    if val is None:
        return True
    if isinstance(val, str):
        return not val.strip()
    try:
        return bool(pd.isna(val))
    except (TypeError, ValueError):
        return False


def stringify(val: Any) -> str:
    """String form used for search, multi-select membership and group keys."""
    if val is None:
        return ""
    if isinstance(val, bool):
        return "true" if val else "false"
    if isinstance(val, float):
        if math.isnan(val):
            return ""
        if val.is_integer():
            return str(int(val))
        return repr(val)
    if isinstance(val, (datetime, date)):
        return val.isoformat()
    return str(val)


# ---------------------------------------------------------------------------
# Numeric parsing
# ---------------------------------------------------------------------------

def parse_number(val: Any) -> Optional[float]:
    """Parse a scalar as a finite float; None when it is not a number."""
    if val is None or isinstance(val, bool):
        return None
    if isinstance(val, (int, float, np.integer, np.floating)):
        num = float(val)
        return num if math.isfinite(num) else None
    if not isinstance(val, str):
        return None
    text = val.strip()
    if not text:
        return None
    try:
        num = float(text)
    except ValueError:
        return None
    return num if math.isfinite(num) else None


def numeric_series(series: pd.Series) -> pd.Series:
    """Coerce a Series to float, NaN where a value does not parse."""
    return pd.to_numeric(series.map(parse_number), errors="coerce").astype(float)


# ---------------------------------------------------------------------------
# Date parsing
# ---------------------------------------------------------------------------

# (pattern, strptime format of the matched prefix)
DATE_PATTERNS = [
    (re.compile(r"^\d{4}-\d{2}-\d{2}"), "%Y-%m-%d"),
    (re.compile(r"^\d{2}/\d{2}/\d{4}"), "%m/%d/%Y"),
    (re.compile(r"^\d{2}-\d{2}-\d{4}"), "%d-%m-%Y"),
    (re.compile(r"^\d{4}/\d{2}/\d{2}"), "%Y/%m/%d"),
]


def looks_like_date(val: Any) -> bool:
    """True when the value is a date object or starts with a known date pattern."""
    if isinstance(val, (datetime, date, pd.Timestamp)):
        return True
    if not isinstance(val, str):
        return False
    text = val.strip()
    return any(pattern.match(text) for pattern, _ in DATE_PATTERNS)


def _naive(ts: pd.Timestamp) -> pd.Timestamp:
    """Drop any UTC offset, keeping the wall-clock time as written."""
    if ts.tzinfo is not None:
        return ts.tz_localize(None)
    return ts


def parse_date(val: Any) -> Optional[pd.Timestamp]:
    """Parse a scalar into a naive Timestamp; None when it is not a valid date."""
    if isinstance(val, (datetime, date, pd.Timestamp)):
        ts = pd.Timestamp(val)
        return None if pd.isna(ts) else _naive(ts)
    if not isinstance(val, str):
        return None
    text = val.strip()
    for pattern, fmt in DATE_PATTERNS:
        match = pattern.match(text)
        if not match:
            continue
        if fmt == "%Y-%m-%d" and len(text) > match.end():
            # ISO strings may carry a time part
            full = pd.to_datetime(text, errors="coerce")
            if not pd.isna(full):
                return _naive(pd.Timestamp(full))
        ts = pd.to_datetime(match.group(0), format=fmt, errors="coerce")
        return None if pd.isna(ts) else pd.Timestamp(ts)
    return None


def date_series(series: pd.Series) -> pd.Series:
    """Coerce a Series to datetime64, NaT where a value does not parse."""
    return pd.to_datetime(series.map(parse_date), errors="coerce")


# ---------------------------------------------------------------------------
# Turkish collation
# ---------------------------------------------------------------------------

_TR_ALPHABET = "abcçdefgğhıijklmnoöpqrsştuüvwxyz"
_TR_RANK = {ch: i for i, ch in enumerate(_TR_ALPHABET)}


def turkish_lower(text: str) -> str:
    """Lowercase with Turkish dotted/dotless i rules."""
    return text.replace("I", "ı").replace("İ", "i").lower()


def turkish_collation_key(text: str) -> tuple:
    """Case-insensitive sort key following the Turkish alphabet.

    Punctuation and whitespace sort before digits, digits before letters,
    letters outside the Turkish alphabet after it.
    """
    key: List[tuple] = []
    for ch in turkish_lower(text):
        if ch in _TR_RANK:
            key.append((2, _TR_RANK[ch]))
        elif ch.isdigit():
            key.append((1, ord(ch)))
        elif ch.isalpha():
            key.append((3, ord(ch)))
        else:
            key.append((0, ord(ch)))
    return tuple(key)


# ---------------------------------------------------------------------------
# Numeric helpers
# ---------------------------------------------------------------------------

def pct(n: int, d: int) -> float:
    """Percentage with 2-decimal rounding; zero-safe."""
    return 0.0 if d <= 0 else round(100.0 * n / d, 2)
