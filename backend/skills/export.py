"""
Export skill — read-side renderers of the current view.

The CSV export is what users open in spreadsheet tools with a Turkish locale,
hence the semicolon separator and the UTF-8 byte-order mark.
"""

from __future__ import annotations

from typing import Any, Dict, List

import pandas as pd

from core.models import ColumnProfile, SemanticType
from core.utils import df_to_records_safe, is_missing, numeric_series, pct

CSV_SEPARATOR = ";"
CSV_BOM = "\ufeff"

# Rows included in the document export
DOCUMENT_PREVIEW_ROWS = 50


def export_csv(df: pd.DataFrame) -> str:
    """Delimited text of the view, BOM-prefixed."""
    if df.columns.empty:
        return CSV_BOM
    body = df.to_csv(sep=CSV_SEPARATOR, index=False, lineterminator="\n")
    return CSV_BOM + body


def summarize_view(df: pd.DataFrame, profiles: List[ColumnProfile]) -> Dict[str, Any]:
    """Row count plus per-column statistics for the document export."""
    rows: List[Dict[str, Any]] = []
    total = len(df)

    for p in profiles:
        if p.name not in df.columns:
            continue
        s = df[p.name]
        missing = int(s.map(is_missing).sum()) if total else 0

        row: Dict[str, Any] = {
            "column": p.name,
            "semantic_type": p.semantic_type.value,
            "count": total - missing,
            "missing": missing,
            "missing_pct": pct(missing, total),
            "distinct": int(s.astype("string").nunique(dropna=True)) if total else 0,
            "sum": None,
            "mean": None,
            "min": None,
            "max": None,
        }

        if p.semantic_type == SemanticType.numeric and total:
            s_num = numeric_series(s).dropna()
            if len(s_num) > 0:
                row["sum"] = float(s_num.sum())
                row["mean"] = float(s_num.mean())
                row["min"] = float(s_num.min())
                row["max"] = float(s_num.max())
        rows.append(row)

    return {"row_count": total, "columns": rows}


def document_payload(df: pd.DataFrame, profiles: List[ColumnProfile]) -> Dict[str, Any]:
    """Data for the paginated document export: summary plus the first rows."""
    return {
        "summary": summarize_view(df, profiles),
        "columns": [str(c) for c in df.columns],
        "rows": df_to_records_safe(df.head(DOCUMENT_PREVIEW_ROWS)),
        "truncated": len(df) > DOCUMENT_PREVIEW_ROWS,
    }
