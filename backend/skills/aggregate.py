"""
Aggregation skill — turns the current view into chart-ready data.

Rows are grouped by the stringified value of the grouping column, one
aggregate is computed per group over the y column, and the groups are sorted
by that aggregate and capped.

Chart data contract: a list of AggregatedDatum {label, value, count} where
count is the number of source rows folded into the group, including rows
whose y value is not numeric.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import pandas as pd

from core.models import (
    AggregatedDatum,
    Aggregation,
    ChartConfig,
    ChartRequest,
    EmptyExtremumPolicy,
    SortDirection,
)
from core.utils import numeric_series, stringify

logger = logging.getLogger("uvicorn.error")

# Display caps on the number of groups
ADHOC_CHART_LIMIT = 20
CONFIG_CHART_LIMIT = 30

LABEL_MAX_CHARS = 20
NULL_GROUP_LABEL = "(empty)"


def _group_key(val) -> str:
    return stringify(val) or NULL_GROUP_LABEL


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def aggregate(
    df: pd.DataFrame,
    *,
    group_by: Optional[str],
    y_axis: Optional[str],
    aggregation: Aggregation = Aggregation.sum,
    sort_by: SortDirection = SortDirection.desc,
    limit: int = ADHOC_CHART_LIMIT,
    empty_policy: EmptyExtremumPolicy = EmptyExtremumPolicy.zero,
) -> List[AggregatedDatum]:
    """Group, aggregate, sort and cap. Unset or unknown axes give no data."""
    if df.empty or not group_by or not y_axis:
        return []
    if group_by not in df.columns or y_axis not in df.columns:
        logger.info("Aggregation skipped: axis %r/%r not in result columns", group_by, y_axis)
        return []

    tmp = pd.DataFrame({
        "__key__": df[group_by].map(_group_key),
        "__y__": numeric_series(df[y_axis]),
    })
    grouped = tmp.groupby("__key__", sort=False)["__y__"]

    stats = pd.DataFrame({
        "count": grouped.size(),
        "sum": grouped.sum(),         # all-NaN group sums to 0
        "min": grouped.min(),
        "max": grouped.max(),
    })

    if aggregation == Aggregation.sum:
        values = stats["sum"]
    elif aggregation == Aggregation.count:
        values = stats["count"].astype(float)
    elif aggregation == Aggregation.average:
        values = (stats["sum"] / stats["count"]).where(stats["count"] > 0, 0.0)
    else:
        values = stats[aggregation.value]
        if empty_policy == EmptyExtremumPolicy.exclude:
            values = values.dropna()
        else:
            values = values.fillna(0.0)

    result = pd.DataFrame({"value": values.astype(float), "count": stats["count"].loc[values.index]})
    result = result.sort_values(
        "value",
        ascending=sort_by == SortDirection.asc,
        kind="stable",
    ).head(limit)

    return [
        AggregatedDatum(label=str(key)[:LABEL_MAX_CHARS], value=float(row["value"]), count=int(row["count"]))
        for key, row in result.iterrows()
    ]


def aggregate_request(
    df: pd.DataFrame,
    request: ChartRequest,
    *,
    empty_policy: EmptyExtremumPolicy = EmptyExtremumPolicy.zero,
) -> List[AggregatedDatum]:
    """Ad-hoc chart from the current axis selection (top 20 groups)."""
    return aggregate(
        df,
        group_by=request.group_by or request.x_axis,
        y_axis=request.y_axis,
        aggregation=request.aggregation,
        sort_by=request.sort_by,
        limit=ADHOC_CHART_LIMIT,
        empty_policy=empty_policy,
    )


def aggregate_config(
    df: pd.DataFrame,
    config: ChartConfig,
    *,
    limit: int = CONFIG_CHART_LIMIT,
    empty_policy: EmptyExtremumPolicy = EmptyExtremumPolicy.zero,
) -> List[AggregatedDatum]:
    """Re-derive a saved chart's data against the current view."""
    return aggregate(
        df,
        group_by=config.effective_group_by,
        y_axis=config.y_axis,
        aggregation=config.aggregation,
        sort_by=config.sort_by,
        limit=limit,
        empty_policy=empty_policy,
    )
