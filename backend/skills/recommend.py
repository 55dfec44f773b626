"""
Deterministic chart recommendation.

suggest_charts() lists chart types the column mix supports, with a short
rationale for each. default_chart() picks the axes used to pre-populate the
chart edit form; it is advisory and never overrides an explicit choice.
"""

from __future__ import annotations

from typing import List

from core.models import ChartType, ColumnProfile, DefaultChart, SemanticType, Suggestion
from skills.classify import columns_of_type

# Number of numeric columns offered as series on the default chart
DEFAULT_SERIES_LIMIT = 3


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _numerics(profiles: List[ColumnProfile]) -> List[str]:
    return columns_of_type(profiles, SemanticType.numeric)


def _categoricals(profiles: List[ColumnProfile]) -> List[str]:
    return columns_of_type(profiles, SemanticType.categorical)


def _dates(profiles: List[ColumnProfile]) -> List[str]:
    return columns_of_type(profiles, SemanticType.date)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def suggest_charts(profiles: List[ColumnProfile]) -> List[Suggestion]:
    """Return every chart type the column mix supports, in suggestion order."""
    numerics = _numerics(profiles)
    cats = _categoricals(profiles)
    dates = _dates(profiles)

    suggestions: List[Suggestion] = []

    if len(numerics) >= 2 and cats:
        suggestions.append(Suggestion(
            chart_type=ChartType.bar,
            rationale=f"Compare {numerics[0]} and {numerics[1]} across {cats[0]} categories.",
        ))
    if dates and numerics:
        suggestions.append(Suggestion(
            chart_type=ChartType.line,
            rationale=f"Show how {numerics[0]} changes over {dates[0]}.",
        ))
    if len(numerics) >= 2:
        suggestions.append(Suggestion(
            chart_type=ChartType.scatter,
            rationale=f"Look for a relationship between {numerics[0]} and {numerics[1]}.",
        ))
    if cats and numerics:
        suggestions.append(Suggestion(
            chart_type=ChartType.pie,
            rationale=f"Share of {numerics[0]} per {cats[0]}.",
        ))
    if len(numerics) >= 3:
        suggestions.append(Suggestion(
            chart_type=ChartType.heatmap,
            rationale=f"Intensity across {len(numerics)} numeric columns.",
        ))

    return suggestions


def default_chart(profiles: List[ColumnProfile]) -> DefaultChart:
    """Pick the chart and axes that pre-populate the edit form."""
    numerics = _numerics(profiles)
    cats = _categoricals(profiles)
    dates = _dates(profiles)

    if cats and numerics:
        return DefaultChart(
            chart_type=ChartType.bar,
            x_axis=cats[0],
            y_axis=numerics[0],
            series=numerics[:DEFAULT_SERIES_LIMIT],
        )
    if dates and numerics:
        return DefaultChart(
            chart_type=ChartType.line,
            x_axis=dates[0],
            y_axis=numerics[0],
            series=numerics[:DEFAULT_SERIES_LIMIT],
        )
    return DefaultChart(chart_type=ChartType.table)
