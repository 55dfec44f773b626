"""
Core Pydantic models for the report analysis engine.

All domain types live here so every module shares the same vocabulary.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Column profile
# ---------------------------------------------------------------------------

class SemanticType(str, Enum):
    categorical = "categorical"
    numeric = "numeric"
    date = "date"


class ColumnProfile(BaseModel):
    name: str
    semantic_type: SemanticType = SemanticType.categorical


# ---------------------------------------------------------------------------
# Chart vocabulary
# ---------------------------------------------------------------------------

class ChartType(str, Enum):
    bar = "bar"
    line = "line"
    pie = "pie"
    area = "area"
    scatter = "scatter"
    heatmap = "heatmap"
    table = "table"


class Aggregation(str, Enum):
    sum = "sum"
    count = "count"
    average = "average"
    min = "min"
    max = "max"


class SortDirection(str, Enum):
    asc = "asc"
    desc = "desc"


class EmptyExtremumPolicy(str, Enum):
    """What min/max report for a group with no numeric y values."""
    zero = "zero"
    exclude = "exclude"


class Suggestion(BaseModel):
    chart_type: ChartType
    rationale: str = ""


class DefaultChart(BaseModel):
    chart_type: ChartType = ChartType.table
    x_axis: Optional[str] = None
    y_axis: Optional[str] = None
    series: List[str] = Field(default_factory=list)


class AggregatedDatum(BaseModel):
    label: str
    value: float
    count: int


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

class SearchFilter(BaseModel):
    kind: Literal["search"] = "search"
    column: Optional[str] = None          # None -> match against every column
    query: str = ""


class RangeFilter(BaseModel):
    kind: Literal["range"] = "range"
    column: str
    min: Optional[float] = None
    max: Optional[float] = None


class DateRangeFilter(BaseModel):
    kind: Literal["date_range"] = "date_range"
    column: str
    start: Optional[date] = None
    end: Optional[date] = None


class MultiSelectFilter(BaseModel):
    kind: Literal["multi_select"] = "multi_select"
    column: str
    values: List[str] = Field(default_factory=list)


FilterSpec = Annotated[
    Union[SearchFilter, RangeFilter, DateRangeFilter, MultiSelectFilter],
    Field(discriminator="kind"),
]


class RangeBounds(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None


class DateBounds(BaseModel):
    start: Optional[date] = None
    end: Optional[date] = None


class FilterState(BaseModel):
    """Filter inputs as the report screen holds them."""
    search: Optional[str] = None
    values: Dict[str, str] = Field(default_factory=dict)
    ranges: Dict[str, RangeBounds] = Field(default_factory=dict)
    date_ranges: Dict[str, DateBounds] = Field(default_factory=dict)
    multi_select: Dict[str, List[str]] = Field(default_factory=dict)

    def to_specs(self) -> List[FilterSpec]:
        """Derive the list of filters that are actually active."""
        specs: List[FilterSpec] = []
        if self.search and self.search.strip():
            specs.append(SearchFilter(query=self.search))
        for column, text in self.values.items():
            if text and text.strip():
                specs.append(SearchFilter(column=column, query=text))
        for column, bounds in self.ranges.items():
            if bounds.min is not None or bounds.max is not None:
                specs.append(RangeFilter(column=column, min=bounds.min, max=bounds.max))
        for column, bounds in self.date_ranges.items():
            if bounds.start is not None or bounds.end is not None:
                specs.append(DateRangeFilter(column=column, start=bounds.start, end=bounds.end))
        for column, selected in self.multi_select.items():
            if selected:
                specs.append(MultiSelectFilter(column=column, values=list(selected)))
        return specs


class SortState(BaseModel):
    column: Optional[str] = None
    direction: SortDirection = SortDirection.asc


# ---------------------------------------------------------------------------
# Chart configuration
# ---------------------------------------------------------------------------

class ChartConfigPayload(BaseModel):
    """Writable part of a chart configuration, as sent by the edit form."""
    name: Optional[str] = None
    chart_type: ChartType = ChartType.bar
    x_axis: str
    y_axis: str
    aggregation: Aggregation = Aggregation.sum
    group_by: Optional[str] = None
    sort_by: SortDirection = SortDirection.desc
    height: int = Field(default=400, gt=0)
    is_default: bool = False


class ChartConfig(ChartConfigPayload):
    id: int
    report_id: int
    name: str
    created_at: Optional[str] = None

    @property
    def effective_group_by(self) -> str:
        return self.group_by or self.x_axis


class ChartRequest(BaseModel):
    """Ad-hoc chart built from the current axis selection (not persisted)."""
    chart_type: ChartType = ChartType.bar
    x_axis: Optional[str] = None
    y_axis: Optional[str] = None
    aggregation: Aggregation = Aggregation.sum
    group_by: Optional[str] = None
    sort_by: SortDirection = SortDirection.desc


class RenderedChart(BaseModel):
    config: ChartConfig
    data: List[AggregatedDatum] = Field(default_factory=list)
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# External collaborator payloads
# ---------------------------------------------------------------------------

class ExecuteReportRequest(BaseModel):
    params: Dict[str, Any] = Field(default_factory=dict)


class ExecuteReportResponse(BaseModel):
    success: bool
    results: List[Dict[str, Any]] = Field(default_factory=list)
    message: str = ""


class FilterOption(BaseModel):
    id: Any
    name: str


class FilterDefinition(BaseModel):
    name: str
    label: Optional[str] = None
    kind: Literal["select", "date_range"] = "select"
    multiple: bool = False
    options: List[FilterOption] = Field(default_factory=list)


class LoadResultsRequest(BaseModel):
    results: List[Dict[str, Any]] = Field(default_factory=list)
    message: str = ""


class SortRequest(BaseModel):
    column: str


class EditRequest(BaseModel):
    config_id: Optional[int] = None


# ---------------------------------------------------------------------------
# Session capability
# ---------------------------------------------------------------------------

class SessionContext(BaseModel):
    session_id: str
    role: Optional[str] = None
    can_edit_charts: bool = False
