"""
Report session orchestrator — runs the analysis pipeline for one report.

raw rows -> classify (once per result set) -> filter -> sort = current view
current view -> aggregate per chart configuration

Every stage is recomputed on demand from immutable inputs; nothing is cached
between calls except the raw frame and its column profiles.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Protocol, Tuple

import pandas as pd

from core.errors import RemoteCallError
from core.models import (
    AggregatedDatum,
    ChartConfig,
    ChartRequest,
    ColumnProfile,
    DefaultChart,
    EmptyExtremumPolicy,
    ExecuteReportResponse,
    FilterState,
    SortState,
    Suggestion,
)
from core.utils import to_frame
from server.chart_store import ChartEditSession, render_charts
from skills.aggregate import aggregate_request
from skills.classify import classify_columns
from skills.filters import apply_filters, distinct_values
from skills.recommend import default_chart, suggest_charts
from skills.sort import next_sort_state, sort_frame

logger = logging.getLogger("uvicorn.error")


class ReportExecutor(Protocol):
    async def execute_report(self, report_id: int, params: Dict[str, Any]) -> ExecuteReportResponse: ...


class ReportSession:
    """Analysis state for one report opened in one user session."""

    def __init__(
        self,
        report_id: int,
        *,
        empty_policy: EmptyExtremumPolicy = EmptyExtremumPolicy.zero,
    ):
        self.report_id = report_id
        self.empty_policy = empty_policy
        self.raw: pd.DataFrame = pd.DataFrame()
        self.profiles: List[ColumnProfile] = []
        self.message = ""
        self.filters = FilterState()
        self.sort = SortState()
        self.edit = ChartEditSession()
        self._generation = 0

    # -----------------------------------------------------------------------
    # Loading
    # -----------------------------------------------------------------------

    def load(self, rows: List[Dict[str, Any]], message: str = "") -> None:
        """Replace the result set and re-profile it.

        Loading supersedes any execution still in flight.
        """
        self._generation += 1
        self.raw = to_frame(rows)
        self.profiles = classify_columns(self.raw)
        self.message = message
        logger.info("Report %s loaded: %d rows, %d columns",
                    self.report_id, len(self.raw), len(self.raw.columns))

    async def execute(self, executor: ReportExecutor, params: Dict[str, Any]) -> Tuple[ExecuteReportResponse, bool]:
        """Run the report; a later execution supersedes this one.

        Returns the backend response and whether it was applied to the
        session. Raises RemoteCallError when the backend reports failure.
        """
        self._generation += 1
        generation = self._generation
        response = await executor.execute_report(self.report_id, params)

        if generation != self._generation:
            logger.info("Report %s: discarding superseded execution #%d", self.report_id, generation)
            return response, False
        if not response.success:
            raise RemoteCallError(response.message or "Report execution failed")

        self.load(response.results, response.message)
        return response, True

    # -----------------------------------------------------------------------
    # Derived views
    # -----------------------------------------------------------------------

    def suggestions(self) -> List[Suggestion]:
        return suggest_charts(self.profiles)

    def default_chart(self) -> DefaultChart:
        return default_chart(self.profiles)

    def filtered(self) -> pd.DataFrame:
        return apply_filters(self.raw, self.filters.to_specs())

    def current_view(self) -> pd.DataFrame:
        return sort_frame(self.filtered(), self.sort.column, self.sort.direction)

    def set_filters(self, filters: FilterState) -> None:
        self.filters = filters

    def toggle_sort(self, column: str) -> SortState:
        self.sort = next_sort_state(self.sort, column)
        return self.sort

    def column_values(self, column: str) -> List[str]:
        return distinct_values(self.raw, column)

    def chart_data(self, request: ChartRequest) -> List[AggregatedDatum]:
        return aggregate_request(self.current_view(), request, empty_policy=self.empty_policy)

    def render(self, configs: List[ChartConfig]):
        return render_charts(self.current_view(), configs, empty_policy=self.empty_policy)


# ---------------------------------------------------------------------------
# Session registry
# ---------------------------------------------------------------------------

# session_id -> {report_id: ReportSession}
REPORT_SESSIONS: Dict[str, Dict[int, ReportSession]] = {}


def get_report_session(
    session_id: str,
    report_id: int,
    *,
    empty_policy: EmptyExtremumPolicy = EmptyExtremumPolicy.zero,
) -> ReportSession:
    sess = REPORT_SESSIONS.setdefault(session_id, {})
    if report_id not in sess:
        sess[report_id] = ReportSession(report_id, empty_policy=empty_policy)
    return sess[report_id]

