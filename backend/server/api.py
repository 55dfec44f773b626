"""
Report analysis API routes — mounted as a sub-router on the main FastAPI app.

Every route is scoped to the caller's session (X-Session-Id) and a report id.
The session's role (X-User-Role) is read once, on the first request, and
decides whether the session may save, edit and delete chart configurations.
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response

from core.config import Settings, get_settings
from core.errors import (
    ConfigNotFound,
    ConfirmationRequired,
    PermissionDenied,
    RemoteCallError,
    ReportEngineError,
)
from core.models import (
    ChartConfigPayload,
    ChartRequest,
    EditRequest,
    ExecuteReportRequest,
    FilterState,
    LoadResultsRequest,
    SessionContext,
    SortRequest,
)
from core.storage import CHART_CONFIGS, get_session_context
from core.utils import df_to_records_safe
from server.chart_store import ChartConfigStore
from server.client import ReportsBackendClient
from server.orchestrator import ReportSession, get_report_session
from skills.aggregate import ADHOC_CHART_LIMIT
from skills.classify import type_counts
from skills.export import document_payload, export_csv

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api", tags=["reports"])

VIEW_PAGE_MAX = 100


def require_session_id(request: Request) -> str:
    sid = request.headers.get("X-Session-Id")
    if not sid:
        raise HTTPException(status_code=400, detail="Missing X-Session-Id header.")
    return sid


def _log_response(ctx: str, payload) -> None:
    """Pretty-print JSON-able payloads; fall back to str()."""
    try:
        logger.info("%s response: %s", ctx, json.dumps(payload, indent=2, default=str))
    except (TypeError, ValueError):
        logger.info("%s response (non-serializable): %s", ctx, str(payload))


def _http_error(e: ReportEngineError) -> HTTPException:
    if isinstance(e, RemoteCallError):
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, PermissionDenied):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, ConfigNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ConfirmationRequired):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_backend(settings: Settings = Depends(get_settings)) -> ReportsBackendClient:
    return ReportsBackendClient(settings.backend_url, token=settings.backend_token)


@lru_cache
def _remote_store(base_url: str, token: str) -> ChartConfigStore:
    return ChartConfigStore(ReportsBackendClient(base_url, token=token or None))


_MEMORY_STORE = ChartConfigStore(CHART_CONFIGS)


def get_chart_store(settings: Settings = Depends(get_settings)) -> ChartConfigStore:
    if settings.chart_config_backend == "remote":
        return _remote_store(settings.backend_url, settings.backend_token or "")
    return _MEMORY_STORE


def get_context(request: Request, settings: Settings = Depends(get_settings)) -> SessionContext:
    sid = require_session_id(request)
    return get_session_context(sid, request.headers.get("X-User-Role"), settings.admin_roles)


def _session(ctx: SessionContext, report_id: int, settings: Settings) -> ReportSession:
    return get_report_session(
        ctx.session_id, report_id, empty_policy=settings.empty_extremum_policy,
    )


def _view_summary(session: ReportSession) -> dict:
    return {
        "report_id": session.report_id,
        "row_count": int(len(session.raw)),
        "view_row_count": int(len(session.current_view())),
        "columns": [str(c) for c in session.raw.columns],
        "message": session.message,
    }


# ---------------------------------------------------------------------------
# Report execution
# ---------------------------------------------------------------------------

@router.post("/reports/{report_id}/execute")
async def execute_report(
    report_id: int,
    body: ExecuteReportRequest = ExecuteReportRequest(),
    ctx: SessionContext = Depends(get_context),
    settings: Settings = Depends(get_settings),
    backend: ReportsBackendClient = Depends(get_backend),
):
    """Run the report with the given parameters and load its result set."""
    session = _session(ctx, report_id, settings)
    try:
        response, applied = await session.execute(backend, body.params)
    except RemoteCallError as e:
        logger.warning("Report %s execution failed: %s", report_id, e)
        raise _http_error(e) from e

    if not applied:
        return {"report_id": report_id, "superseded": True, "message": response.message}

    resp = {**_view_summary(session), "superseded": False}
    _log_response("EXECUTE", resp)
    return resp


@router.post("/reports/{report_id}/results")
async def load_results(
    report_id: int,
    body: LoadResultsRequest,
    ctx: SessionContext = Depends(get_context),
    settings: Settings = Depends(get_settings),
):
    """Load an already fetched result set into the session."""
    session = _session(ctx, report_id, settings)
    session.load(body.results, body.message)
    resp = _view_summary(session)
    _log_response("RESULTS", resp)
    return resp


@router.get("/reports/{report_id}/filters")
async def report_filters(
    report_id: int,
    ctx: SessionContext = Depends(get_context),
    backend: ReportsBackendClient = Depends(get_backend),
):
    """Parameter definitions the report accepts (select lists, date ranges)."""
    try:
        definitions = await backend.list_filter_definitions(report_id)
    except RemoteCallError as e:
        raise _http_error(e) from e
    return {"filters": [d.model_dump(mode="json") for d in definitions]}


@router.get("/reports/{report_id}/profile")
async def report_profile(
    report_id: int,
    ctx: SessionContext = Depends(get_context),
    settings: Settings = Depends(get_settings),
):
    session = _session(ctx, report_id, settings)
    resp = {
        "report_id": report_id,
        "columns": [p.model_dump(mode="json") for p in session.profiles],
        "type_counts": type_counts(session.profiles),
        "suggestions": [s.model_dump(mode="json") for s in session.suggestions()],
        "default_chart": session.default_chart().model_dump(mode="json"),
        "can_edit_charts": ctx.can_edit_charts,
    }
    _log_response("PROFILE", resp)
    return resp


# ---------------------------------------------------------------------------
# Current view (filters + sort)
# ---------------------------------------------------------------------------

@router.get("/reports/{report_id}/view/filters")
async def get_view_filters(
    report_id: int,
    ctx: SessionContext = Depends(get_context),
    settings: Settings = Depends(get_settings),
):
    session = _session(ctx, report_id, settings)
    return {
        "filters": session.filters.model_dump(mode="json"),
        "sort": session.sort.model_dump(mode="json"),
    }


@router.put("/reports/{report_id}/view/filters")
async def set_view_filters(
    report_id: int,
    body: FilterState,
    ctx: SessionContext = Depends(get_context),
    settings: Settings = Depends(get_settings),
):
    session = _session(ctx, report_id, settings)
    session.set_filters(body)
    return _view_summary(session)


@router.post("/reports/{report_id}/view/sort")
async def toggle_view_sort(
    report_id: int,
    body: SortRequest,
    ctx: SessionContext = Depends(get_context),
    settings: Settings = Depends(get_settings),
):
    """Clicking a header: same column flips direction, a new one sorts ascending."""
    session = _session(ctx, report_id, settings)
    state = session.toggle_sort(body.column)
    return {"sort": state.model_dump(mode="json")}


@router.get("/reports/{report_id}/view")
async def get_view(
    report_id: int,
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1),
    ctx: SessionContext = Depends(get_context),
    settings: Settings = Depends(get_settings),
):
    """Page through the filtered and sorted rows."""
    session = _session(ctx, report_id, settings)
    limit = min(limit, VIEW_PAGE_MAX)

    view = session.current_view()
    total_rows = len(view)
    end = min(offset + limit, total_rows)
    has_more = end < total_rows

    return {
        "report_id": report_id,
        "columns": [str(c) for c in view.columns],
        "rows": df_to_records_safe(view.iloc[offset:end]),
        "total_rows": total_rows,
        "offset": offset,
        "limit": limit,
        "has_more": has_more,
        "next_offset": end if has_more else None,
    }


@router.get("/reports/{report_id}/columns/{column}/values")
async def column_values(
    report_id: int,
    column: str,
    ctx: SessionContext = Depends(get_context),
    settings: Settings = Depends(get_settings),
):
    """Distinct values offered by a column's multi-select filter."""
    session = _session(ctx, report_id, settings)
    return {"column": column, "values": session.column_values(column)}


# ---------------------------------------------------------------------------
# Charts
# ---------------------------------------------------------------------------

@router.post("/reports/{report_id}/chart-data")
async def chart_data(
    report_id: int,
    body: ChartRequest,
    ctx: SessionContext = Depends(get_context),
    settings: Settings = Depends(get_settings),
):
    """Aggregate the current view for the axes picked on screen."""
    session = _session(ctx, report_id, settings)
    data = session.chart_data(body)
    resp = {
        "chart_type": body.chart_type.value,
        "limit": ADHOC_CHART_LIMIT,
        "data": [d.model_dump() for d in data],
    }
    _log_response("CHART DATA", resp)
    return resp


@router.get("/reports/{report_id}/charts")
async def render_saved_charts(
    report_id: int,
    ctx: SessionContext = Depends(get_context),
    settings: Settings = Depends(get_settings),
    store: ChartConfigStore = Depends(get_chart_store),
):
    """Every saved chart configuration, aggregated against the current view."""
    session = _session(ctx, report_id, settings)
    try:
        configs = await store.list(report_id)
    except ReportEngineError as e:
        raise _http_error(e) from e
    rendered = session.render(configs)
    return {"charts": [c.model_dump(mode="json") for c in rendered]}


# ---------------------------------------------------------------------------
# Chart configuration CRUD
# ---------------------------------------------------------------------------

@router.get("/reports/{report_id}/chart-configs")
async def list_chart_configs(
    report_id: int,
    ctx: SessionContext = Depends(get_context),
    store: ChartConfigStore = Depends(get_chart_store),
):
    try:
        configs = await store.list(report_id)
    except ReportEngineError as e:
        raise _http_error(e) from e
    return {"configs": [c.model_dump(mode="json") for c in configs]}


@router.post("/reports/{report_id}/chart-config")
async def create_chart_config(
    report_id: int,
    body: ChartConfigPayload,
    ctx: SessionContext = Depends(get_context),
    store: ChartConfigStore = Depends(get_chart_store),
):
    try:
        created = await store.create(ctx, report_id, body)
    except ReportEngineError as e:
        raise _http_error(e) from e
    resp = {"config": created.model_dump(mode="json")}
    _log_response("CHART CONFIG CREATE", resp)
    return resp


@router.put("/reports/{report_id}/chart-config/{config_id}")
async def update_chart_config(
    report_id: int,
    config_id: int,
    body: ChartConfigPayload,
    ctx: SessionContext = Depends(get_context),
    store: ChartConfigStore = Depends(get_chart_store),
):
    try:
        updated = await store.update(ctx, report_id, config_id, body)
    except ReportEngineError as e:
        raise _http_error(e) from e
    resp = {"config": updated.model_dump(mode="json")}
    _log_response("CHART CONFIG UPDATE", resp)
    return resp


@router.delete("/reports/chart-config/{config_id}")
async def delete_chart_config(
    config_id: int,
    report_id: int = Query(...),
    confirm: bool = Query(False),
    ctx: SessionContext = Depends(get_context),
    store: ChartConfigStore = Depends(get_chart_store),
):
    """Delete a saved chart; the caller must pass confirm=true."""
    try:
        await store.delete(ctx, report_id, config_id, confirmed=confirm)
    except ReportEngineError as e:
        raise _http_error(e) from e
    return {"ok": True, "deleted": config_id}


# ---------------------------------------------------------------------------
# Chart edit session
# ---------------------------------------------------------------------------

@router.post("/reports/{report_id}/chart-edit")
async def begin_chart_edit(
    report_id: int,
    body: EditRequest = EditRequest(),
    ctx: SessionContext = Depends(get_context),
    settings: Settings = Depends(get_settings),
    store: ChartConfigStore = Depends(get_chart_store),
):
    """Open the chart form, either blank or on an existing config."""
    if not ctx.can_edit_charts:
        raise _http_error(PermissionDenied("Editing charts requires an admin role."))
    session = _session(ctx, report_id, settings)

    config = None
    if body.config_id is not None:
        try:
            configs = await store.list(report_id)
        except ReportEngineError as e:
            raise _http_error(e) from e
        config = next((c for c in configs if c.id == body.config_id), None)
        if config is None:
            raise HTTPException(status_code=404, detail=f"Chart config {body.config_id} not found.")

    session.edit.begin(config)
    return {
        "editing_id": session.edit.editing_id,
        "config": config.model_dump(mode="json") if config else None,
    }


@router.post("/reports/{report_id}/chart-edit/save")
async def save_chart_edit(
    report_id: int,
    body: ChartConfigPayload,
    ctx: SessionContext = Depends(get_context),
    settings: Settings = Depends(get_settings),
    store: ChartConfigStore = Depends(get_chart_store),
):
    session = _session(ctx, report_id, settings)
    try:
        saved = await session.edit.save(store, ctx, report_id, body)
    except ReportEngineError as e:
        raise _http_error(e) from e
    resp = {"config": saved.model_dump(mode="json"), "editing_id": session.edit.editing_id}
    _log_response("CHART EDIT SAVE", resp)
    return resp


@router.post("/reports/{report_id}/chart-edit/cancel")
async def cancel_chart_edit(
    report_id: int,
    ctx: SessionContext = Depends(get_context),
    settings: Settings = Depends(get_settings),
):
    session = _session(ctx, report_id, settings)
    session.edit.cancel()
    return {"editing_id": None}


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

@router.get("/reports/{report_id}/export.csv")
async def export_view_csv(
    report_id: int,
    ctx: SessionContext = Depends(get_context),
    settings: Settings = Depends(get_settings),
):
    """Semicolon-separated, BOM-prefixed CSV of the current view."""
    session = _session(ctx, report_id, settings)
    resp = Response(content=export_csv(session.current_view()), media_type="text/csv; charset=utf-8")
    resp.headers["Content-Disposition"] = f'attachment; filename="report_{report_id}.csv"'
    return resp


@router.get("/reports/{report_id}/export/summary")
async def export_view_summary(
    report_id: int,
    ctx: SessionContext = Depends(get_context),
    settings: Settings = Depends(get_settings),
):
    session = _session(ctx, report_id, settings)
    return document_payload(session.current_view(), session.profiles)
