"""
Tests for chart configuration persistence, the report session pipeline,
the clinic backend client and the HTTP API.
"""

import asyncio
import json
import re

import httpx
import pytest
from fastapi.testclient import TestClient

import server.chart_store as chart_store
from core.config import Settings, get_settings
from core.errors import ConfigNotFound, ConfirmationRequired, PermissionDenied, RemoteCallError
from core.models import (
    Aggregation,
    ChartConfig,
    ChartConfigPayload,
    ChartRequest,
    ChartType,
    ExecuteReportResponse,
    FilterDefinition,
    FilterOption,
    FilterState,
    RangeBounds,
    SessionContext,
    SortDirection,
)
from core.storage import (
    CHART_CONFIGS,
    SESSION_CONTEXTS,
    InMemoryChartConfigRepository,
    get_session_context,
)
from main import app
from server.api import get_backend
from server.chart_store import ChartConfigStore, ChartEditSession, render_charts
from server.client import ReportsBackendClient
from server.orchestrator import REPORT_SESSIONS, ReportSession

ADMIN = SessionContext(session_id="s-admin", role="admin", can_edit_charts=True)
VIEWER = SessionContext(session_id="s-viewer", role="doctor", can_edit_charts=False)

ROWS = [
    {"clinic": "Merkez", "doctor": "Dr. Kaya", "amount": 100, "visit_date": "2024-01-10"},
    {"clinic": "Şube", "doctor": "Dr. Demir", "amount": 40, "visit_date": "2024-01-12"},
    {"clinic": "Merkez", "doctor": "Dr. Demir", "amount": 60, "visit_date": "2024-02-03"},
    {"clinic": "Çankaya", "doctor": "Dr. Kaya", "amount": None, "visit_date": "2024-02-20"},
]


def _payload(**overrides):
    fields = {"name": "Revenue", "x_axis": "clinic", "y_axis": "amount"}
    fields.update(overrides)
    return ChartConfigPayload(**fields)


@pytest.fixture
def store():
    return ChartConfigStore(InMemoryChartConfigRepository())


@pytest.fixture(autouse=True)
def _reset_state():
    SESSION_CONTEXTS.clear()
    REPORT_SESSIONS.clear()
    CHART_CONFIGS.clear()
    yield
    app.dependency_overrides.clear()


class TestSessionCapability:
    """Tests for the once-per-session edit capability."""

    @pytest.mark.parametrize("role,expected", [
        ("admin", True),
        ("SUPER_ADMIN", True),
        ("1", True),
        ("doctor", False),
        (None, False),
    ])
    def test_admin_roles(self, role, expected):
        ctx = get_session_context(f"s-{role}", role, ["admin", "ADMIN", "SUPER_ADMIN", "1"])
        assert ctx.can_edit_charts is expected

    def test_resolved_once(self):
        first = get_session_context("s1", "admin", ["admin"])
        second = get_session_context("s1", "doctor", ["admin"])
        assert second is first
        assert second.can_edit_charts is True


class TestChartConfigStore:
    """Tests for CRUD orchestration over a chart config repository."""

    def test_round_trip_keeps_enum_values(self, store):
        payload = _payload(
            chart_type=ChartType.pie,
            aggregation=Aggregation.average,
            sort_by=SortDirection.asc,
            group_by="doctor",
            height=320,
        )
        created = asyncio.run(store.create(ADMIN, 7, payload))
        [listed] = asyncio.run(store.list(7))

        assert listed == created
        assert listed.chart_type == ChartType.pie
        assert listed.aggregation == Aggregation.average
        assert listed.sort_by == SortDirection.asc
        assert listed.effective_group_by == "doctor"
        assert ChartConfig.model_validate(listed.model_dump(mode="json")) == listed

    def test_blank_name_gets_timestamp(self, store):
        created = asyncio.run(store.create(ADMIN, 7, _payload(name="  ")))
        assert re.fullmatch(r"Chart \d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}", created.name)

    def test_mutations_require_edit_capability(self, store):
        with pytest.raises(PermissionDenied):
            asyncio.run(store.create(VIEWER, 7, _payload()))
        created = asyncio.run(store.create(ADMIN, 7, _payload()))
        with pytest.raises(PermissionDenied):
            asyncio.run(store.update(VIEWER, 7, created.id, _payload(name="x")))
        with pytest.raises(PermissionDenied):
            asyncio.run(store.delete(VIEWER, 7, created.id, confirmed=True))

    def test_update_replaces_the_whole_record(self, store):
        created = asyncio.run(store.create(ADMIN, 7, _payload(group_by="doctor", height=500)))
        updated = asyncio.run(store.update(ADMIN, 7, created.id, _payload(name="Renamed")))
        assert updated.id == created.id
        assert updated.name == "Renamed"
        assert updated.group_by is None
        assert updated.height == 400
        assert store.cached(7) == [updated]

    def test_update_unknown_config(self, store):
        with pytest.raises(ConfigNotFound):
            asyncio.run(store.update(ADMIN, 7, 99, _payload()))

    def test_delete_requires_confirmation(self, store):
        created = asyncio.run(store.create(ADMIN, 7, _payload()))
        with pytest.raises(ConfirmationRequired):
            asyncio.run(store.delete(ADMIN, 7, created.id))
        assert len(asyncio.run(store.list(7))) == 1

        asyncio.run(store.delete(ADMIN, 7, created.id, confirmed=True))
        assert asyncio.run(store.list(7)) == []
        assert store.cached(7) == []

    def test_delete_is_scoped_to_report(self, store):
        created = asyncio.run(store.create(ADMIN, 8, _payload()))
        with pytest.raises(ConfigNotFound):
            asyncio.run(store.delete(ADMIN, 7, created.id, confirmed=True))
        assert [c.id for c in asyncio.run(store.list(8))] == [created.id]

    def test_single_default_per_report(self, store):
        first = asyncio.run(store.create(ADMIN, 7, _payload(name="a", is_default=True)))
        second = asyncio.run(store.create(ADMIN, 7, _payload(name="b", is_default=True)))
        other_report = asyncio.run(store.create(ADMIN, 8, _payload(name="c", is_default=True)))

        defaults = {c.id: c.is_default for c in asyncio.run(store.list(7))}
        assert defaults == {first.id: False, second.id: True}
        assert asyncio.run(store.list(8))[0].id == other_report.id
        assert asyncio.run(store.list(8))[0].is_default is True

    def test_configs_are_scoped_to_report(self, store):
        asyncio.run(store.create(ADMIN, 7, _payload()))
        assert asyncio.run(store.list(8)) == []


class TestChartEditSession:
    """Tests for the explicit edit-session config id."""

    def test_save_without_begin_creates(self, store):
        edit = ChartEditSession()
        saved = asyncio.run(edit.save(store, ADMIN, 7, _payload()))
        assert saved.id == 1
        assert edit.editing_id is None

    def test_save_after_begin_updates(self, store):
        created = asyncio.run(store.create(ADMIN, 7, _payload()))
        edit = ChartEditSession()
        edit.begin(created)
        assert edit.editing_id == created.id

        saved = asyncio.run(edit.save(store, ADMIN, 7, _payload(name="Edited")))
        assert saved.id == created.id
        assert edit.editing_id is None
        assert [c.name for c in asyncio.run(store.list(7))] == ["Edited"]

    def test_cancel_clears_id(self, store):
        created = asyncio.run(store.create(ADMIN, 7, _payload()))
        edit = ChartEditSession()
        edit.begin(created)
        edit.cancel()
        asyncio.run(edit.save(store, ADMIN, 7, _payload(name="New")))
        assert len(asyncio.run(store.list(7))) == 2

    def test_failed_save_keeps_id(self, store):
        created = asyncio.run(store.create(ADMIN, 7, _payload()))
        edit = ChartEditSession()
        edit.begin(created)
        with pytest.raises(PermissionDenied):
            asyncio.run(edit.save(store, VIEWER, 7, _payload()))
        assert edit.editing_id == created.id


class TestRenderCharts:
    """Tests for rendering every saved config against one view."""

    def test_each_config_is_isolated(self, monkeypatch):
        session = ReportSession(7)
        session.load(ROWS)
        configs = [
            ChartConfig(id=1, report_id=7, name="broken", x_axis="clinic", y_axis="amount"),
            ChartConfig(id=2, report_id=7, name="ok", x_axis="clinic", y_axis="amount"),
        ]
        original = chart_store.aggregate_config

        def flaky(df, config, **kwargs):
            if config.id == 1:
                raise ValueError("bad config")
            return original(df, config, **kwargs)

        monkeypatch.setattr(chart_store, "aggregate_config", flaky)
        rendered = render_charts(session.current_view(), configs)

        assert rendered[0].error == "bad config"
        assert rendered[0].data == []
        assert rendered[1].error is None
        assert [d.label for d in rendered[1].data] == ["Merkez", "Şube", "Çankaya"]

    def test_unknown_axis_renders_empty(self):
        session = ReportSession(7)
        session.load(ROWS)
        config = ChartConfig(id=3, report_id=7, name="stale", x_axis="removed", y_axis="amount")
        [rendered] = session.render([config])
        assert rendered.data == []
        assert rendered.error is None


class _GatedExecutor:
    """Executor whose responses are released by the test, in any order."""

    def __init__(self):
        self.pending = []

    async def execute_report(self, report_id, params):
        gate = asyncio.Event()
        self.pending.append(gate)
        await gate.wait()
        if params.get("fail"):
            return ExecuteReportResponse(success=False, message="query failed")
        return ExecuteReportResponse(success=True, results=[{"run": params["run"]}], message="ok")


class TestReportSession:
    """Tests for the raw -> filtered -> sorted -> aggregated pipeline."""

    def test_pipeline(self):
        session = ReportSession(7)
        session.load(ROWS, "4 rows")
        session.set_filters(FilterState(ranges={"amount": RangeBounds(min=50)}))
        session.toggle_sort("amount")
        session.toggle_sort("amount")

        view = session.current_view()
        assert view["amount"].tolist() == [100, 60]
        assert len(session.raw) == 4

        data = session.chart_data(ChartRequest(x_axis="clinic", y_axis="amount"))
        assert [(d.label, d.value, d.count) for d in data] == [("Merkez", 160.0, 2)]

    def test_load_profiles_columns(self):
        session = ReportSession(7)
        session.load(ROWS)
        assert [p.semantic_type.value for p in session.profiles] == [
            "categorical", "categorical", "numeric", "date",
        ]
        assert session.default_chart().x_axis == "clinic"

    def test_later_execution_wins(self):
        async def scenario():
            session = ReportSession(7)
            executor = _GatedExecutor()
            first = asyncio.create_task(session.execute(executor, {"run": 1}))
            second = asyncio.create_task(session.execute(executor, {"run": 2}))
            while len(executor.pending) < 2:
                await asyncio.sleep(0)

            executor.pending[1].set()
            _, second_applied = await second
            executor.pending[0].set()
            _, first_applied = await first
            return session, first_applied, second_applied

        session, first_applied, second_applied = asyncio.run(scenario())
        assert second_applied is True
        assert first_applied is False
        assert session.raw["run"].tolist() == [2]

    def test_direct_load_supersedes_pending_execution(self):
        async def scenario():
            session = ReportSession(7)
            executor = _GatedExecutor()
            task = asyncio.create_task(session.execute(executor, {"run": 1}))
            while not executor.pending:
                await asyncio.sleep(0)

            session.load([{"run": "loaded"}])
            executor.pending[0].set()
            _, applied = await task
            return session, applied

        session, applied = asyncio.run(scenario())
        assert applied is False
        assert session.raw["run"].tolist() == ["loaded"]

    def test_failed_execution_raises(self):
        async def scenario():
            session = ReportSession(7)
            executor = _GatedExecutor()
            task = asyncio.create_task(session.execute(executor, {"fail": True}))
            while not executor.pending:
                await asyncio.sleep(0)
            executor.pending[0].set()
            await task

        with pytest.raises(RemoteCallError, match="query failed"):
            asyncio.run(scenario())


class TestReportsBackendClient:
    """Tests for the clinic backend client against a mock transport."""

    def _client(self, handler):
        return ReportsBackendClient(
            "http://backend.test/api/", token="tkn", transport=httpx.MockTransport(handler),
        )

    def test_execute_report(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "results": [{"a": 1}], "message": "ok"})

        response = asyncio.run(self._client(handler).execute_report(5, {"from": "2024-01-01"}))
        assert response.success is True
        assert response.results == [{"a": 1}]
        assert seen == {
            "path": "/api/reports/5/execute",
            "auth": "Bearer tkn",
            "body": {"params": {"from": "2024-01-01"}},
        }

    @pytest.mark.parametrize("status,body,message", [
        (200, {"success": False, "message": "invalid parameters"}, "invalid parameters"),
        (500, {"message": "database down"}, "database down"),
    ])
    def test_execute_failure_is_returned(self, status, body, message):
        client = self._client(lambda request: httpx.Response(status, json=body))
        response = asyncio.run(client.execute_report(5, {}))
        assert response.success is False
        assert response.message == message

    def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RemoteCallError, match="unreachable"):
            asyncio.run(self._client(handler).list_configs(5))

    def test_list_filter_definitions(self):
        def handler(request):
            return httpx.Response(200, json={"success": True, "filters": [
                {"name": "clinic", "kind": "select", "multiple": True, "options": [{"id": 1, "name": "Merkez"}]},
                {"name": "period", "kind": "date_range"},
            ]})

        definitions = asyncio.run(self._client(handler).list_filter_definitions(5))
        assert [d.kind for d in definitions] == ["select", "date_range"]
        assert definitions[0].options[0].name == "Merkez"

    def test_chart_config_crud_paths(self):
        calls = []
        config = {"id": 3, "report_id": 5, "name": "Revenue", "x_axis": "clinic", "y_axis": "amount",
                  "chart_type": "line", "aggregation": "max", "sort_by": "asc"}

        def handler(request):
            calls.append((request.method, request.url.path))
            if request.method == "GET":
                return httpx.Response(200, json={"success": True, "configs": [config]})
            if request.method == "DELETE":
                return httpx.Response(200, json={"success": True})
            return httpx.Response(200, json={"success": True, "config": config})

        client = self._client(handler)
        [listed] = asyncio.run(client.list_configs(5))
        created = asyncio.run(client.create_config(5, _payload()))
        asyncio.run(client.update_config(5, 3, _payload()))
        asyncio.run(client.delete_config(3))

        assert listed.chart_type == ChartType.line
        assert listed.aggregation == Aggregation.max
        assert created.id == 3
        assert calls == [
            ("GET", "/api/reports/5/chart-configs"),
            ("POST", "/api/reports/5/chart-config"),
            ("PUT", "/api/reports/5/chart-config/3"),
            ("DELETE", "/api/reports/chart-config/3"),
        ]


class _FakeBackend:
    def __init__(self, response):
        self.response = response
        self.params = []

    async def execute_report(self, report_id, params):
        self.params.append(params)
        return self.response

    async def list_filter_definitions(self, report_id):
        return [FilterDefinition(name="clinic", options=[FilterOption(id=1, name="Merkez")])]


class TestReportsApi:
    """Tests for the HTTP surface."""

    @pytest.fixture
    def client(self):
        app.dependency_overrides[get_settings] = lambda: Settings()
        return TestClient(app)

    def _headers(self, sid="s1", role=None):
        headers = {"X-Session-Id": sid}
        if role:
            headers["X-User-Role"] = role
        return headers

    def _load(self, client, sid="s1", role=None):
        r = client.post("/api/reports/7/results", json={"results": ROWS}, headers=self._headers(sid, role))
        assert r.status_code == 200
        return r.json()

    def test_missing_session_header(self, client):
        assert client.get("/api/reports/7/profile").status_code == 400

    def test_load_and_profile(self, client):
        loaded = self._load(client)
        assert loaded["row_count"] == 4
        assert loaded["columns"] == ["clinic", "doctor", "amount", "visit_date"]

        profile = client.get("/api/reports/7/profile", headers=self._headers()).json()
        assert {c["name"]: c["semantic_type"] for c in profile["columns"]}["amount"] == "numeric"
        assert profile["type_counts"] == {"categorical": 2, "numeric": 1, "date": 1}
        assert profile["default_chart"]["chart_type"] == "bar"
        assert profile["can_edit_charts"] is False

    def test_execute(self, client):
        backend = _FakeBackend(ExecuteReportResponse(success=True, results=ROWS, message="done"))
        app.dependency_overrides[get_backend] = lambda: backend

        r = client.post("/api/reports/7/execute", json={"params": {"clinic": [1]}}, headers=self._headers())
        assert r.status_code == 200
        assert r.json()["row_count"] == 4
        assert r.json()["message"] == "done"
        assert backend.params == [{"clinic": [1]}]

    def test_execute_failure_is_bad_gateway(self, client):
        backend = _FakeBackend(ExecuteReportResponse(success=False, message="query timed out"))
        app.dependency_overrides[get_backend] = lambda: backend

        r = client.post("/api/reports/7/execute", json={"params": {}}, headers=self._headers())
        assert r.status_code == 502
        assert r.json()["detail"] == "query timed out"

    def test_report_filters(self, client):
        app.dependency_overrides[get_backend] = lambda: _FakeBackend(None)
        r = client.get("/api/reports/7/filters", headers=self._headers())
        assert r.json()["filters"][0]["options"] == [{"id": 1, "name": "Merkez"}]

    def test_filter_sort_and_page_view(self, client):
        self._load(client)
        h = self._headers()

        r = client.put("/api/reports/7/view/filters", json={"search": "kaya"}, headers=h)
        assert r.json()["view_row_count"] == 2

        client.post("/api/reports/7/view/sort", json={"column": "clinic"}, headers=h)
        page = client.get("/api/reports/7/view", params={"limit": 1}, headers=h).json()
        assert page["total_rows"] == 2
        assert page["rows"][0]["clinic"] == "Çankaya"
        assert page["rows"][0]["amount"] is None
        assert page["has_more"] is True
        assert page["next_offset"] == 1

        state = client.get("/api/reports/7/view/filters", headers=h).json()
        assert state["filters"]["search"] == "kaya"
        assert state["sort"] == {"column": "clinic", "direction": "asc"}

    def test_column_values(self, client):
        self._load(client)
        r = client.get("/api/reports/7/columns/clinic/values", headers=self._headers())
        assert r.json()["values"] == ["Merkez", "Şube", "Çankaya"]

    def test_chart_data(self, client):
        self._load(client)
        body = {"x_axis": "clinic", "y_axis": "amount", "aggregation": "count"}
        data = client.post("/api/reports/7/chart-data", json=body, headers=self._headers()).json()["data"]
        assert data[0] == {"label": "Merkez", "value": 2.0, "count": 2}

    def test_viewer_cannot_save_charts(self, client):
        r = client.post(
            "/api/reports/7/chart-config",
            json=_payload().model_dump(mode="json"),
            headers=self._headers(role="doctor"),
        )
        assert r.status_code == 403

    def test_chart_config_crud(self, client):
        self._load(client, role="admin")
        h = self._headers(role="admin")

        created = client.post("/api/reports/7/chart-config", json=_payload().model_dump(mode="json"), headers=h)
        assert created.status_code == 200
        config_id = created.json()["config"]["id"]

        update = _payload(name="Visits", aggregation=Aggregation.count).model_dump(mode="json")
        updated = client.put(f"/api/reports/7/chart-config/{config_id}", json=update, headers=h)
        assert updated.json()["config"]["aggregation"] == "count"

        charts = client.get("/api/reports/7/charts", headers=h).json()["charts"]
        assert charts[0]["config"]["name"] == "Visits"
        assert charts[0]["data"][0]["label"] == "Merkez"

        unconfirmed = client.delete(f"/api/reports/chart-config/{config_id}", params={"report_id": 7}, headers=h)
        assert unconfirmed.status_code == 409

        deleted = client.delete(
            f"/api/reports/chart-config/{config_id}", params={"report_id": 7, "confirm": True}, headers=h,
        )
        assert deleted.status_code == 200
        assert client.get("/api/reports/7/chart-configs", headers=h).json()["configs"] == []

    def test_delete_from_another_report_is_not_found(self, client):
        h = self._headers(role="admin")
        created = client.post("/api/reports/8/chart-config", json=_payload().model_dump(mode="json"), headers=h)
        config_id = created.json()["config"]["id"]

        r = client.delete(
            f"/api/reports/chart-config/{config_id}", params={"report_id": 7, "confirm": True}, headers=h,
        )
        assert r.status_code == 404
        assert len(client.get("/api/reports/8/chart-configs", headers=h).json()["configs"]) == 1

    def test_update_unknown_config_is_not_found(self, client):
        r = client.put(
            "/api/reports/7/chart-config/42",
            json=_payload().model_dump(mode="json"),
            headers=self._headers(role="admin"),
        )
        assert r.status_code == 404

    def test_chart_edit_flow(self, client):
        h = self._headers(role="admin")
        created = client.post("/api/reports/7/chart-config", json=_payload().model_dump(mode="json"), headers=h)
        config_id = created.json()["config"]["id"]

        begun = client.post("/api/reports/7/chart-edit", json={"config_id": config_id}, headers=h)
        assert begun.json()["editing_id"] == config_id

        saved = client.post(
            "/api/reports/7/chart-edit/save", json=_payload(name="Edited").model_dump(mode="json"), headers=h,
        )
        assert saved.json()["config"]["id"] == config_id
        assert saved.json()["editing_id"] is None

        fresh = client.post(
            "/api/reports/7/chart-edit/save", json=_payload(name="Fresh").model_dump(mode="json"), headers=h,
        )
        assert fresh.json()["config"]["id"] != config_id

        missing = client.post("/api/reports/7/chart-edit", json={"config_id": 999}, headers=h)
        assert missing.status_code == 404

    def test_export_csv(self, client):
        self._load(client)
        r = client.get("/api/reports/7/export.csv", headers=self._headers())
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/csv")
        assert r.content.startswith(b"\xef\xbb\xbf")
        assert r.content.decode("utf-8-sig").splitlines()[0] == "clinic;doctor;amount;visit_date"

    def test_export_summary(self, client):
        self._load(client)
        summary = client.get("/api/reports/7/export/summary", headers=self._headers()).json()
        assert summary["summary"]["row_count"] == 4
        assert len(summary["rows"]) == 4
        assert summary["truncated"] is False
