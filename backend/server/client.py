"""
Client for the clinic backend that executes stored reports and persists
chart configurations.

Every call is a one-shot request: no retry, no backoff and no client-side
timeout. Transport failures and `success: false` answers both surface as
RemoteCallError carrying a message fit for display.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from core.errors import RemoteCallError
from core.models import (
    ChartConfig,
    ChartConfigPayload,
    ExecuteReportResponse,
    FilterDefinition,
)

logger = logging.getLogger("uvicorn.error")


class ReportsBackendClient:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base = base_url.rstrip("/")
        self.headers = {"Accept": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base,
            headers=self.headers,
            timeout=None,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                r = await client.request(method, path, json=json)
                r.raise_for_status()
                data = r.json() if r.content else {}
        except httpx.HTTPStatusError as e:
            logger.warning("Backend %s %s failed: %s", method, path, e.response.status_code)
            raise RemoteCallError(_message_from(e.response) or f"Backend error ({e.response.status_code})") from e
        except httpx.HTTPError as e:
            logger.warning("Backend %s %s unreachable: %s", method, path, e)
            raise RemoteCallError(f"Report backend unreachable: {e}") from e
        except ValueError as e:
            raise RemoteCallError("Report backend returned invalid JSON") from e

        if isinstance(data, dict) and data.get("success") is False:
            raise RemoteCallError(data.get("message") or "Report backend reported a failure")
        return data if isinstance(data, dict) else {"data": data}

    # -----------------------------------------------------------------------
    # Report execution
    # -----------------------------------------------------------------------

    async def execute_report(self, report_id: int, params: Dict[str, Any]) -> ExecuteReportResponse:
        """Run the stored query; `success: false` is returned, not raised."""
        try:
            data = await self._request("POST", f"/reports/{report_id}/execute", json={"params": params})
        except RemoteCallError as e:
            return ExecuteReportResponse(success=False, results=[], message=str(e))
        return ExecuteReportResponse(
            success=True,
            results=data.get("results") or [],
            message=data.get("message") or "",
        )

    async def list_filter_definitions(self, report_id: int) -> List[FilterDefinition]:
        data = await self._request("GET", f"/reports/{report_id}/filters")
        return [FilterDefinition.model_validate(f) for f in data.get("filters") or []]

    # -----------------------------------------------------------------------
    # Chart configuration persistence
    # -----------------------------------------------------------------------

    async def list_configs(self, report_id: int) -> List[ChartConfig]:
        data = await self._request("GET", f"/reports/{report_id}/chart-configs")
        items = data.get("configs", data.get("data")) or []
        return [ChartConfig.model_validate(c) for c in items]

    async def create_config(self, report_id: int, payload: ChartConfigPayload) -> ChartConfig:
        data = await self._request(
            "POST", f"/reports/{report_id}/chart-config", json=payload.model_dump(mode="json"),
        )
        return ChartConfig.model_validate(data.get("config", data.get("data")))

    async def update_config(
        self, report_id: int, config_id: int, payload: ChartConfigPayload,
    ) -> ChartConfig:
        data = await self._request(
            "PUT", f"/reports/{report_id}/chart-config/{config_id}", json=payload.model_dump(mode="json"),
        )
        return ChartConfig.model_validate(data.get("config", data.get("data")))

    async def delete_config(self, config_id: int) -> None:
        await self._request("DELETE", f"/reports/chart-config/{config_id}")


def _message_from(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("message") or body.get("detail")
    return None
