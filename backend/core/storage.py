"""
In-memory session + chart configuration storage.

Chart configurations normally live in the clinic backend; this store serves
the same contract when the service runs standalone (CHART_CONFIG_BACKEND=memory)
and in tests.
"""

from __future__ import annotations

import itertools
from datetime import datetime
from typing import Dict, List, Optional

from .errors import ConfigNotFound
from .models import ChartConfig, ChartConfigPayload, SessionContext


# ---------------------------------------------------------------------------
# Session capabilities
# ---------------------------------------------------------------------------

# session_id -> SessionContext (resolved once, on first request)
SESSION_CONTEXTS: Dict[str, SessionContext] = {}


def get_session_context(session_id: str, role: Optional[str], admin_roles: List[str]) -> SessionContext:
    """Return the session's capability context, resolving it on first use."""
    if session_id not in SESSION_CONTEXTS:
        SESSION_CONTEXTS[session_id] = SessionContext(
            session_id=session_id,
            role=role,
            can_edit_charts=bool(role) and role in admin_roles,
        )
    return SESSION_CONTEXTS[session_id]


# ---------------------------------------------------------------------------
# Chart configuration store
# ---------------------------------------------------------------------------

def _now_iso() -> str:
    return datetime.utcnow().isoformat() + "Z"


class InMemoryChartConfigRepository:
    """Chart configurations keyed by id, scoped to a report id."""

    def __init__(self) -> None:
        self._configs: Dict[int, ChartConfig] = {}
        self._ids = itertools.count(1)

    async def list_configs(self, report_id: int) -> List[ChartConfig]:
        return [
            c.model_copy(deep=True)
            for c in self._configs.values()
            if c.report_id == report_id
        ]

    async def create_config(self, report_id: int, payload: ChartConfigPayload) -> ChartConfig:
        config = ChartConfig(
            **payload.model_dump(),
            id=next(self._ids),
            report_id=report_id,
            created_at=_now_iso(),
        )
        self._configs[config.id] = config
        return config.model_copy(deep=True)

    async def update_config(
        self, report_id: int, config_id: int, payload: ChartConfigPayload,
    ) -> ChartConfig:
        existing = self._configs.get(config_id)
        if existing is None or existing.report_id != report_id:
            raise ConfigNotFound(f"Chart config {config_id} not found for report {report_id}.")
        updated = ChartConfig(
            **payload.model_dump(),
            id=config_id,
            report_id=report_id,
            created_at=existing.created_at,
        )
        self._configs[config_id] = updated
        return updated.model_copy(deep=True)

    async def delete_config(self, config_id: int) -> None:
        if self._configs.pop(config_id, None) is None:
            raise ConfigNotFound(f"Chart config {config_id} not found.")

    def clear(self) -> None:
        self._configs.clear()
        self._ids = itertools.count(1)


CHART_CONFIGS = InMemoryChartConfigRepository()
