"""
Chart configuration store.

Orchestrates CRUD over saved chart configurations on top of a repository
(the clinic backend client or the in-memory store). Mutations require the
session's edit capability and are always followed by a full reload, so the
cached list matches the repository exactly.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional, Protocol

import pandas as pd

from core.errors import ConfigNotFound, ConfirmationRequired, PermissionDenied
from core.models import (
    ChartConfig,
    ChartConfigPayload,
    EmptyExtremumPolicy,
    RenderedChart,
    SessionContext,
)
from skills.aggregate import CONFIG_CHART_LIMIT, aggregate_config

logger = logging.getLogger("uvicorn.error")


class ChartConfigRepository(Protocol):
    async def list_configs(self, report_id: int) -> List[ChartConfig]: ...

    async def create_config(self, report_id: int, payload: ChartConfigPayload) -> ChartConfig: ...

    async def update_config(
        self, report_id: int, config_id: int, payload: ChartConfigPayload,
    ) -> ChartConfig: ...

    async def delete_config(self, config_id: int) -> None: ...


def require_editor(ctx: SessionContext) -> None:
    if not ctx.can_edit_charts:
        raise PermissionDenied("Saving, editing and deleting charts requires an admin role.")


def default_config_name(now: Optional[datetime] = None) -> str:
    return f"Chart {(now or datetime.now()):%Y-%m-%d %H:%M:%S}"


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class ChartConfigStore:
    def __init__(self, repository: ChartConfigRepository):
        self.repository = repository
        self._cache: Dict[int, List[ChartConfig]] = {}

    def cached(self, report_id: int) -> List[ChartConfig]:
        return list(self._cache.get(report_id, []))

    async def list(self, report_id: int) -> List[ChartConfig]:
        configs = await self.repository.list_configs(report_id)
        self._cache[report_id] = list(configs)
        return list(configs)

    async def create(
        self, ctx: SessionContext, report_id: int, payload: ChartConfigPayload,
    ) -> ChartConfig:
        require_editor(ctx)
        payload = _with_name(payload)
        created = await self.repository.create_config(report_id, payload)
        logger.info("Chart config %s created for report %s by session %s",
                    created.id, report_id, ctx.session_id)
        if created.is_default:
            await self._clear_other_defaults(report_id, created.id)
        await self.list(report_id)
        return created

    async def update(
        self, ctx: SessionContext, report_id: int, config_id: int, payload: ChartConfigPayload,
    ) -> ChartConfig:
        require_editor(ctx)
        payload = _with_name(payload)
        updated = await self.repository.update_config(report_id, config_id, payload)
        logger.info("Chart config %s updated for report %s", config_id, report_id)
        if updated.is_default:
            await self._clear_other_defaults(report_id, updated.id)
        await self.list(report_id)
        return updated

    async def delete(
        self, ctx: SessionContext, report_id: int, config_id: int, *, confirmed: bool = False,
    ) -> None:
        require_editor(ctx)
        if not confirmed:
            raise ConfirmationRequired(f"Deleting chart config {config_id} must be confirmed.")
        owned = await self.repository.list_configs(report_id)
        if all(c.id != config_id for c in owned):
            raise ConfigNotFound(f"Chart config {config_id} not found for report {report_id}.")
        await self.repository.delete_config(config_id)
        logger.info("Chart config %s deleted from report %s", config_id, report_id)
        await self.list(report_id)

    async def _clear_other_defaults(self, report_id: int, keep_id: int) -> None:
        """At most one config per report stays flagged as default."""
        for other in await self.repository.list_configs(report_id):
            if other.id == keep_id or not other.is_default:
                continue
            fields = other.model_dump(include=set(ChartConfigPayload.model_fields))
            fields["is_default"] = False
            payload = ChartConfigPayload(**fields)
            await self.repository.update_config(report_id, other.id, payload)


def _with_name(payload: ChartConfigPayload) -> ChartConfigPayload:
    if payload.name and payload.name.strip():
        return payload
    return payload.model_copy(update={"name": default_config_name()})


# ---------------------------------------------------------------------------
# Edit session
# ---------------------------------------------------------------------------

class ChartEditSession:
    """Tracks which saved config, if any, the chart form is editing."""

    def __init__(self) -> None:
        self.editing_id: Optional[int] = None

    def begin(self, config: Optional[ChartConfig] = None) -> None:
        self.editing_id = config.id if config is not None else None

    def cancel(self) -> None:
        self.editing_id = None

    async def save(
        self,
        store: ChartConfigStore,
        ctx: SessionContext,
        report_id: int,
        payload: ChartConfigPayload,
    ) -> ChartConfig:
        """Update the config being edited, or create one when none is."""
        if self.editing_id is None:
            saved = await store.create(ctx, report_id, payload)
        else:
            saved = await store.update(ctx, report_id, self.editing_id, payload)
        self.editing_id = None
        return saved


# ---------------------------------------------------------------------------
# Multi-chart rendering
# ---------------------------------------------------------------------------

def render_charts(
    df: pd.DataFrame,
    configs: List[ChartConfig],
    *,
    empty_policy: EmptyExtremumPolicy = EmptyExtremumPolicy.zero,
) -> List[RenderedChart]:
    """Re-aggregate every config against the same view, each independently."""
    rendered: List[RenderedChart] = []
    for config in configs:
        try:
            data = aggregate_config(df, config, limit=CONFIG_CHART_LIMIT, empty_policy=empty_policy)
        except Exception as e:
            logger.exception("Chart config %s failed to render", config.id)
            rendered.append(RenderedChart(config=config, data=[], error=str(e)))
            continue
        rendered.append(RenderedChart(config=config, data=data))
    return rendered

