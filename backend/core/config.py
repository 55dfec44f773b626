"""Service settings.

Read from the environment (and a local `.env`) so the backend location and
chart-config storage can be swapped without code changes.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .models import EmptyExtremumPolicy

load_dotenv()

DEFAULT_BACKEND_URL = "http://localhost:5000/api"
DEFAULT_ADMIN_ROLES = "admin,ADMIN,SUPER_ADMIN,1"


class SettingsError(RuntimeError):
    """Raised when an environment value cannot be interpreted."""


def _env(key: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip() or default


def _split(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [p.strip() for p in value.replace(";", ",").split(",") if p.strip()]


class Settings(BaseModel):
    backend_url: str = DEFAULT_BACKEND_URL
    backend_token: Optional[str] = None
    chart_config_backend: str = "memory"          # memory | remote
    admin_roles: List[str] = Field(default_factory=lambda: _split(DEFAULT_ADMIN_ROLES))
    empty_extremum_policy: EmptyExtremumPolicy = EmptyExtremumPolicy.zero
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])


def load_settings() -> Settings:
    storage = (_env("CHART_CONFIG_BACKEND", "memory") or "memory").lower()
    if storage not in {"memory", "remote"}:
        raise SettingsError(
            f"Unsupported CHART_CONFIG_BACKEND '{storage}'. Expected 'memory' or 'remote'."
        )

    policy = (_env("EMPTY_EXTREMUM_POLICY", "zero") or "zero").lower()
    try:
        empty_policy = EmptyExtremumPolicy(policy)
    except ValueError as exc:
        raise SettingsError(
            f"Unsupported EMPTY_EXTREMUM_POLICY '{policy}'. Expected 'zero' or 'exclude'."
        ) from exc

    return Settings(
        backend_url=(_env("REPORTS_BACKEND_URL", DEFAULT_BACKEND_URL) or DEFAULT_BACKEND_URL).rstrip("/"),
        backend_token=_env("REPORTS_BACKEND_TOKEN"),
        chart_config_backend=storage,
        admin_roles=_split(_env("ADMIN_ROLES", DEFAULT_ADMIN_ROLES)),
        empty_extremum_policy=empty_policy,
        cors_origins=_split(_env("CORS_ORIGINS", "*")) or ["*"],
    )


@lru_cache
def get_settings() -> Settings:
    return load_settings()
