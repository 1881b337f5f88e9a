# phaseboard/core/config.py

from __future__ import annotations

import os

from pydantic import BaseModel


def _env(name: str, default: str) -> str:
    return os.getenv(name, default)


def _env_int(name: str, default: int) -> int:
    try:
        return int(_env(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(_env(name, str(default)))
    except ValueError:
        return default


class PivotConfig(BaseModel):
    """Paging limits and cost guards for the asset pivot."""
    default_per_page: int = 15
    max_per_page: int = 100
    max_offset: int = 10000
    grouped_fetch_cap: int = 5000
    request_timeout_s: float = 10.0
    phase_fetch_batch_size: int = 400


class StorageConfig(BaseModel):
    """Review event and category storage backends."""
    event_store: str = "inmem"
    category_store: str = "inmem"
    sqlite_path: str = "./phaseboard_state.db"

    @classmethod
    def from_env(cls) -> "StorageConfig":
        event_store = _env("PHASEBOARD_EVENT_STORE", "inmem").strip().lower()
        return cls(
            event_store=event_store,
            category_store=_env("PHASEBOARD_CATEGORY_STORE", event_store).strip().lower(),
            sqlite_path=_env("PHASEBOARD_SQLITE_PATH", "./phaseboard_state.db"),
        )


class PhaseboardConfig(BaseModel):
    pivot: PivotConfig = PivotConfig()
    storage: StorageConfig = StorageConfig()
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = False

    @classmethod
    def from_env(cls) -> "PhaseboardConfig":
        """Loads configuration from PHASEBOARD_* environment variables."""
        return cls(
            pivot=PivotConfig(
                default_per_page=max(1, _env_int("PHASEBOARD_DEFAULT_PER_PAGE", 15)),
                max_per_page=max(1, _env_int("PHASEBOARD_MAX_PER_PAGE", 100)),
                max_offset=max(0, _env_int("PHASEBOARD_MAX_OFFSET", 10000)),
                grouped_fetch_cap=max(1, _env_int("PHASEBOARD_GROUPED_FETCH_CAP", 5000)),
                request_timeout_s=max(0.1, _env_float("PHASEBOARD_REQUEST_TIMEOUT_S", 10.0)),
                phase_fetch_batch_size=max(1, _env_int("PHASEBOARD_PHASE_FETCH_BATCH", 400)),
            ),
            storage=StorageConfig.from_env(),
            api_host=_env("PHASEBOARD_API_HOST", "0.0.0.0"),
            api_port=_env_int("PHASEBOARD_API_PORT", 8000),
            debug=_env("PHASEBOARD_DEBUG", "false").lower() == "true",
        )


config = PhaseboardConfig.from_env()
