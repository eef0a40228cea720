from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_SNAPSHOT_PATH_ENV = "FLEET_SNAPSHOT_PATH"
_CATALOG_TTL_ENV = "CATALOG_TTL_SECONDS"
_WORKER_COUNT_ENV = "QUERY_WORKERS"
_PER_QUERY_WORKERS_ENV = "QUERY_WORKERS_PER_QUERY"
_QUERY_TIMEOUT_ENV = "QUERY_TIMEOUT_SECONDS"
_MAX_PAGE_SIZE_ENV = "MAX_PAGE_SIZE"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    snapshot_path: Optional[str]
    catalog_ttl_seconds: float
    query_workers: int
    per_query_workers: int
    query_timeout_seconds: float
    max_page_size: int
    log_level: str


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_float(name: str, default: float, allow_zero: bool = False) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    if parsed < 0 or (parsed == 0 and not allow_zero):
        return default
    return parsed


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    workers = _read_positive_int(_WORKER_COUNT_ENV, 8)
    return Settings(
        snapshot_path=_read_optional_env(_SNAPSHOT_PATH_ENV, "./tmp/fleet.json"),
        # Zero disables catalog caching entirely.
        catalog_ttl_seconds=_read_float(_CATALOG_TTL_ENV, 30.0, allow_zero=True),
        query_workers=workers,
        # Pool threads one query may borrow; the request thread always works too.
        per_query_workers=_read_positive_int(_PER_QUERY_WORKERS_ENV, max(1, workers // 2)),
        query_timeout_seconds=_read_float(_QUERY_TIMEOUT_ENV, 10.0),
        max_page_size=_read_positive_int(_MAX_PAGE_SIZE_ENV, 500),
        log_level=_read_log_level("INFO"),
    )
