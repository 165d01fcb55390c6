from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .env_utils import env_int, env_list, env_str
from .services.data_sources.tool_config import DataSourceToolConfig
from .services.data_sources.types import CHART_TYPES


def _raw_env_str(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, int(value)))


@dataclass(frozen=True)
class Settings:
    app_root: Path
    data_dir: Path
    csv_storage_dir: Path
    sources_file: Path | None
    cache_ttl_seconds: int
    timeout_seconds: int
    default_limit: int
    max_limit: int
    default_chart_type: str
    enabled_chart_types: tuple[str, ...]
    encryption_key: str | None
    cors_origins: list[str]

    def tool_config(self) -> DataSourceToolConfig:
        return DataSourceToolConfig(
            cache_ttl_seconds=self.cache_ttl_seconds,
            timeout_seconds=self.timeout_seconds,
            default_limit=self.default_limit,
            max_limit=self.max_limit,
            default_chart_type=self.default_chart_type,
            enabled_chart_types=self.enabled_chart_types,
        )


def _pick_default_data_dir(repo_root: Path) -> Path:
    preferred = repo_root / ".policybot"
    legacy = repo_root / ".policy-assistant"
    if preferred.exists():
        return preferred
    if legacy.exists():
        return legacy
    return preferred


def load_settings() -> Settings:
    repo_root = Path(__file__).resolve().parents[2]

    data_dir_raw = env_str("DATA_DIR", None)
    data_dir = Path(data_dir_raw).expanduser().resolve() if data_dir_raw else _pick_default_data_dir(repo_root).resolve()
    data_dir.mkdir(parents=True, exist_ok=True)
    csv_storage_dir = data_dir / "csv-sources"

    sources_file_raw = env_str("SOURCES_FILE", None)
    sources_file = Path(sources_file_raw).expanduser().resolve() if sources_file_raw else None

    default_chart_type = (env_str("DATA_SOURCE_DEFAULT_CHART_TYPE", "bar") or "bar").strip().lower()
    if default_chart_type not in CHART_TYPES:
        default_chart_type = "bar"
    enabled_chart_types = tuple(
        c for c in (x.lower() for x in env_list("DATA_SOURCE_ENABLED_CHART_TYPES", list(CHART_TYPES))) if c in CHART_TYPES
    ) or CHART_TYPES

    # The unprefixed name is the one documented for the credential store.
    encryption_key = env_str("DATA_SOURCE_ENCRYPTION_KEY", None) or _raw_env_str("DATA_SOURCE_ENCRYPTION_KEY", None)

    cors_origins = [
        origin.strip()
        for origin in (env_str("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000") or "").split(",")
        if origin.strip()
    ]

    return Settings(
        app_root=repo_root,
        data_dir=data_dir,
        csv_storage_dir=csv_storage_dir,
        sources_file=sources_file,
        cache_ttl_seconds=_clamp(env_int("DATA_SOURCE_CACHE_TTL_SECONDS", 3600), 60, 86400),
        timeout_seconds=_clamp(env_int("DATA_SOURCE_TIMEOUT_SECONDS", 30), 5, 120),
        default_limit=_clamp(env_int("DATA_SOURCE_DEFAULT_LIMIT", 30), 1, 200),
        max_limit=_clamp(env_int("DATA_SOURCE_MAX_LIMIT", 200), 1, 500),
        default_chart_type=default_chart_type,
        enabled_chart_types=enabled_chart_types,
        encryption_key=encryption_key,
        cors_origins=cors_origins,
    )
