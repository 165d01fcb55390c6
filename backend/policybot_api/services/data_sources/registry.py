from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from pathlib import Path
from typing import Any, Protocol

import yaml

from ...time_utils import utc_now_iso
from .types import ApiDataSource, CsvDataSource, DataSource, SourceStatus, data_source_from_dict


logger = logging.getLogger(__name__)


class DataSourceRegistry(Protocol):
    async def get_source_by_name(self, name: str) -> DataSource | None: ...

    async def get_sources_for_categories(self, category_ids: list[int]) -> list[DataSource]: ...


class InMemoryDataSourceRegistry:
    """
    Process-local registry.

    Reads never mutate; writes are serialized by one lock.
    """

    def __init__(self, sources: list[DataSource] | None = None) -> None:
        self._sources: dict[str, DataSource] = {}
        self._lock = asyncio.Lock()
        for s in sources or []:
            self._sources[s.config.id] = s

    async def get_source_by_name(self, name: str) -> DataSource | None:
        # API sources shadow tabular sources of the same name.
        matches = [s for s in self._sources.values() if s.config.name == name]
        matches.sort(key=lambda s: 0 if s.type == "api" else 1)
        return matches[0] if matches else None

    async def get_source(self, source_id: str) -> DataSource | None:
        return self._sources.get(source_id)

    async def get_sources_for_categories(self, category_ids: list[int]) -> list[DataSource]:
        """Sources linked to any of the categories; API sources only when active. Sorted by name."""
        wanted = set(category_ids or [])
        if not wanted:
            return []
        out: list[DataSource] = []
        for s in self._sources.values():
            if not wanted.intersection(s.config.category_ids):
                continue
            if s.type == "api" and s.config.status != "active":
                continue
            out.append(s)
        out.sort(key=lambda s: s.config.name.lower())
        return out

    async def list_sources(self) -> list[DataSource]:
        return sorted(self._sources.values(), key=lambda s: s.config.name.lower())

    async def save(self, source: DataSource) -> None:
        if not source.config.id:
            raise ValueError("data source id is empty")
        async with self._lock:
            self._sources[source.config.id] = source

    async def delete(self, source_id: str) -> DataSource | None:
        async with self._lock:
            return self._sources.pop(source_id, None)

    async def update_status(self, source_id: str, status: SourceStatus, last_error: str | None = None) -> None:
        async with self._lock:
            source = self._sources.get(source_id)
            if source is None:
                return
            now = utc_now_iso()
            if isinstance(source, ApiDataSource):
                cfg = dataclasses.replace(source.config, status=status, last_error=last_error, last_tested=now, updated_at=now)
                self._sources[source_id] = ApiDataSource(config=cfg)
            elif isinstance(source, CsvDataSource):
                cfg = dataclasses.replace(source.config, status=status, last_error=last_error, updated_at=now)
                self._sources[source_id] = CsvDataSource(config=cfg)


def _source_entries(doc: Any) -> list[dict[str, Any]]:
    if isinstance(doc, dict):
        doc = doc.get("sources") or doc.get("data_sources") or []
    if not isinstance(doc, list):
        raise ValueError("sources file must contain a list of data sources")
    return [item for item in doc if isinstance(item, dict)]


def load_sources_file(path: str | Path) -> list[DataSource]:
    """Read data source definitions from a YAML or JSON file (a list, or a mapping with `sources`)."""
    p = Path(path)
    text = p.read_text(encoding="utf-8")
    doc = json.loads(text) if p.suffix.lower() == ".json" else yaml.safe_load(text)

    sources: list[DataSource] = []
    for index, entry in enumerate(_source_entries(doc)):
        try:
            source = data_source_from_dict(entry)
        except ValueError as e:
            logger.warning("skipping data source #%s in %s: %s", index, p, e)
            continue
        if not source.config.id or not source.config.name:
            logger.warning("skipping data source #%s in %s: id and name are required", index, p)
            continue
        if source.type == "csv" and source.config.file_path and not Path(source.config.file_path).is_absolute():
            resolved = str((p.parent / source.config.file_path).resolve())
            source = CsvDataSource(config=dataclasses.replace(source.config, file_path=resolved))
        sources.append(source)
    return sources
