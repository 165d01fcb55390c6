"""
Query orchestration for the `data_source` tool.

Resolves a named source, checks category access, dispatches to the tabular or
remote path, applies filter -> sort -> aggregate-or-paginate, attaches a
visualization hint and returns one response envelope. Nothing here raises to
the caller: every failure becomes a `{success: false, error: {...}}` envelope.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ...time_utils import elapsed_ms
from .aggregation import aggregate_data
from .api_caller import ApiCaller, ConnectionTestResult
from .csv_handler import parse_csv_file, query_csv_data, query_csv_data_with_aggregation
from .filters import apply_filters, apply_sort
from .registry import DataSourceRegistry
from .tool_config import DataSourceToolConfig
from .types import (
    AggregationConfig,
    ApiDataSource,
    CsvDataSource,
    DataFilter,
    DataSort,
    DataSource,
    DataSourceError,
    QueryError,
    QueryResponse,
    VisualizationHint,
)
from .visualization import recommend_visualization, resolve_visualization


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """Per-request caller context; its categories apply when a tool call names none."""

    category_ids: tuple[int, ...] = ()
    user: str | None = None


@dataclass(frozen=True)
class DataSourceQuery:
    source_name: str
    parameters: dict[str, Any] = field(default_factory=dict)
    filters: list[DataFilter] = field(default_factory=list)
    sort: DataSort | None = None
    limit: int | None = None
    offset: int | None = None
    visualization: dict[str, Any] | None = None
    aggregation: AggregationConfig | None = None
    category_ids: list[int] = field(default_factory=list)


def _error_envelope(error: QueryError, metadata: dict[str, Any] | None = None) -> dict[str, Any]:
    out: dict[str, Any] = {"success": False, "error": error.to_dict()}
    if metadata is not None:
        out["metadata"] = metadata
    return out


def format_envelope(response: QueryResponse, hint: VisualizationHint | None = None) -> dict[str, Any]:
    if not response.success:
        error = response.error or QueryError(code="QUERY_ERROR", message="Unknown error querying data source")
        return _error_envelope(error, response.metadata.to_dict())

    meta = response.metadata
    out: dict[str, Any] = {
        "success": True,
        "metadata": {
            "source": meta.source,
            "sourceType": meta.source_type,
            "recordCount": meta.record_count,
            "totalRecords": meta.total_records,
            "fields": list(meta.fields),
            "executionTimeMs": meta.execution_time_ms,
            "cached": meta.cached,
        },
        "data": response.data,
    }
    if hint is not None:
        out["visualizationHint"] = hint.to_dict()
    return out


class DataSourceQueryService:
    def __init__(
        self,
        *,
        registry: DataSourceRegistry,
        api_caller: ApiCaller,
        tool_config: DataSourceToolConfig | None = None,
    ) -> None:
        self._registry = registry
        self._api_caller = api_caller
        self._tool_config = tool_config or DataSourceToolConfig()

    @property
    def tool_config(self) -> DataSourceToolConfig:
        return self._tool_config

    async def execute(self, query: DataSourceQuery, context: RequestContext | None = None) -> dict[str, Any]:
        name = (query.source_name or "").strip()
        if not name:
            return _error_envelope(QueryError(code="MISSING_SOURCE_NAME", message="source_name is required"))

        category_ids = list(query.category_ids) or list(context.category_ids if context else ())
        if not category_ids:
            return _error_envelope(
                QueryError(
                    code="NO_CATEGORIES",
                    message="No category context provided. Data sources require category access.",
                )
            )

        logger.info("data_source query: source=%s categories=%s", name, category_ids)
        try:
            source = await self._resolve_source(name, category_ids)
            response = await self._run(source, query)
            hint = self._visualization_for(response, query)
        except DataSourceError as e:
            return _error_envelope(e.to_error())
        except Exception as e:
            logger.exception("data_source query failed: %s", name)
            return _error_envelope(
                QueryError(code="QUERY_ERROR", message=str(e) or "Unknown error querying data source")
            )

        return format_envelope(response, hint)

    async def _resolve_source(self, name: str, category_ids: list[int]) -> DataSource:
        source = await self._registry.get_source_by_name(name)
        if source is None:
            available = await self._registry.get_sources_for_categories(category_ids)
            raise DataSourceError(
                "SOURCE_NOT_FOUND",
                f"Data source '{name}' not found",
                availableSources=[s.config.name for s in available],
            )

        # An empty category list makes a source invisible, never open.
        if not set(category_ids).intersection(source.config.category_ids):
            raise DataSourceError(
                "ACCESS_DENIED",
                f"Data source '{name}' is not available for the current categories",
            )

        if source.config.status != "active":
            raise DataSourceError(
                "SOURCE_INACTIVE",
                f"Data source '{name}' is currently {source.config.status}",
                lastError=source.config.last_error,
            )
        return source

    async def _run(self, source: DataSource, query: DataSourceQuery) -> QueryResponse:
        if isinstance(source, ApiDataSource):
            return await self._run_api(source, query)
        if isinstance(source, CsvDataSource):
            return self._run_csv(source, query)
        raise DataSourceError("QUERY_ERROR", f"Unsupported data source type: {getattr(source, 'type', '?')}")

    async def _run_api(self, source: ApiDataSource, query: DataSourceQuery) -> QueryResponse:
        response = await self._api_caller.call(source.config, query.parameters)
        if not response.success or response.data is None:
            return response

        started = time.perf_counter()
        data = apply_filters(response.data, query.filters)
        data = apply_sort(data, query.sort)
        total = len(data)

        meta = response.metadata
        if query.aggregation is not None:
            try:
                data = aggregate_data(data, query.aggregation)
            except Exception as e:
                logger.warning("aggregation failed for %s: %s", source.config.name, e)
                raise DataSourceError("AGGREGATION_ERROR", str(e) or "Aggregation failed") from None
            meta.fields = query.aggregation.result_fields
        else:
            limit = self._tool_config.resolve_limit(query.limit)
            offset = max(0, int(query.offset or 0))
            data = data[offset : offset + limit]

        response.data = data
        meta.total_records = total
        meta.record_count = len(data)
        meta.execution_time_ms += elapsed_ms(started)
        return response

    def _run_csv(self, source: CsvDataSource, query: DataSourceQuery) -> QueryResponse:
        cfg = source.config
        if query.aggregation is not None:
            response = query_csv_data_with_aggregation(
                cfg.file_path, query.aggregation, query.filters, parse_options=cfg.parse_options
            )
        else:
            response = query_csv_data(
                cfg.file_path,
                query.filters,
                query.sort,
                self._tool_config.resolve_limit(query.limit),
                max(0, int(query.offset or 0)),
                parse_options=cfg.parse_options,
            )
        response.metadata.source = cfg.name
        return response

    def _visualization_for(self, response: QueryResponse, query: DataSourceQuery) -> VisualizationHint | None:
        if not response.success or not response.data:
            return None
        if query.visualization:
            return resolve_visualization(query.visualization, self._tool_config)
        rows = response.data
        fields = response.metadata.fields or (list(rows[0].keys()) if isinstance(rows[0], dict) else [])
        return recommend_visualization(rows, fields, query.aggregation, self._tool_config.default_chart_type)

    async def describe_available_sources(self, category_ids: list[int]) -> str:
        """Text block listing the sources visible to `category_ids`, for system-prompt injection."""
        if not category_ids:
            return ""
        sources = await self._registry.get_sources_for_categories(category_ids)
        if not sources:
            return ""

        lines: list[str] = [
            "## Data Visualization Rules",
            "",
            "- Call the data_source tool to fetch data; never write code, SQL or chart markup.",
            "- Charts are rendered automatically from the tool result; describe insights in plain text.",
            "- Use `aggregation` for counts, sums and averages over large sources instead of raw records.",
            "",
            "Available Data Sources:",
        ]
        for s in sources:
            if isinstance(s, ApiDataSource):
                api = s.config
                if api.status != "active":
                    continue
                lines.append(f"\n- {api.name} (API): {api.description}")
                required = [p.name for p in api.parameters if p.required]
                if required:
                    lines.append(f"  Required parameters: {', '.join(required)}")
                fields = [f.name for f in api.response_structure.fields]
                if fields:
                    lines.append(f"  Available fields: {', '.join(fields)}")
            else:
                csv_cfg = s.config
                lines.append(f"\n- {csv_cfg.name} (CSV): {csv_cfg.description}")
                lines.append(f"  Rows: {csv_cfg.row_count}")
                lines.append(f"  Columns: {', '.join(c.name for c in csv_cfg.columns)}")
        return "\n".join(lines)

    async def test_source(self, source: DataSource) -> ConnectionTestResult:
        """Probe a source and record the outcome through the registry when it supports it."""
        if isinstance(source, ApiDataSource):
            result = await self._api_caller.test_connection(source.config)
        else:
            result = _test_csv(source)

        update_status = getattr(self._registry, "update_status", None)
        if update_status is not None:
            status = "active" if result.success else "error"
            await update_status(source.config.id, status, None if result.success else result.message)
        return result


def _test_csv(source: CsvDataSource) -> ConnectionTestResult:
    path = Path(source.config.file_path)
    if not path.is_file():
        return ConnectionTestResult(success=False, message=f"CSV file not found: {path}")
    parsed = parse_csv_file(path, **source.config.parse_options)
    if not parsed.columns:
        return ConnectionTestResult(success=False, message="CSV file has no readable columns")
    return ConnectionTestResult(
        success=True,
        message=f"Parsed {parsed.row_count} rows with {len(parsed.columns)} columns",
        sample_data=parsed.sample_data[:3],
    )
