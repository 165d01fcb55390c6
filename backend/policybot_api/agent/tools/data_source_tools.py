from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict

from ...services.data_sources.filters import parse_filters, parse_sort
from ...services.data_sources.query_service import DataSourceQuery, DataSourceQueryService, RequestContext
from ...services.data_sources.types import (
    AGGREGATION_OPERATIONS,
    CHART_TYPES,
    FILTER_OPERATORS,
    AggregationConfig,
    AggregationMetric,
)
from .base import ToolContext, ToolDefinition


_DESCRIPTION = (
    "Query data sources (APIs and CSV files) configured by administrators and return structured rows "
    "with an optional chart hint. Only sources linked to the current category are accessible. "
    "Charts are rendered automatically from the result: do not generate code, SQL or chart markup, "
    "describe the insights in plain text. For counts, sums and averages over large sources use "
    "`aggregation` (group_by may be a list for cross-tabulation) instead of fetching raw records."
)


class DataSourceToolArgs(BaseModel):
    """Malformed optional parts are dropped when converted to a query."""

    model_config = ConfigDict(extra="ignore")

    source_name: Any = ""
    parameters: Any = None
    filters: Any = None
    sort: Any = None
    limit: Any = None
    offset: Any = None
    visualization: Any = None
    aggregation: Any = None
    category_ids: Any = None

    def to_query(self) -> DataSourceQuery:
        return DataSourceQuery(
            source_name=str(self.source_name or "").strip(),
            parameters=dict(self.parameters) if isinstance(self.parameters, dict) else {},
            filters=parse_filters(self.filters),
            sort=parse_sort(self.sort),
            limit=_opt_int(self.limit),
            offset=_opt_int(self.offset),
            visualization=_parse_visualization(self.visualization),
            aggregation=parse_aggregation(self.aggregation),
            category_ids=_int_list(self.category_ids),
        )


def _opt_int(raw: Any) -> int | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = int(float(raw))
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def _int_list(raw: Any) -> list[int]:
    if not isinstance(raw, list):
        return []
    out: list[int] = []
    for item in raw:
        if isinstance(item, bool):
            continue
        try:
            out.append(int(item))
        except (TypeError, ValueError):
            continue
    return out


def _parse_visualization(raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    out = {k: raw.get(k) for k in ("chart_type", "x_field", "y_field", "group_by") if isinstance(raw.get(k), str)}
    return out


def parse_aggregation(raw: Any) -> AggregationConfig | None:
    """`{group_by: str | [str], metrics: [{field, operation}]}`; None when no usable group-by field."""
    if not isinstance(raw, dict):
        return None
    group_by = raw.get("group_by")
    if isinstance(group_by, str):
        fields = [group_by.strip()] if group_by.strip() else []
    elif isinstance(group_by, list):
        fields = [str(g).strip() for g in group_by if isinstance(g, str) and g.strip()]
    else:
        fields = []
    if not fields:
        return None

    metrics: list[AggregationMetric] = []
    for m in raw.get("metrics") or []:
        if not isinstance(m, dict):
            continue
        field = str(m.get("field") or "").strip()
        operation = str(m.get("operation") or "").strip()
        if field and operation in AGGREGATION_OPERATIONS:
            metrics.append(AggregationMetric(field=field, operation=operation))  # type: ignore[arg-type]
    return AggregationConfig(group_by=fields[0] if isinstance(group_by, str) else fields, metrics=metrics)


def data_source_parameters_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "source_name": {
                "type": "string",
                "description": "Name of the data source to query. Must be available for the current category.",
            },
            "parameters": {
                "type": "object",
                "description": "Parameters for API sources, as documented by the source.",
                "additionalProperties": True,
            },
            "filters": {
                "type": "array",
                "description": "Filter conditions, all of which must match",
                "items": {
                    "type": "object",
                    "properties": {
                        "field": {"type": "string"},
                        "operator": {"type": "string", "enum": list(FILTER_OPERATORS)},
                        "value": {"description": "Value to compare against (array for `in`)"},
                    },
                    "required": ["field", "operator", "value"],
                },
            },
            "sort": {
                "type": "object",
                "properties": {
                    "field": {"type": "string"},
                    "direction": {"type": "string", "enum": ["asc", "desc"]},
                },
                "required": ["field"],
            },
            "limit": {"type": "number", "description": "Maximum number of raw records to return"},
            "offset": {"type": "number", "description": "Number of raw records to skip"},
            "visualization": {
                "type": "object",
                "description": "Explicit chart request; include it when the user asks for a specific chart",
                "properties": {
                    "chart_type": {"type": "string", "enum": list(CHART_TYPES)},
                    "x_field": {"type": "string"},
                    "y_field": {"type": "string"},
                    "group_by": {"type": "string"},
                },
            },
            "aggregation": {
                "type": "object",
                "description": "Server-side group-by; replaces raw records with per-group counts and metrics",
                "properties": {
                    "group_by": {
                        "oneOf": [{"type": "string"}, {"type": "array", "items": {"type": "string"}}],
                        "description": "Field or fields to group by",
                    },
                    "metrics": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "field": {"type": "string"},
                                "operation": {"type": "string", "enum": list(AGGREGATION_OPERATIONS)},
                            },
                            "required": ["field", "operation"],
                        },
                    },
                },
                "required": ["group_by"],
            },
            "category_ids": {
                "type": "array",
                "items": {"type": "number"},
                "description": "Category IDs for access checks (resolved from context when omitted)",
            },
        },
        "required": ["source_name"],
    }


def data_source_tool(service: DataSourceQueryService) -> ToolDefinition:
    async def handler(args: DataSourceToolArgs, ctx: ToolContext) -> dict:
        context = RequestContext(category_ids=tuple(ctx.category_ids), user=ctx.user)
        return await service.execute(args.to_query(), context)

    return ToolDefinition(
        name="data_source",
        description=_DESCRIPTION,
        risk="safe",
        input_model=DataSourceToolArgs,
        handler=handler,  # type: ignore[arg-type]
        parameters_schema=data_source_parameters_schema(),
    )
