from __future__ import annotations

import re
from typing import Any

from .aggregation import coerce_number, series_values
from .csv_handler import parse_date
from .filters import field_value, is_number, to_text
from .tool_config import DataSourceToolConfig
from .types import AggregationConfig, Row, VisualizationHint


_DATE_NAME_RE = re.compile(r"date|time|year|month|day", re.IGNORECASE)
_PIE_MAX_ROWS = 20
_PIE_MIN_SLICES = 2
_PIE_MAX_SLICES = 8
_SCATTER_MIN_ROWS = 30
_RADAR_MAX_ROWS = 10


def _is_numeric_value(value: Any) -> bool:
    if isinstance(value, bool) or value is None:
        return False
    if is_number(value):
        return True
    return isinstance(value, str) and coerce_number(value) is not None


def _is_categorical_value(value: Any) -> bool:
    return isinstance(value, str) and coerce_number(value) is None


def _is_date_field(name: str, value: Any) -> bool:
    if _DATE_NAME_RE.search(name):
        return True
    return isinstance(value, str) and coerce_number(value) is None and parse_date(value) is not None


def _distinct_count(rows: list[Row], field: str) -> int:
    return len({to_text(field_value(r, field)) for r in rows})


def recommend_visualization(
    rows: list[Row],
    fields: list[str],
    aggregation: AggregationConfig | None = None,
    default_chart_type: str = "bar",
) -> VisualizationHint:
    """
    Suggest a chart kind and axis mapping from the shape of a result set.

    Rules, first match wins:
    small aggregate -> table; multi-field grouping -> grouped bar; date + number -> line;
    few categories -> pie; many points over two numbers -> scatter;
    several numbers over few rows -> radar; otherwise the default chart kind.
    """
    # Scalar extractions have no fields to chart.
    if not rows or not isinstance(rows[0], dict):
        return VisualizationHint(chart_type="table")

    fields = list(fields) or list(rows[0].keys())
    first = rows[0]

    categorical = [f for f in fields if f != "count" and _is_categorical_value(first.get(f))]
    if len(rows) <= 2:
        if not categorical:
            return VisualizationHint(chart_type="table")
        if len(rows) == 1 and len(categorical) < 2:
            return VisualizationHint(chart_type="table")

    string_fields = [f for f in fields if _is_categorical_value(first.get(f))]
    numeric_fields = [f for f in fields if _is_numeric_value(first.get(f))]
    value_field = numeric_fields[0] if numeric_fields else "count"

    group_fields = aggregation.group_by_fields if aggregation is not None else []
    if len(group_fields) >= 2:
        return VisualizationHint(
            chart_type="bar",
            x_field=group_fields[0],
            y_field=value_field,
            group_by=group_fields[1],
            series=series_values(rows, group_fields[1]),
        )

    date_fields = [f for f in fields if _is_date_field(f, first.get(f))]
    if date_fields:
        measures = [f for f in numeric_fields if f != date_fields[0]]
        if measures:
            return VisualizationHint(chart_type="line", x_field=date_fields[0], y_field=measures[0])

    if numeric_fields and len(rows) <= _PIE_MAX_ROWS:
        for f in string_fields:
            if _PIE_MIN_SLICES <= _distinct_count(rows, f) <= _PIE_MAX_SLICES:
                return VisualizationHint(chart_type="pie", x_field=f, y_field=numeric_fields[0])

    if len(numeric_fields) >= 2 and len(rows) > _SCATTER_MIN_ROWS:
        return VisualizationHint(
            chart_type="scatter",
            x_field=numeric_fields[0],
            y_field=numeric_fields[1],
            group_by=string_fields[0] if string_fields else None,
        )

    if len(numeric_fields) >= 3 and len(rows) <= _RADAR_MAX_ROWS:
        return VisualizationHint(
            chart_type="radar",
            x_field=string_fields[0] if string_fields else fields[0],
            y_field=numeric_fields[0],
        )

    return VisualizationHint(
        chart_type=default_chart_type,  # type: ignore[arg-type]
        x_field=string_fields[0] if string_fields else fields[0],
        y_field=value_field,
    )


def resolve_visualization(explicit: dict[str, Any], tool_config: DataSourceToolConfig) -> VisualizationHint:
    """Caller-supplied hint; a disabled or missing chart kind falls back to the configured default."""
    return VisualizationHint(
        chart_type=tool_config.resolve_chart_type(explicit.get("chart_type")),  # type: ignore[arg-type]
        x_field=explicit.get("x_field"),
        y_field=explicit.get("y_field"),
        group_by=explicit.get("group_by"),
    )
