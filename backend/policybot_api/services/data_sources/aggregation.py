"""
Server-side group-by aggregation.

Large row sets are reduced to one row per group before they are handed to the
LLM, so results stay small regardless of source size.
"""

from __future__ import annotations

import math
import re
from typing import Any, Iterable

from .filters import field_value, is_number, to_text
from .types import AGGREGATION_OPERATIONS, AggregationConfig, AggregationMetric, Row


_LEADING_NUMBER_RE = re.compile(r"^\s*[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?")


def coerce_number(value: Any) -> float | int | None:
    if is_number(value):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            num = float(text)
        except ValueError:
            return None
        return num if math.isfinite(num) else None
    return None


def metric_number(value: Any) -> float | int | None:
    """
    Numeric reading of a cell for metrics.

    Strings count by their leading number, so "12%" is 12, "3 kg" is 3 and
    "1,200" is 1. Strings without a leading number are skipped.
    """
    if not isinstance(value, str):
        return coerce_number(value)
    match = _LEADING_NUMBER_RE.match(value)
    if match is None:
        return None
    num = float(match.group(0))
    return num if math.isfinite(num) else None


def _group_key(value: Any) -> str | None:
    return None if value is None else to_text(value)


def _round2(value: float) -> float:
    # Half-up, matching how the chat UI formats numbers.
    return math.floor(value * 100 + 0.5) / 100


def compute_metric(records: list[Row], metric: AggregationMetric) -> float | int | None:
    values = [v for v in (metric_number(field_value(r, metric.field)) for r in records) if v is not None]
    if not values:
        return None

    op = metric.operation
    if op == "count":
        return len(values)
    if op == "sum":
        return _round2(sum(values))
    if op == "avg":
        return _round2(sum(values) / len(values))
    if op == "min":
        return min(values)
    if op == "max":
        return max(values)
    raise ValueError(f"unsupported aggregation operation: {op}")


def aggregate_data(rows: Iterable[Row], config: AggregationConfig) -> list[Row]:
    """
    Group `rows` by one or more fields and compute per-group metrics.

    Every output row carries `count`, one entry per group-by field (stringified,
    None for null) and one `<field>_<operation>` entry per metric. Rows are ordered
    by `count` descending; ties keep first-seen order.
    """
    group_fields = [f for f in config.group_by_fields if f]
    if not group_fields:
        raise ValueError("aggregation.group_by must name at least one field")
    for metric in config.metrics:
        if metric.operation not in AGGREGATION_OPERATIONS:
            raise ValueError(f"unsupported aggregation operation: {metric.operation}")

    groups: dict[tuple[str | None, ...], list[Row]] = {}
    for record in rows:
        key = tuple(_group_key(field_value(record, f)) for f in group_fields)
        groups.setdefault(key, []).append(record)

    results: list[Row] = []
    for key, records in groups.items():
        row: Row = {"count": len(records)}
        for field, value in zip(group_fields, key):
            row[field] = value
        for metric in config.metrics:
            row[metric.key] = compute_metric(records, metric)
        results.append(row)

    results.sort(key=lambda r: r["count"], reverse=True)
    return results


def pivot_series(rows: list[Row], x_field: str, series_field: str, value_field: str = "count") -> list[Row]:
    """
    Turn long aggregated rows into wide rows keyed by the series field.

    `[{region: A, kind: x, count: 2}, {region: A, kind: y, count: 1}]` becomes
    `[{region: A, x: 2, y: 1}]`. Missing combinations are filled with 0.
    """
    series: list[str] = []
    wide: dict[str, Row] = {}
    for r in rows:
        x = to_text(r.get(x_field))
        s = to_text(r.get(series_field))
        if s not in series:
            series.append(s)
        target = wide.setdefault(x, {x_field: r.get(x_field)})
        value = r.get(value_field)
        target[s] = (target.get(s) or 0) + (value if is_number(value) else 0)

    for target in wide.values():
        for s in series:
            target.setdefault(s, 0)
    return list(wide.values())


def series_values(rows: list[Row], series_field: str) -> list[str]:
    seen: list[str] = []
    for r in rows:
        s = to_text(r.get(series_field))
        if s not in seen:
            seen.append(s)
    return seen


def get_unique_values(rows: list[Row], field: str, limit: int = 100) -> list[Any]:
    unique: list[Any] = []
    marks: set[str] = set()
    for r in rows:
        if len(unique) >= limit:
            break
        value = field_value(r, field)
        mark = f"{type(value).__name__}:{to_text(value)}"
        if mark in marks:
            continue
        marks.add(mark)
        unique.append(value)
    return unique


def is_groupable_field(rows: list[Row], field: str, max_unique_ratio: float = 0.3) -> bool:
    """A field is groupable when it has relatively few distinct values (and more than one)."""
    if not rows:
        return False
    unique = get_unique_values(rows, field, limit=math.ceil(len(rows) * max_unique_ratio) + 1)
    ratio = len(unique) / len(rows)
    return ratio <= max_unique_ratio and len(unique) > 1


def suggest_group_by_field(rows: list[Row]) -> str | None:
    if not rows or not isinstance(rows[0], dict):
        return None
    for field in rows[0].keys():
        if is_groupable_field(rows, field):
            return field
    return None
