from __future__ import annotations

from functools import cmp_to_key
from typing import Any, Iterable

from .types import FILTER_OPERATORS, DataFilter, DataSort, Row


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def to_text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def field_value(row: Any, name: str) -> Any:
    """Field lookup that treats non-mapping rows (scalar extractions) as having no fields."""
    return row.get(name) if isinstance(row, dict) else None


def _same(a: Any, b: Any) -> bool:
    # bool is an int subclass; keep True distinct from 1.
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a is b
    return a == b


def _compare(a: Any, b: Any) -> int:
    if is_number(a) and is_number(b):
        return (a > b) - (a < b)
    sa, sb = to_text(a), to_text(b)
    return (sa > sb) - (sa < sb)


def matches(record: Row, flt: DataFilter) -> bool:
    value = field_value(record, flt.field)
    target = flt.value
    op = flt.operator

    if op == "eq":
        return _same(value, target)
    if op == "ne":
        return not _same(value, target)
    if op == "gt":
        return _compare(value, target) > 0
    if op == "lt":
        return _compare(value, target) < 0
    if op == "gte":
        return _compare(value, target) >= 0
    if op == "lte":
        return _compare(value, target) <= 0
    if op == "contains":
        if isinstance(value, str) and isinstance(target, str):
            return target.lower() in value.lower()
        return False
    if op == "in":
        if not isinstance(target, (list, tuple)):
            return False
        return any(_same(value, t) for t in target)
    return True


def apply_filters(rows: Iterable[Row], filters: list[DataFilter] | None) -> list[Row]:
    """Keep rows matching every filter (AND)."""
    data = list(rows)
    if not filters:
        return data
    return [r for r in data if all(matches(r, f) for f in filters)]


def apply_sort(rows: Iterable[Row], sort: DataSort | None) -> list[Row]:
    """
    Stable sort on one field.

    Nulls go last when ascending and first when descending.
    """
    data = list(rows)
    if sort is None or not sort.field:
        return data

    present = [r for r in data if field_value(r, sort.field) is not None]
    missing = [r for r in data if field_value(r, sort.field) is None]

    key = cmp_to_key(lambda a, b: _compare(field_value(a, sort.field), field_value(b, sort.field)))
    if sort.direction == "desc":
        ordered = sorted(present, key=key, reverse=True)
        return [*missing, *ordered]
    ordered = sorted(present, key=key)
    return [*ordered, *missing]


def parse_filters(raw: Any) -> list[DataFilter]:
    """Coerce tool-supplied filter dicts, dropping ones without a field or with an unknown operator."""
    if not isinstance(raw, list):
        return []
    out: list[DataFilter] = []
    for item in raw:
        if isinstance(item, DataFilter):
            out.append(item)
            continue
        if not isinstance(item, dict):
            continue
        field = str(item.get("field") or "").strip()
        operator = str(item.get("operator") or "").strip()
        if not field or operator not in FILTER_OPERATORS:
            continue
        out.append(DataFilter(field=field, operator=operator, value=item.get("value")))  # type: ignore[arg-type]
    return out


def parse_sort(raw: Any) -> DataSort | None:
    if isinstance(raw, DataSort):
        return raw
    if not isinstance(raw, dict):
        return None
    field = str(raw.get("field") or "").strip()
    if not field:
        return None
    return DataSort(field=field, direction="desc" if raw.get("direction") == "desc" else "asc")
