"""
Tabular (CSV) source handling: parsing with type inference, storage, and querying.
"""

from __future__ import annotations

import csv
import io
import logging
import os
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from ...time_utils import elapsed_ms, to_iso_millis, utc_now_iso
from .aggregation import aggregate_data
from .filters import apply_filters, apply_sort
from .types import AggregationConfig, ColumnType, CsvColumn, DataFilter, DataSort, QueryError, QueryMetadata, QueryResponse, Row


logger = logging.getLogger(__name__)

_INFER_SAMPLE_ROWS = 100
_SAMPLE_DATA_ROWS = 5
_TYPE_THRESHOLD = 0.8

_BOOLEAN_RE = re.compile(r"^(true|false|yes|no|1|0)$", re.IGNORECASE)
_TRUTHY = {"true", "yes", "1"}
_DATE_PATTERNS = [
    re.compile(r"^\d{4}-\d{2}-\d{2}$"),
    re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}"),
    re.compile(r"^\d{2}/\d{2}/\d{4}$"),
    re.compile(r"^\d{2}-\d{2}-\d{4}$"),
]
_DATE_FORMATS = [
    "%m/%d/%Y",
    "%d-%m-%Y",
    "%Y/%m/%d",
    "%Y-%m-%d %H:%M",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%b %d %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%d %B %Y",
    "%a, %d %b %Y %H:%M:%S %Z",
]
_SYMBOLS_RE = re.compile(r"[$€£¥,\s%]")
_NUMBER_RE = re.compile(r"^-?\d*\.?\d+$")
_INT_RE = re.compile(r"^-?\d+$")
_CURRENCY_RE = re.compile(r"^[$€£¥]?\s*-?\d{1,3}(,\d{3})*(\.\d+)?$")
_PERCENT_RE = re.compile(r"^-?\d*\.?\d+%$")
_CURRENCY_PREFIX_RE = re.compile(r"^[$€£¥]")
_SAFE_FILENAME_RE = re.compile(r"[^a-zA-Z0-9._-]")


@dataclass
class CsvParseResult:
    columns: list[CsvColumn] = field(default_factory=list)
    sample_data: list[Row] = field(default_factory=list)
    row_count: int = 0
    data: list[Row] = field(default_factory=list)

    def preview(self) -> dict:
        return {
            "columns": [c.to_dict() for c in self.columns],
            "sampleData": self.sample_data,
            "rowCount": self.row_count,
        }


# ===== Parsing =====


def _unique_headers(raw: list[str]) -> list[str]:
    names: list[str] = []
    seen: dict[str, int] = {}
    for i, h in enumerate(raw):
        name = h.strip() or f"column_{i + 1}"
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 1
        names.append(name)
    return names


def read_records(text: str, *, delimiter: str, has_header: bool, skip_rows: int) -> list[dict[str, str]]:
    reader = csv.reader(io.StringIO(text), delimiter=delimiter)
    rows: list[list[str]] = []
    for index, raw in enumerate(reader):
        if index < skip_rows:
            continue
        cells = [c.strip() for c in raw]
        if not any(cells):
            continue
        rows.append(cells)

    if not rows:
        return []

    if has_header:
        headers = _unique_headers(rows[0])
        body = rows[1:]
    else:
        width = max(len(r) for r in rows)
        headers = [f"column_{i + 1}" for i in range(width)]
        body = rows

    records: list[dict[str, str]] = []
    width = len(headers)
    for cells in body:
        # Relaxed column count: pad short rows, truncate long ones.
        padded = (cells + [""] * width)[:width]
        records.append(dict(zip(headers, padded)))
    return records


def parse_csv_buffer(
    buffer: bytes,
    *,
    delimiter: str = ",",
    has_header: bool = True,
    skip_rows: int = 0,
    encoding: str = "utf-8",
) -> CsvParseResult:
    """
    Parse a delimited-text buffer into typed rows plus an inferred column schema.

    Malformed input yields an empty result (no columns, no rows) rather than raising.
    """
    try:
        text = buffer.decode(encoding or "utf-8", errors="replace")
    except LookupError:
        logger.warning("unknown CSV encoding %r", encoding)
        return CsvParseResult()
    text = text.lstrip("﻿")

    try:
        records = read_records(
            text,
            delimiter=(delimiter or ",")[:1],
            has_header=has_header,
            skip_rows=max(0, int(skip_rows or 0)),
        )
    except csv.Error as e:
        logger.warning("CSV parse failed: %s", e)
        return CsvParseResult()

    if not records:
        return CsvParseResult()

    column_names = list(records[0].keys())
    columns = infer_column_types(column_names, records[:_INFER_SAMPLE_ROWS])
    data = [convert_record_types(r, columns) for r in records]
    return CsvParseResult(columns=columns, sample_data=data[:_SAMPLE_DATA_ROWS], row_count=len(data), data=data)


def parse_csv_file(file_path: str | Path, **options) -> CsvParseResult:  # noqa: ANN003
    return parse_csv_buffer(Path(file_path).read_bytes(), **options)


# ===== Type inference =====


def parse_date(value: str) -> datetime | None:
    text = (value or "").strip()
    if not text or _NUMBER_RE.match(text):
        return None
    iso = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        return datetime.fromisoformat(iso)
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def _is_date(value: str) -> bool:
    if any(p.match(value) for p in _DATE_PATTERNS):
        return True
    return parse_date(value) is not None


def _is_numeric(value: str) -> bool:
    cleaned = _SYMBOLS_RE.sub("", value)
    return bool(_NUMBER_RE.match(cleaned) or _CURRENCY_RE.match(value) or _PERCENT_RE.match(value))


def infer_type_from_values(values: list[str]) -> ColumnType:
    if not values:
        return "string"
    if all(_BOOLEAN_RE.match(v) for v in values):
        return "boolean"
    threshold = len(values) * _TYPE_THRESHOLD
    if sum(1 for v in values if _is_date(v)) >= threshold:
        return "date"
    if sum(1 for v in values if _is_numeric(v)) >= threshold:
        return "number"
    return "string"


def infer_format(values: list[str], column_type: ColumnType) -> str | None:
    if column_type != "number" or not values:
        return None
    if any(_CURRENCY_PREFIX_RE.match(v) for v in values):
        return "currency"
    if any(v.endswith("%") for v in values):
        return "percentage"
    return None


def infer_column_types(column_names: list[str], samples: list[dict[str, str]]) -> list[CsvColumn]:
    columns: list[CsvColumn] = []
    for name in column_names:
        values = [v for v in (row.get(name) for row in samples) if v not in (None, "")]
        column_type = infer_type_from_values(values)
        columns.append(CsvColumn(name=name, type=column_type, format=infer_format(values, column_type)))
    return columns


def _to_number(value: str) -> int | float | str:
    cleaned = _SYMBOLS_RE.sub("", value)
    if _INT_RE.match(cleaned):
        return int(cleaned)
    try:
        return float(cleaned)
    except ValueError:
        return value


def convert_value(value: str | None, column_type: ColumnType):  # noqa: ANN201
    if value is None or value == "":
        return None
    if column_type == "number":
        return _to_number(value)
    if column_type == "boolean":
        return value.lower() in _TRUTHY
    if column_type == "date":
        parsed = parse_date(value)
        return to_iso_millis(parsed) if parsed is not None else value
    return value


def convert_record_types(record: dict[str, str], columns: list[CsvColumn]) -> Row:
    return {c.name: convert_value(record.get(c.name), c.type) for c in columns}


# ===== Querying =====


def _metadata(file_path: str | Path, started: float, **kwargs) -> QueryMetadata:  # noqa: ANN003
    return QueryMetadata(
        source=os.path.basename(str(file_path)),
        source_type="csv",
        fetched_at=utc_now_iso(),
        execution_time_ms=elapsed_ms(started),
        **kwargs,
    )


def _failure(file_path: str | Path, started: float, code: str, message: str) -> QueryResponse:
    return QueryResponse(
        success=False,
        data=None,
        metadata=_metadata(file_path, started),
        error=QueryError(code=code, message=message),
    )


def query_csv_data(
    file_path: str | Path,
    filters: list[DataFilter] | None = None,
    sort: DataSort | None = None,
    limit: int | None = None,
    offset: int | None = None,
    parse_options: dict[str, Any] | None = None,
) -> QueryResponse:
    """Filter, sort and paginate the rows of a stored CSV file."""
    started = time.perf_counter()
    if not Path(file_path).is_file():
        return _failure(file_path, started, "FILE_NOT_FOUND", f"CSV file not found: {file_path}")

    try:
        parsed = parse_csv_file(file_path, **(parse_options or {}))
        data = apply_filters(parsed.data, filters)
        data = apply_sort(data, sort)
        total = len(data)
        if offset:
            data = data[max(0, int(offset)) :]
        if limit is not None and limit > 0:
            data = data[: int(limit)]
        return QueryResponse(
            success=True,
            data=data,
            metadata=_metadata(
                file_path,
                started,
                record_count=len(data),
                total_records=total,
                fields=[c.name for c in parsed.columns],
            ),
        )
    except Exception as e:
        logger.exception("CSV query failed for %s", file_path)
        return _failure(file_path, started, "QUERY_ERROR", str(e) or "Unknown error querying CSV")


def query_csv_data_with_aggregation(
    file_path: str | Path,
    aggregation: AggregationConfig,
    filters: list[DataFilter] | None = None,
    parse_options: dict[str, Any] | None = None,
) -> QueryResponse:
    """Filter then aggregate a stored CSV file; pagination is never applied on top."""
    started = time.perf_counter()
    if not Path(file_path).is_file():
        return _failure(file_path, started, "FILE_NOT_FOUND", f"CSV file not found: {file_path}")

    try:
        parsed = parse_csv_file(file_path, **(parse_options or {}))
        data = apply_filters(parsed.data, filters)
        total = len(data)
        aggregated = aggregate_data(data, aggregation)
        return QueryResponse(
            success=True,
            data=aggregated,
            metadata=_metadata(
                file_path,
                started,
                record_count=len(aggregated),
                total_records=total,
                fields=aggregation.result_fields,
            ),
        )
    except Exception as e:
        logger.exception("CSV aggregation failed for %s", file_path)
        return _failure(file_path, started, "AGGREGATION_ERROR", str(e) or "Unknown error aggregating CSV")


# ===== File storage =====


def store_csv_file(buffer: bytes, original_filename: str, storage_dir: str | Path) -> tuple[str, int]:
    """Write an uploaded file; returns (file_path, file_size)."""
    directory = Path(storage_dir)
    directory.mkdir(parents=True, exist_ok=True)
    safe_name = _SAFE_FILENAME_RE.sub("_", original_filename or "upload.csv")
    target = directory / f"{int(time.time() * 1000)}_{safe_name}"
    target.write_bytes(buffer)
    return str(target), len(buffer)


def delete_csv_file(file_path: str | Path) -> bool:
    try:
        path = Path(file_path)
        if path.exists():
            path.unlink()
            return True
        return False
    except OSError as e:
        logger.warning("failed to delete CSV file %s: %s", file_path, e)
        return False
