from __future__ import annotations

import csv
import io
from pathlib import Path

from policybot_api.services.data_sources.csv_handler import (
    delete_csv_file,
    infer_type_from_values,
    parse_csv_buffer,
    parse_date,
    query_csv_data,
    query_csv_data_with_aggregation,
    store_csv_file,
)
from policybot_api.services.data_sources.types import AggregationConfig, AggregationMetric, DataFilter, DataSort


def _types(result) -> dict[str, str]:  # noqa: ANN001
    return {c.name: c.type for c in result.columns}


def test_infers_column_types_and_converts_values() -> None:
    buffer = (
        "name,amount,active,joined\n"
        "Alice,1200,true,2024-01-15\n"
        "Bob,35.5,no,2024-02-01\n"
    ).encode("utf-8")
    result = parse_csv_buffer(buffer)

    assert _types(result) == {"name": "string", "amount": "number", "active": "boolean", "joined": "date"}
    assert result.row_count == 2
    assert result.data[0] == {"name": "Alice", "amount": 1200, "active": True, "joined": "2024-01-15T00:00:00.000Z"}
    assert result.data[1]["amount"] == 35.5
    assert result.data[1]["active"] is False


def test_zero_one_column_is_boolean_not_number() -> None:
    assert infer_type_from_values(["1", "0", "1"]) == "boolean"
    assert infer_type_from_values(["1", "0", "2"]) == "number"


def test_bare_numbers_are_not_dates() -> None:
    assert parse_date("2024") is None
    assert parse_date("20240115") is None
    assert parse_date("03/15/2024") is not None
    assert infer_type_from_values(["2021", "2022", "2023"]) == "number"


def test_currency_and_percentage_formats() -> None:
    buffer = 'price,share\n"$1,200.50",12%\n$99,7.5%\n'.encode("utf-8")
    result = parse_csv_buffer(buffer)

    by_name = {c.name: c for c in result.columns}
    assert by_name["price"].type == "number"
    assert by_name["price"].format == "currency"
    assert by_name["share"].format == "percentage"
    assert [r["price"] for r in result.data] == [1200.5, 99]
    assert [r["share"] for r in result.data] == [12, 7.5]


def test_type_threshold_tolerates_a_few_outliers() -> None:
    values = ["1", "2", "3", "4", "5", "6", "7", "8", "n/a", "9"]
    assert infer_type_from_values(values) == "number"
    assert infer_type_from_values(["a", "b", "1"]) == "string"


def test_unparseable_number_cell_keeps_original_text() -> None:
    rows = "\n".join(["score"] + [str(i) for i in range(9)] + ["n/a"]) + "\n"
    result = parse_csv_buffer(rows.encode("utf-8"))
    assert result.columns[0].type == "number"
    assert result.data[-1]["score"] == "n/a"


def test_ragged_rows_and_blank_lines_are_tolerated() -> None:
    buffer = "a,b,c\n1,2\n\n4,5,6,7\n".encode("utf-8")
    result = parse_csv_buffer(buffer)

    assert [c.name for c in result.columns] == ["a", "b", "c"]
    assert result.row_count == 2
    assert result.data[0]["c"] is None
    assert result.data[1] == {"a": 4, "b": 5, "c": 6}


def test_duplicate_and_blank_headers_get_unique_names() -> None:
    result = parse_csv_buffer("x,x,\n1,2,3\n".encode("utf-8"))
    assert [c.name for c in result.columns] == ["x", "x_2", "column_3"]


def test_options_delimiter_skip_rows_and_no_header() -> None:
    buffer = "generated by export\nfoo;bar\nbaz;qux\n".encode("utf-8")
    result = parse_csv_buffer(buffer, delimiter=";", has_header=False, skip_rows=1)

    assert [c.name for c in result.columns] == ["column_1", "column_2"]
    assert result.data == [{"column_1": "foo", "column_2": "bar"}, {"column_1": "baz", "column_2": "qux"}]


def test_malformed_input_yields_empty_result() -> None:
    assert parse_csv_buffer(b"").row_count == 0
    assert parse_csv_buffer(b"\n\n").columns == []
    unknown = parse_csv_buffer(b"a,b\n1,2\n", encoding="no-such-encoding")
    assert unknown.columns == []
    assert unknown.data == []


def test_sample_data_is_capped() -> None:
    rows = "n\n" + "\n".join(str(i) for i in range(20)) + "\n"
    result = parse_csv_buffer(rows.encode("utf-8"))
    assert result.row_count == 20
    assert len(result.sample_data) == 5
    assert result.preview()["rowCount"] == 20


def test_reparsing_typed_rows_is_stable() -> None:
    first = parse_csv_buffer(
        "name,amount,active,joined\nAlice,1200,true,2024-01-15\nBob,35.5,false,2024-02-01\n".encode("utf-8")
    )

    out = io.StringIO()
    writer = csv.writer(out)
    writer.writerow([c.name for c in first.columns])
    for row in first.data:
        writer.writerow(["true" if v is True else "false" if v is False else v for v in row.values()])
    second = parse_csv_buffer(out.getvalue().encode("utf-8"))

    assert _types(second) == _types(first)
    assert second.data == first.data


def test_query_filters_sorts_and_paginates(sales_csv: Path) -> None:
    res = query_csv_data(
        sales_csv,
        filters=[DataFilter(field="product", operator="eq", value="Widget")],
        sort=DataSort(field="units", direction="desc"),
        limit=2,
        offset=1,
    )

    assert res.success is True
    assert [r["units"] for r in res.data] == [7, 3]
    assert res.metadata.total_records == 3
    assert res.metadata.record_count == 2
    assert res.metadata.source_type == "csv"
    assert res.metadata.fields == ["region", "product", "units", "revenue"]


def test_query_missing_file(tmp_path: Path) -> None:
    res = query_csv_data(tmp_path / "missing.csv")
    assert res.success is False
    assert res.error.code == "FILE_NOT_FOUND"


def test_query_with_aggregation_is_not_paginated(sales_csv: Path) -> None:
    config = AggregationConfig(group_by="region", metrics=[AggregationMetric(field="revenue", operation="sum")])
    res = query_csv_data_with_aggregation(sales_csv, config)

    assert res.success is True
    assert res.metadata.fields == ["region", "count", "revenue_sum"]
    assert res.metadata.total_records == 5
    assert res.data[0] == {"count": 2, "region": "North", "revenue_sum": 150.5}
    east = next(r for r in res.data if r["region"] == "East")
    assert east["revenue_sum"] is None


def test_query_with_bad_aggregation_reports_error(sales_csv: Path) -> None:
    config = AggregationConfig(group_by="region", metrics=[AggregationMetric(field="revenue", operation="median")])  # type: ignore[arg-type]
    res = query_csv_data_with_aggregation(sales_csv, config)
    assert res.success is False
    assert res.error.code == "AGGREGATION_ERROR"


def test_store_and_delete_file(tmp_path: Path) -> None:
    path, size = store_csv_file(b"a,b\n1,2\n", "my report (final).csv", tmp_path / "store")

    stored = Path(path)
    assert stored.is_file()
    assert size == 8
    assert stored.name.endswith("_my_report__final_.csv")
    assert delete_csv_file(stored) is True
    assert delete_csv_file(stored) is False
