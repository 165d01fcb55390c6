from __future__ import annotations

import pytest

from policybot_api.services.data_sources.aggregation import (
    aggregate_data,
    compute_metric,
    is_groupable_field,
    pivot_series,
    series_values,
    suggest_group_by_field,
)
from policybot_api.services.data_sources.types import AggregationConfig, AggregationMetric


def _config(group_by, *metrics: tuple[str, str]) -> AggregationConfig:  # noqa: ANN001
    return AggregationConfig(group_by=group_by, metrics=[AggregationMetric(field=f, operation=op) for f, op in metrics])


def test_sum_grouped_by_single_field() -> None:
    rows = [{"a": "x", "v": 1}, {"a": "x", "v": 3}, {"a": "y", "v": 5}]
    out = aggregate_data(rows, _config("a", ("v", "sum")))
    assert out == [{"count": 2, "a": "x", "v_sum": 4}, {"count": 1, "a": "y", "v_sum": 5}]


def test_output_is_ordered_by_count_descending() -> None:
    rows = [{"k": "rare"}, {"k": "common"}, {"k": "common"}, {"k": "common"}, {"k": "mid"}, {"k": "mid"}]
    out = aggregate_data(rows, _config("k"))
    assert [r["k"] for r in out] == ["common", "mid", "rare"]


def test_multi_field_grouping() -> None:
    rows = [
        {"region": "N", "kind": "a"},
        {"region": "N", "kind": "b"},
        {"region": "N", "kind": "a"},
        {"region": "S", "kind": "a"},
    ]
    out = aggregate_data(rows, _config(["region", "kind"]))
    assert out[0] == {"count": 2, "region": "N", "kind": "a"}
    assert len(out) == 3


def test_group_values_are_stringified_and_null_is_kept() -> None:
    rows = [{"y": 2024}, {"y": 2024.0}, {"y": None}, {"other": 1}]
    out = aggregate_data(rows, _config("y"))
    assert out == [{"count": 2, "y": "2024"}, {"count": 2, "y": None}]


def test_metrics_skip_non_numeric_values() -> None:
    rows = [{"g": 1, "v": "10"}, {"g": 1, "v": "n/a"}, {"g": 1, "v": 2.5}, {"g": 1, "v": True}]
    out = aggregate_data(rows, _config("g", ("v", "count"), ("v", "sum"), ("v", "avg"), ("v", "min"), ("v", "max")))
    row = out[0]
    assert row["count"] == 4
    assert row["v_count"] == 2
    assert row["v_sum"] == 12.5
    assert row["v_avg"] == 6.25
    assert row["v_min"] == 2.5
    assert row["v_max"] == 10.0


def test_metric_without_numeric_values_is_none() -> None:
    assert compute_metric([{"v": "x"}, {"v": None}], AggregationMetric(field="v", operation="sum")) is None


def test_avg_rounds_to_two_places() -> None:
    rows = [{"v": 1}, {"v": 2}, {"v": 2}]
    assert compute_metric(rows, AggregationMetric(field="v", operation="avg")) == 1.67


def test_invalid_config_raises() -> None:
    with pytest.raises(ValueError):
        aggregate_data([{"a": 1}], _config([]))
    with pytest.raises(ValueError):
        aggregate_data([{"a": 1}], _config("a", ("a", "median")))


def test_pivot_series_fills_missing_combinations() -> None:
    rows = [
        {"region": "N", "kind": "a", "count": 2},
        {"region": "N", "kind": "b", "count": 1},
        {"region": "S", "kind": "a", "count": 4},
    ]
    assert series_values(rows, "kind") == ["a", "b"]
    assert pivot_series(rows, "region", "kind") == [
        {"region": "N", "a": 2, "b": 1},
        {"region": "S", "a": 4, "b": 0},
    ]


def test_groupable_field_helpers() -> None:
    rows = [{"id": i, "team": "red" if i % 2 else "blue"} for i in range(20)]
    assert is_groupable_field(rows, "team") is True
    assert is_groupable_field(rows, "id") is False
    assert suggest_group_by_field(rows) == "team"
    assert suggest_group_by_field([]) is None


def test_metrics_read_leading_numbers_from_text() -> None:
    rows = [{"v": "12%"}, {"v": " 3 kg"}, {"v": "1,200"}, {"v": "kg 5"}]
    assert compute_metric(rows, AggregationMetric(field="v", operation="sum")) == 16
    assert compute_metric(rows, AggregationMetric(field="v", operation="count")) == 3


def test_scalar_rows_group_under_null() -> None:
    out = aggregate_data([1, 2, 3], _config("v", ("v", "sum")))
    assert out == [{"count": 3, "v": None, "v_sum": None}]
