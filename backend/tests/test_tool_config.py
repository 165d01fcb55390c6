from __future__ import annotations

from policybot_api.services.data_sources.tool_config import DataSourceToolConfig, tool_config_schema, validate_tool_config


def test_limit_resolution() -> None:
    config = DataSourceToolConfig(default_limit=30, max_limit=200)
    assert config.resolve_limit(None) == 30
    assert config.resolve_limit(50) == 50
    assert config.resolve_limit(1000) == 200


def test_to_dict() -> None:
    config = DataSourceToolConfig(timeout_seconds=10, default_chart_type="line", enabled_chart_types=("line", "bar"))
    assert config.to_dict() == {
        "cacheTTLSeconds": 3600,
        "timeout": 10,
        "defaultLimit": 30,
        "maxLimit": 200,
        "defaultChartType": "line",
        "enabledChartTypes": ["line", "bar"],
    }
    assert config.resolve_chart_type("pie") == "line"


def test_validate_tool_config() -> None:
    assert validate_tool_config({"timeout": 30, "defaultChartType": "pie"}) == (True, [])

    ok, errors = validate_tool_config(
        {"timeout": 1, "maxLimit": "many", "defaultChartType": "donut", "enabledChartTypes": ["bar", "heatmap"]}
    )
    assert ok is False
    assert errors == [
        "timeout must be a number between 5 and 120",
        "maxLimit must be a number between 1 and 500",
        "defaultChartType must be one of: bar, line, pie, area, scatter, radar, table",
        "Invalid chart type in enabledChartTypes: heatmap",
    ]


def test_schema_lists_required_fields() -> None:
    assert tool_config_schema()["required"] == ["cacheTTLSeconds", "timeout", "defaultLimit", "maxLimit"]
