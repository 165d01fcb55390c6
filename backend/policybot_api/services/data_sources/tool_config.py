from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .types import CHART_TYPES


_RANGES: dict[str, tuple[str, int, int]] = {
    # mapping key: (attribute, min, max)
    "cacheTTLSeconds": ("cache_ttl_seconds", 60, 86400),
    "timeout": ("timeout_seconds", 5, 120),
    "defaultLimit": ("default_limit", 1, 200),
    "maxLimit": ("max_limit", 1, 500),
}


@dataclass(frozen=True)
class DataSourceToolConfig:
    cache_ttl_seconds: int = 3600
    timeout_seconds: int = 30
    default_limit: int = 30
    max_limit: int = 200
    default_chart_type: str = "bar"
    enabled_chart_types: tuple[str, ...] = field(default=CHART_TYPES)

    def resolve_limit(self, requested: int | None) -> int:
        return min(requested or self.default_limit, self.max_limit)

    def resolve_chart_type(self, requested: str | None) -> str:
        chart_type = requested or self.default_chart_type
        return chart_type if chart_type in self.enabled_chart_types else self.default_chart_type

    def to_dict(self) -> dict[str, Any]:
        return {
            "cacheTTLSeconds": self.cache_ttl_seconds,
            "timeout": self.timeout_seconds,
            "defaultLimit": self.default_limit,
            "maxLimit": self.max_limit,
            "defaultChartType": self.default_chart_type,
            "enabledChartTypes": list(self.enabled_chart_types),
        }



def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_tool_config(config: dict[str, Any]) -> tuple[bool, list[str]]:
    errors: list[str] = []

    for key, (_attr, lo, hi) in _RANGES.items():
        if key not in config:
            continue
        value = config[key]
        if not _is_number(value) or value < lo or value > hi:
            errors.append(f"{key} must be a number between {lo} and {hi}")

    default_chart = config.get("defaultChartType")
    if default_chart and default_chart not in CHART_TYPES:
        errors.append(f"defaultChartType must be one of: {', '.join(CHART_TYPES)}")

    enabled = config.get("enabledChartTypes")
    if enabled:
        if not isinstance(enabled, list):
            errors.append("enabledChartTypes must be an array")
        else:
            for chart_type in enabled:
                if chart_type not in CHART_TYPES:
                    errors.append(f"Invalid chart type in enabledChartTypes: {chart_type}")

    return (not errors, errors)


def tool_config_schema() -> dict[str, Any]:
    """JSON schema describing the tool configuration, for admin forms."""
    return {
        "type": "object",
        "properties": {
            "cacheTTLSeconds": {"type": "number", "title": "Cache Duration (seconds)", "minimum": 60, "maximum": 86400, "default": 3600},
            "timeout": {"type": "number", "title": "Request Timeout (seconds)", "minimum": 5, "maximum": 120, "default": 30},
            "defaultLimit": {"type": "number", "title": "Default Record Limit", "minimum": 1, "maximum": 200, "default": 30},
            "maxLimit": {"type": "number", "title": "Maximum Record Limit", "minimum": 1, "maximum": 500, "default": 200},
            "defaultChartType": {"type": "string", "title": "Default Chart Type", "enum": list(CHART_TYPES), "default": "bar"},
            "enabledChartTypes": {
                "type": "array",
                "title": "Enabled Chart Types",
                "items": {"type": "string", "enum": list(CHART_TYPES)},
                "default": list(CHART_TYPES),
            },
        },
        "required": ["cacheTTLSeconds", "timeout", "defaultLimit", "maxLimit"],
    }
