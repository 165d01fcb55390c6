from __future__ import annotations

import os


PRIMARY_PREFIX = "POLICYBOT_"
LEGACY_PREFIX = "POLICY_ASSISTANT_"


def _prefixed_names(suffix: str) -> tuple[str, str]:
    s = (suffix or "").strip().upper()
    if not s:
        raise ValueError("empty env suffix")
    return (f"{PRIMARY_PREFIX}{s}", f"{LEGACY_PREFIX}{s}")


def env_str(suffix: str, default: str | None = None) -> str | None:
    for name in _prefixed_names(suffix):
        value = os.getenv(name)
        if value is None:
            continue
        value = value.strip()
        return value if value else default
    return default


def env_int(suffix: str, default: int) -> int:
    raw = env_str(suffix, None)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_list(suffix: str, default: list[str]) -> list[str]:
    raw = env_str(suffix, None)
    if raw is None:
        return list(default)
    items = [p.strip() for p in raw.split(",") if p.strip()]
    return items or list(default)
