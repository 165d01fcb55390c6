from __future__ import annotations

import time
from datetime import datetime, timezone

try:  # Python 3.11+
    from datetime import UTC  # type: ignore
except ImportError:  # Python 3.10 fallback
    UTC = timezone.utc


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def utc_now_iso() -> str:
    return utc_now().replace(microsecond=0).isoformat()


def to_iso_millis(value: datetime) -> str:
    """`2024-01-15T00:00:00.000Z`; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
