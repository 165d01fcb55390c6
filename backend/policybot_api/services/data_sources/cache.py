from __future__ import annotations

import asyncio
import hashlib
import json
import time
from dataclasses import dataclass
from typing import Any, Protocol


class QueryCache(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...


def hash_query(params: Any) -> str:
    """Deterministic digest of a parameter bag; key order does not matter."""
    canonical = json.dumps(params, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def api_cache_key(source_id: str, params: Any) -> str:
    return f"data_api:{source_id}:{hash_query(params)}"


@dataclass
class _Entry:
    value: str
    expires_at: float


class InMemoryQueryCache:
    def __init__(self, *, max_entries: int = 1000) -> None:
        self._entries: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()
        self._max_entries = max_entries

    def _prune_locked(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for k in expired:
            self._entries.pop(k, None)

        if self._max_entries > 0 and len(self._entries) > self._max_entries:
            # Evict entries closest to expiry first
            by_expiry = sorted(self._entries.items(), key=lambda kv: kv[1].expires_at)
            for k, _e in by_expiry[: len(self._entries) - self._max_entries]:
                self._entries.pop(k, None)

    async def get(self, key: str) -> str | None:
        now = time.time()
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= now:
                self._entries.pop(key, None)
                return None
            return entry.value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        now = time.time()
        async with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=now + ttl_seconds)
            self._prune_locked(now)

    def __len__(self) -> int:
        return len(self._entries)
