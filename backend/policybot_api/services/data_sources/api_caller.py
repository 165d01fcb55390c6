"""
Remote endpoint caller for API data sources.

One call = one HTTP request, bounded by a deadline and never retried. Results are
cached per (source, parameter bag); cache failures behave like misses.
"""

from __future__ import annotations

import asyncio
import base64
import csv
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx

from ...time_utils import elapsed_ms, utc_now_iso
from .cache import QueryCache, api_cache_key
from .credentials import CredentialProvider, NoopCredentialProvider, reveal
from .csv_handler import read_records
from .filters import is_number, to_text
from .json_path import JsonPathError, extract_by_path
from .tool_config import DataSourceToolConfig
from .types import ApiParameter, ApiSourceConfig, QueryError, QueryMetadata, QueryResponse, Row


logger = logging.getLogger(__name__)

_ERROR_DETAIL_CHARS = 500
_NUMERIC_CELL_RE = re.compile(r"^-?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?$")


@dataclass(frozen=True)
class ConnectionTestResult:
    success: bool
    message: str
    sample_data: list[Row] | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.sample_data is not None:
            out["sampleData"] = self.sample_data
        return out


# ===== Request building =====


def _params_for(defs: list[ApiParameter], location: str, params: dict[str, Any], *, use_default: bool) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for d in defs:
        if d.location != location:
            continue
        if d.name in params:
            out[d.name] = params[d.name]
        elif use_default and d.default is not None:
            out[d.name] = d.default
    return out


def build_query_params(config: ApiSourceConfig, params: dict[str, Any], api_key: str | None = None) -> list[tuple[str, str]]:
    """Query pairs; list values repeat the key instead of being comma-joined."""
    pairs: list[tuple[str, str]] = []
    for name, value in _params_for(config.parameters, "query", params, use_default=True).items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            pairs.extend((name, to_text(item)) for item in value)
        else:
            pairs.append((name, to_text(value)))

    creds = config.authentication.credentials
    if api_key and config.authentication.type == "api_key" and creds and creds.api_key_location == "query":
        pairs.append((creds.api_key_header or "X-API-Key", api_key))
    return pairs


def build_request_url(config: ApiSourceConfig, params: dict[str, Any]) -> str:
    """Endpoint with `{name}` path tokens substituted (URL-encoded)."""
    url = config.endpoint
    for name, value in _params_for(config.parameters, "path", params, use_default=False).items():
        url = url.replace("{" + name + "}", quote(to_text(value), safe=""))
    return url


def build_body(config: ApiSourceConfig, params: dict[str, Any]) -> dict[str, Any] | None:
    if config.method != "POST":
        return None
    body = _params_for(config.parameters, "body", params, use_default=True)
    return body or None


def build_headers(
    config: ApiSourceConfig,
    params: dict[str, Any],
    credentials: CredentialProvider,
) -> tuple[dict[str, str], str | None]:
    """
    Request headers with authentication attached.

    Returns (headers, query_api_key); the second item is set only when the API key
    travels in the query string.
    """
    headers: dict[str, str] = {"Accept": "application/json"}
    if config.method == "POST":
        headers["Content-Type"] = "application/json"

    query_api_key: str | None = None
    auth = config.authentication
    creds = auth.credentials
    if auth.type != "none" and creds is not None:
        if auth.type == "bearer" and creds.token:
            headers["Authorization"] = f"Bearer {reveal(credentials, creds.token)}"
        elif auth.type == "api_key" and creds.api_key:
            key = reveal(credentials, creds.api_key) or ""
            if creds.api_key_location == "query":
                query_api_key = key
            else:
                headers[creds.api_key_header or "X-API-Key"] = key
        elif auth.type == "basic" and creds.username:
            password = reveal(credentials, creds.password) or ""
            encoded = base64.b64encode(f"{creds.username}:{password}".encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {encoded}"

    headers.update(config.headers)

    for name, value in _params_for(config.parameters, "header", params, use_default=True).items():
        if value is not None:
            headers[name] = to_text(value)
    return headers, query_api_key


# ===== Response parsing =====


def _csv_cell(value: str) -> Any:
    text = value.strip()
    if text and _NUMERIC_CELL_RE.match(text):
        num = float(text)
        return int(num) if num.is_integer() and "." not in text and "e" not in text.lower() else num
    return value


def parse_csv_response(text: str) -> list[Row]:
    """Parse a delimited-text response: first row is the header, numeric-looking cells become numbers."""
    records = read_records(text.lstrip("\ufeff"), delimiter=",", has_header=True, skip_rows=0)
    return [{name: _csv_cell(value) for name, value in record.items()} for record in records]


def _as_records(extracted: Any) -> list[Any]:
    if isinstance(extracted, list):
        return extracted
    if extracted is None:
        return []
    return [extracted]


# ===== Caller =====


class ApiCaller:
    def __init__(
        self,
        *,
        tool_config: DataSourceToolConfig | None = None,
        cache: QueryCache | None = None,
        credentials: CredentialProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._tool_config = tool_config or DataSourceToolConfig()
        self._cache = cache
        self._credentials = credentials or NoopCredentialProvider()
        self._transport = transport

    def _timeout_for(self, config: ApiSourceConfig) -> int:
        return int(config.timeout_seconds or self._tool_config.timeout_seconds)

    def _ttl_for(self, config: ApiSourceConfig) -> int:
        return int(config.cache_ttl_seconds or self._tool_config.cache_ttl_seconds)

    def _failure(self, config: ApiSourceConfig, started: float, code: str, message: str, details: str | None = None) -> QueryResponse:
        return QueryResponse(
            success=False,
            data=None,
            metadata=QueryMetadata(
                source=config.name,
                source_type="api",
                fetched_at=utc_now_iso(),
                execution_time_ms=elapsed_ms(started),
            ),
            error=QueryError(code=code, message=message, details=details),
        )

    async def _read_cache(self, key: str) -> QueryResponse | None:
        if self._cache is None:
            return None
        try:
            raw = await self._cache.get(key)
            if not raw:
                return None
            return QueryResponse.from_dict(json.loads(raw))
        except Exception as e:  # cache errors are misses
            logger.debug("data source cache read failed for %s: %s", key, e)
            return None

    async def _write_cache(self, key: str, response: QueryResponse, ttl_seconds: int) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.set(key, json.dumps(response.to_dict(), ensure_ascii=False, default=str), ttl_seconds)
        except Exception as e:
            logger.warning("data source cache write failed for %s: %s", key, e)

    async def call(self, config: ApiSourceConfig, params: dict[str, Any] | None = None) -> QueryResponse:
        params = dict(params or {})
        started = time.perf_counter()
        cache_key = api_cache_key(config.id, params)

        cached = await self._read_cache(cache_key)
        if cached is not None:
            logger.info("data source cache hit: %s", config.name)
            cached.metadata.cached = True
            cached.metadata.execution_time_ms = elapsed_ms(started)
            return cached

        timeout = self._timeout_for(config)
        try:
            url = build_request_url(config, params)
            headers, query_api_key = build_headers(config, params, self._credentials)
            query = build_query_params(config, params, api_key=query_api_key)
            body = build_body(config, params)

            logger.info("data source request: %s %s", config.method, url)
            async with httpx.AsyncClient(timeout=httpx.Timeout(float(timeout)), transport=self._transport) as client:
                res = await asyncio.wait_for(
                    client.request(config.method, url, params=query or None, headers=headers, json=body),
                    timeout=timeout,
                )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning("data source request timed out after %ss: %s", timeout, config.name)
            return self._failure(config, started, "TIMEOUT", f"Request timed out after {timeout} seconds")
        except Exception as e:
            logger.warning("data source request failed: %s: %s", config.name, e)
            return self._failure(config, started, "REQUEST_ERROR", str(e) or "Unknown error calling API")

        if not res.is_success:
            logger.warning("data source upstream returned HTTP %s: %s", res.status_code, config.name)
            return self._failure(
                config,
                started,
                f"HTTP_{res.status_code}",
                f"API returned {res.status_code}: {res.reason_phrase}",
                details=res.text[:_ERROR_DETAIL_CHARS],
            )

        try:
            content_type = res.headers.get("content-type", "")
            if config.response_format == "csv" or "text/csv" in content_type:
                raw: Any = parse_csv_response(res.text)
            else:
                raw = res.json()

            structure = config.response_structure
            data = _as_records(extract_by_path(raw, structure.json_path))

            total: int | None = None
            if structure.total_count_path:
                candidate = extract_by_path(raw, structure.total_count_path)
                if is_number(candidate):
                    total = int(candidate)
        except (ValueError, csv.Error, JsonPathError) as e:
            logger.warning("data source response could not be parsed: %s: %s", config.name, e)
            return self._failure(config, started, "REQUEST_ERROR", str(e) or "Invalid response body")

        fields = [f.name for f in config.response_structure.fields]
        if not fields and data and isinstance(data[0], dict):
            fields = list(data[0].keys())

        result = QueryResponse(
            success=True,
            data=data,
            metadata=QueryMetadata(
                source=config.name,
                source_type="api",
                fetched_at=utc_now_iso(),
                cached=False,
                record_count=len(data),
                total_records=total,
                fields=fields,
                execution_time_ms=elapsed_ms(started),
            ),
        )
        await self._write_cache(cache_key, result, self._ttl_for(config))
        return result

    async def test_connection(self, config: ApiSourceConfig) -> ConnectionTestResult:
        """Call the endpoint with example/default values for every required parameter."""
        params: dict[str, Any] = {}
        for p in config.parameters:
            if not p.required:
                continue
            if p.example is not None:
                params[p.name] = p.example
            elif p.default is not None:
                params[p.name] = p.default
            else:
                return ConnectionTestResult(
                    success=False,
                    message=f"Missing required parameter: {p.name}. Please provide an example value.",
                )

        response = await self.call(config, params)
        if not response.success:
            message = response.error.message if response.error else "Unknown error"
            return ConnectionTestResult(success=False, message=message)

        return ConnectionTestResult(
            success=True,
            message=f"Successfully retrieved {response.metadata.record_count} records",
            sample_data=(response.data or [])[:3],
        )
