from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

from policybot_api.services.data_sources.api_caller import ApiCaller
from policybot_api.services.data_sources.cache import InMemoryQueryCache
from policybot_api.services.data_sources.query_service import DataSourceQueryService
from policybot_api.services.data_sources.registry import InMemoryDataSourceRegistry
from policybot_api.services.data_sources.tool_config import DataSourceToolConfig
from policybot_api.services.data_sources.types import (
    ApiDataSource,
    ApiSourceConfig,
    CsvColumn,
    CsvDataSource,
    CsvSourceConfig,
)


SALES_CSV = (
    "region,product,units,revenue\n"
    "North,Widget,10,100.5\n"
    "North,Gadget,5,50\n"
    "South,Widget,7,70\n"
    "East,Widget,3,\n"
    "West,Gizmo,1,10\n"
)

TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"


class RecordingHandler:
    """httpx.MockTransport handler that records requests and replies from a callable."""

    def __init__(self, reply: Callable[[httpx.Request], httpx.Response]) -> None:
        self._reply = reply
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._reply(request)

    @property
    def calls(self) -> int:
        return len(self.requests)


def json_reply(payload: Any, status_code: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(status_code, json=payload)


def make_api_source(**overrides: Any) -> ApiDataSource:
    data: dict[str, Any] = {
        "id": "api-1",
        "name": "Permits API",
        "endpoint": "https://data.example.test/permits",
        "description": "Building permits",
        "status": "active",
        "categoryIds": [1],
        "responseStructure": {"jsonPath": "$.data", "dataIsArray": True, "fields": [{"name": "city"}, {"name": "count"}]},
    }
    data.update(overrides)
    return ApiDataSource(config=ApiSourceConfig.from_dict(data))


def make_csv_source(file_path: Path, **overrides: Any) -> CsvDataSource:
    base = CsvSourceConfig(
        id="csv-1",
        name="Sales",
        file_path=str(file_path),
        description="Quarterly sales",
        original_filename="sales.csv",
        columns=[
            CsvColumn(name="region"),
            CsvColumn(name="product"),
            CsvColumn(name="units", type="number"),
            CsvColumn(name="revenue", type="number"),
        ],
        row_count=5,
        category_ids=[1],
    )
    return CsvDataSource(config=dataclasses.replace(base, **overrides))


@pytest.fixture
def sales_csv(tmp_path: Path) -> Path:
    path = tmp_path / "sales.csv"
    path.write_text(SALES_CSV, encoding="utf-8")
    return path


@pytest.fixture
def tool_config() -> DataSourceToolConfig:
    return DataSourceToolConfig()


@pytest.fixture
def make_service(tool_config: DataSourceToolConfig):
    def _make(sources: list, handler: Callable[[httpx.Request], httpx.Response] | None = None, **kwargs: Any) -> DataSourceQueryService:
        config = kwargs.pop("config", tool_config)
        transport = httpx.MockTransport(handler or json_reply({"data": []}))
        caller = ApiCaller(
            tool_config=config,
            cache=kwargs.pop("cache", InMemoryQueryCache()),
            transport=transport,
        )
        registry = kwargs.pop("registry", None) or InMemoryDataSourceRegistry(sources)
        return DataSourceQueryService(registry=registry, api_caller=caller, tool_config=config)

    return _make


@pytest.fixture
def app(tmp_path: Path, sales_csv: Path):
    os.environ["POLICYBOT_DATA_DIR"] = str(tmp_path / "data")
    os.environ["POLICYBOT_DATA_SOURCE_ENCRYPTION_KEY"] = TEST_ENCRYPTION_KEY
    os.environ.pop("POLICYBOT_SOURCES_FILE", None)

    from policybot_api.app_factory import create_app
    from policybot_api.config import load_settings

    settings = load_settings()
    registry = InMemoryDataSourceRegistry([make_csv_source(sales_csv)])
    handler = RecordingHandler(json_reply({"data": [{"city": "Austin", "count": 3}]}))
    return create_app(settings, registry=registry, transport=httpx.MockTransport(handler))


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
