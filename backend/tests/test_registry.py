from __future__ import annotations

from pathlib import Path

import pytest

from conftest import make_api_source, make_csv_source
from policybot_api.services.data_sources.registry import InMemoryDataSourceRegistry, load_sources_file


SOURCES_YAML = """
sources:
  - type: api
    id: weather
    name: Weather
    endpoint: https://api.example.test/weather
    status: active
    categoryIds: [1, 2]
    parameters:
      - name: city
        in: query
        required: true
        example: Austin
    responseStructure:
      jsonPath: $.results
      dataIsArray: true
  - type: csv
    id: budget
    name: Budget
    filePath: files/budget.csv
    delimiter: ";"
    hasHeader: false
    categoryIds: [2]
  - type: spreadsheet
    id: bad
    name: Bad
  - type: api
    name: No Id
    endpoint: https://api.example.test/x
"""


def test_load_sources_file_yaml(tmp_path: Path) -> None:
    path = tmp_path / "sources.yaml"
    path.write_text(SOURCES_YAML, encoding="utf-8")

    sources = load_sources_file(path)

    assert [s.config.id for s in sources] == ["weather", "budget"]
    weather = sources[0].config
    assert weather.parameters[0].example == "Austin"
    assert weather.response_structure.json_path == "$.results"
    assert sources[1].config.file_path == str((tmp_path / "files" / "budget.csv").resolve())
    assert sources[1].config.parse_options == {"delimiter": ";", "has_header": False, "skip_rows": 0, "encoding": "utf-8"}


def test_load_sources_file_json_list(tmp_path: Path) -> None:
    path = tmp_path / "sources.json"
    path.write_text('[{"type": "csv", "id": "c", "name": "C", "filePath": "/data/c.csv"}]', encoding="utf-8")
    sources = load_sources_file(path)
    assert sources[0].config.file_path == "/data/c.csv"


def test_load_sources_file_rejects_scalars(tmp_path: Path) -> None:
    path = tmp_path / "sources.yaml"
    path.write_text("just text", encoding="utf-8")
    with pytest.raises(ValueError):
        load_sources_file(path)


async def test_api_source_shadows_csv_of_same_name(sales_csv: Path) -> None:
    registry = InMemoryDataSourceRegistry([make_csv_source(sales_csv, name="Shared"), make_api_source(name="Shared")])
    source = await registry.get_source_by_name("Shared")
    assert source.type == "api"
    assert await registry.get_source_by_name("shared") is None


async def test_save_delete_and_category_listing(sales_csv: Path) -> None:
    registry = InMemoryDataSourceRegistry()
    await registry.save(make_csv_source(sales_csv, category_ids=[3]))
    await registry.save(make_api_source(id="a", name="Alpha", categoryIds=[3]))
    await registry.save(make_api_source(id="b", name="Beta", categoryIds=[3], status="inactive"))

    visible = await registry.get_sources_for_categories([3, 4])
    assert [s.config.name for s in visible] == ["Alpha", "Sales"]
    assert await registry.get_sources_for_categories([]) == []
    assert len(await registry.list_sources()) == 3

    removed = await registry.delete("csv-1")
    assert removed is not None
    assert await registry.delete("csv-1") is None
    assert await registry.get_source("csv-1") is None


async def test_save_requires_id(sales_csv: Path) -> None:
    with pytest.raises(ValueError):
        await InMemoryDataSourceRegistry().save(make_csv_source(sales_csv, id=""))
