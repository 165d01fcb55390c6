from __future__ import annotations

import json
import uuid
from typing import Any

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field

from ..agent.tools.data_source_tools import DataSourceToolArgs
from ..deps import get_query_service, get_registry, get_settings
from ..services.data_sources.csv_handler import delete_csv_file, parse_csv_buffer, store_csv_file
from ..services.data_sources.openapi_parser import parse_openapi_spec, parsed_openapi_to_config, validate_openapi_spec
from ..services.data_sources.query_service import RequestContext
from ..services.data_sources.tool_config import tool_config_schema, validate_tool_config
from ..services.data_sources.types import ApiDataSource, CsvDataSource, CsvSourceConfig, DataSource
from ..time_utils import utc_now_iso


router = APIRouter(tags=["data-sources"])

_MAX_CSV_BYTES = 50 * 1024 * 1024


class OpenAPIImportRequest(BaseModel):
    content: str = Field(min_length=1)


def _source_summary(source: DataSource) -> dict[str, Any]:
    cfg = source.config
    out: dict[str, Any] = {
        "id": cfg.id,
        "name": cfg.name,
        "type": source.type,
        "description": cfg.description,
        "status": cfg.status,
        "categoryIds": list(cfg.category_ids),
        "lastError": cfg.last_error,
    }
    if isinstance(source, ApiDataSource):
        out["endpoint"] = source.config.endpoint
        out["method"] = source.config.method
        out["authType"] = source.config.authentication.type
        out["lastTested"] = source.config.last_tested
    elif isinstance(source, CsvDataSource):
        out["originalFilename"] = source.config.original_filename
        out["rowCount"] = source.config.row_count
        out["columns"] = [c.to_dict() for c in source.config.columns]
    return out


def _parse_category_ids(raw: str | None) -> list[int]:
    text = (raw or "").strip()
    if not text:
        return []
    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = text.split(",")
    if not isinstance(parsed, list):
        parsed = [parsed]
    out: list[int] = []
    for item in parsed:
        try:
            out.append(int(str(item).strip()))
        except ValueError:
            continue
    return out


@router.get("/data-sources")
async def list_data_sources(
    category_ids: list[int] = Query(default=[]),
    registry=Depends(get_registry),  # noqa: ANN001
) -> dict:
    sources = await registry.get_sources_for_categories(category_ids) if category_ids else await registry.list_sources()
    return {"sources": [_source_summary(s) for s in sources]}


@router.get("/data-sources/describe")
async def describe_data_sources(
    category_ids: list[int] = Query(default=[]),
    service=Depends(get_query_service),  # noqa: ANN001
) -> dict:
    return {"description": await service.describe_available_sources(category_ids)}


@router.post("/data-sources/query")
async def query_data_source(
    args: DataSourceToolArgs,
    x_category_id: int | None = Header(default=None),
    service=Depends(get_query_service),  # noqa: ANN001
) -> dict:
    context = RequestContext(category_ids=(x_category_id,) if x_category_id else ())
    return await service.execute(args.to_query(), context)


@router.get("/data-sources/tool-config")
async def get_tool_config(service=Depends(get_query_service)) -> dict:  # noqa: ANN001
    return service.tool_config.to_dict()


@router.get("/data-sources/tool-config/schema")
async def get_tool_config_schema() -> dict:
    return tool_config_schema()


@router.post("/data-sources/tool-config/validate")
async def validate_tool_config_payload(payload: dict[str, Any]) -> dict:
    valid, errors = validate_tool_config(payload)
    return {"valid": valid, "errors": errors}


@router.post("/data-sources/parse-openapi")
async def parse_openapi(req: OpenAPIImportRequest) -> dict:
    validation = validate_openapi_spec(req.content)
    if not validation.valid:
        raise HTTPException(
            status_code=400,
            detail={"error": "Invalid OpenAPI spec", "errors": validation.errors, "warnings": validation.warnings},
        )
    parsed = parse_openapi_spec(req.content)
    return {
        "success": True,
        "warnings": validation.warnings,
        "config": parsed_openapi_to_config(parsed),
        "path": parsed.path,
    }


@router.post("/data-sources/upload-csv")
async def upload_csv(
    file: UploadFile = File(...),
    name: str = Form(default=""),
    description: str = Form(default=""),
    category_ids: str = Form(default=""),
    delimiter: str = Form(default=","),
    has_header: bool = Form(default=True),
    skip_rows: int = Form(default=0, ge=0),
    encoding: str = Form(default="utf-8"),
    settings=Depends(get_settings),  # noqa: ANN001
    registry=Depends(get_registry),  # noqa: ANN001
) -> dict:
    filename = str(file.filename or "").strip()
    data = await file.read()
    await file.close()

    if not data:
        raise HTTPException(status_code=400, detail="CSV file is required")
    if not filename.lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="File must be a CSV file")
    if len(data) > _MAX_CSV_BYTES:
        raise HTTPException(status_code=400, detail="File size must be less than 50MB")

    parsed = parse_csv_buffer(
        data,
        delimiter=delimiter,
        has_header=has_header,
        skip_rows=skip_rows,
        encoding=encoding,
    )
    if parsed.row_count == 0 or not parsed.columns:
        raise HTTPException(status_code=400, detail="CSV file is empty or contains no valid data rows")

    out: dict[str, Any] = {"success": True, "parseResult": parsed.preview()}
    source_name = name.strip()
    if not source_name:
        return out

    file_path, file_size = store_csv_file(data, filename, settings.csv_storage_dir)
    now = utc_now_iso()
    source = CsvDataSource(
        config=CsvSourceConfig(
            id=uuid.uuid4().hex,
            name=source_name,
            description=description,
            file_path=file_path,
            original_filename=filename,
            columns=parsed.columns,
            sample_data=parsed.sample_data,
            row_count=parsed.row_count,
            file_size=file_size,
            category_ids=_parse_category_ids(category_ids),
            created_at=now,
            updated_at=now,
            delimiter=(delimiter or ",")[:1],
            has_header=has_header,
            skip_rows=max(0, int(skip_rows or 0)),
            encoding=encoding or "utf-8",
        )
    )
    await registry.save(source)
    out["dataSource"] = _source_summary(source)
    return out


@router.post("/data-sources/{source_id}/test")
async def test_data_source(
    source_id: str,
    registry=Depends(get_registry),  # noqa: ANN001
    service=Depends(get_query_service),  # noqa: ANN001
) -> dict:
    source = await registry.get_source(source_id)
    if source is None:
        raise HTTPException(status_code=404, detail="Data source not found")
    result = await service.test_source(source)
    out = result.to_dict()
    out["status"] = "active" if result.success else "error"
    return out


@router.delete("/data-sources/{source_id}")
async def delete_data_source(source_id: str, registry=Depends(get_registry)) -> dict:  # noqa: ANN001
    source = await registry.delete(source_id)
    if source is None:
        raise HTTPException(status_code=404, detail="Data source not found")
    file_deleted = False
    if isinstance(source, CsvDataSource) and source.config.file_path:
        file_deleted = delete_csv_file(source.config.file_path)
    return {"success": True, "fileDeleted": file_deleted}
