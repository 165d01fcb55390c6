from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union


SourceType = Literal["api", "csv"]
SourceStatus = Literal["untested", "active", "inactive", "error"]
ParamType = Literal["string", "integer", "number", "boolean", "array"]
ParamLocation = Literal["query", "path", "header", "body"]
FieldType = Literal["string", "number", "boolean", "array", "object", "date"]
ColumnType = Literal["string", "number", "boolean", "date"]
AuthType = Literal["none", "bearer", "api_key", "basic"]
FilterOperator = Literal["eq", "ne", "gt", "lt", "gte", "lte", "contains", "in"]
AggregationOperation = Literal["count", "sum", "avg", "min", "max"]
ChartType = Literal["bar", "line", "pie", "area", "scatter", "radar", "table"]

VALID_STATUSES: tuple[str, ...] = ("untested", "active", "inactive", "error")
VALID_PARAM_TYPES: tuple[str, ...] = ("string", "integer", "number", "boolean", "array")
VALID_PARAM_LOCATIONS: tuple[str, ...] = ("query", "path", "header", "body")
VALID_AUTH_TYPES: tuple[str, ...] = ("none", "bearer", "api_key", "basic")
FILTER_OPERATORS: tuple[str, ...] = ("eq", "ne", "gt", "lt", "gte", "lte", "contains", "in")
AGGREGATION_OPERATIONS: tuple[str, ...] = ("count", "sum", "avg", "min", "max")
CHART_TYPES: tuple[str, ...] = ("bar", "line", "pie", "area", "scatter", "radar", "table")

Row = dict[str, Any]


class DataSourceError(Exception):
    """Engine failure that maps onto one error code of the response envelope."""

    def __init__(self, code: str, message: str, details: str | None = None, **extra: Any) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details
        self.extra = extra

    def to_error(self) -> "QueryError":
        return QueryError(code=self.code, message=self.message, details=self.details, extra=dict(self.extra))


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


# ===== Remote API sources =====


@dataclass(frozen=True)
class ApiParameter:
    name: str
    type: ParamType = "string"
    location: ParamLocation = "query"
    description: str = ""
    required: bool = False
    default: Any = None
    example: Any = None
    allowed_values: list[Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self.name,
            "type": self.type,
            "in": self.location,
            "description": self.description,
            "required": self.required,
        }
        if self.default is not None:
            out["default"] = self.default
        if self.example is not None:
            out["example"] = self.example
        if self.allowed_values is not None:
            out["allowedValues"] = list(self.allowed_values)
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ApiParameter":
        ptype = str(_pick(data, "type", default="string"))
        location = str(_pick(data, "in", "location", default="query"))
        allowed = _pick(data, "allowedValues", "allowed_values", "enum")
        return cls(
            name=str(data.get("name") or "").strip(),
            type=ptype if ptype in VALID_PARAM_TYPES else "string",  # type: ignore[arg-type]
            location=location if location in VALID_PARAM_LOCATIONS else "query",  # type: ignore[arg-type]
            description=str(data.get("description") or ""),
            required=bool(data.get("required", False)),
            default=data.get("default"),
            example=data.get("example"),
            allowed_values=list(allowed) if isinstance(allowed, list) else None,
        )


@dataclass(frozen=True)
class ResponseField:
    name: str
    type: FieldType = "string"
    description: str = ""
    format: str | None = None
    nested_fields: list["ResponseField"] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name, "type": self.type, "description": self.description}
        if self.format:
            out["format"] = self.format
        if self.nested_fields:
            out["nestedFields"] = [f.to_dict() for f in self.nested_fields]
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResponseField":
        nested = _pick(data, "nestedFields", "nested_fields", default=[]) or []
        return cls(
            name=str(data.get("name") or ""),
            type=str(data.get("type") or "string"),  # type: ignore[arg-type]
            description=str(data.get("description") or ""),
            format=data.get("format"),
            nested_fields=[cls.from_dict(n) for n in nested if isinstance(n, dict)],
        )


@dataclass(frozen=True)
class ResponseStructure:
    json_path: str = "$"
    data_is_array: bool = False
    fields: list[ResponseField] = field(default_factory=list)
    total_count_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "jsonPath": self.json_path,
            "dataIsArray": self.data_is_array,
            "fields": [f.to_dict() for f in self.fields],
        }
        if self.total_count_path:
            out["totalCountPath"] = self.total_count_path
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ResponseStructure":
        data = data or {}
        return cls(
            json_path=str(_pick(data, "jsonPath", "json_path", default="$")),
            data_is_array=bool(_pick(data, "dataIsArray", "data_is_array", default=False)),
            fields=[ResponseField.from_dict(f) for f in (data.get("fields") or []) if isinstance(f, dict)],
            total_count_path=_pick(data, "totalCountPath", "total_count_path"),
        )


@dataclass(frozen=True)
class AuthCredentials:
    token: str | None = None
    api_key: str | None = None
    api_key_header: str | None = None
    api_key_location: Literal["header", "query"] | None = None
    username: str | None = None
    password: str | None = None

    def to_dict(self) -> dict[str, Any]:
        raw = {
            "token": self.token,
            "apiKey": self.api_key,
            "apiKeyHeader": self.api_key_header,
            "apiKeyLocation": self.api_key_location,
            "username": self.username,
            "password": self.password,
        }
        return {k: v for k, v in raw.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthCredentials":
        location = _pick(data, "apiKeyLocation", "api_key_location")
        return cls(
            token=_pick(data, "token"),
            api_key=_pick(data, "apiKey", "api_key"),
            api_key_header=_pick(data, "apiKeyHeader", "api_key_header"),
            api_key_location=location if location in {"header", "query"} else None,
            username=_pick(data, "username"),
            password=_pick(data, "password"),
        )


@dataclass(frozen=True)
class AuthConfig:
    type: AuthType = "none"
    credentials: AuthCredentials | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type}
        if self.credentials is not None:
            out["credentials"] = self.credentials.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AuthConfig":
        data = data or {}
        auth_type = str(data.get("type") or "none")
        creds = data.get("credentials")
        return cls(
            type=auth_type if auth_type in VALID_AUTH_TYPES else "none",  # type: ignore[arg-type]
            credentials=AuthCredentials.from_dict(creds) if isinstance(creds, dict) else None,
        )


@dataclass(frozen=True)
class ApiSourceConfig:
    id: str
    name: str
    endpoint: str
    description: str = ""
    method: Literal["GET", "POST"] = "GET"
    response_format: Literal["json", "csv"] = "json"
    authentication: AuthConfig = field(default_factory=AuthConfig)
    headers: dict[str, str] = field(default_factory=dict)
    parameters: list[ApiParameter] = field(default_factory=list)
    response_structure: ResponseStructure = field(default_factory=ResponseStructure)
    sample_response: dict[str, Any] | None = None
    openapi_spec: dict[str, Any] | None = None
    config_method: Literal["manual", "openapi"] = "manual"
    category_ids: list[int] = field(default_factory=list)
    status: SourceStatus = "untested"
    created_by: str = ""
    created_at: str = ""
    updated_at: str = ""
    last_tested: str | None = None
    last_error: str | None = None
    timeout_seconds: int | None = None
    cache_ttl_seconds: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ApiSourceConfig":
        method = str(data.get("method") or "GET").upper()
        response_format = str(_pick(data, "responseFormat", "response_format", default="json")).lower()
        status = str(data.get("status") or "untested")
        config_method = str(_pick(data, "configMethod", "config_method", default="manual"))
        return cls(
            id=str(data.get("id") or "").strip(),
            name=str(data.get("name") or "").strip(),
            endpoint=str(data.get("endpoint") or "").strip(),
            description=str(data.get("description") or ""),
            method="POST" if method == "POST" else "GET",
            response_format="csv" if response_format == "csv" else "json",
            authentication=AuthConfig.from_dict(_pick(data, "authentication", "auth")),
            headers={str(k): str(v) for k, v in (data.get("headers") or {}).items()},
            parameters=[ApiParameter.from_dict(p) for p in (data.get("parameters") or []) if isinstance(p, dict)],
            response_structure=ResponseStructure.from_dict(_pick(data, "responseStructure", "response_structure")),
            sample_response=_pick(data, "sampleResponse", "sample_response"),
            openapi_spec=_pick(data, "openApiSpec", "openapi_spec"),
            config_method="openapi" if config_method == "openapi" else "manual",
            category_ids=_int_list(_pick(data, "categoryIds", "category_ids", default=[])),
            status=status if status in VALID_STATUSES else "untested",  # type: ignore[arg-type]
            created_by=str(_pick(data, "createdBy", "created_by", default="")),
            created_at=str(_pick(data, "createdAt", "created_at", default="")),
            updated_at=str(_pick(data, "updatedAt", "updated_at", default="")),
            last_tested=_pick(data, "lastTested", "last_tested"),
            last_error=_pick(data, "lastError", "last_error"),
            timeout_seconds=_opt_int(_pick(data, "timeoutSeconds", "timeout_seconds")),
            cache_ttl_seconds=_opt_int(_pick(data, "cacheTTLSeconds", "cache_ttl_seconds")),
        )


# ===== Tabular file sources =====


@dataclass(frozen=True)
class CsvColumn:
    name: str
    type: ColumnType = "string"
    description: str = ""
    format: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name, "type": self.type, "description": self.description}
        if self.format:
            out["format"] = self.format
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CsvColumn":
        ctype = str(data.get("type") or "string")
        return cls(
            name=str(data.get("name") or ""),
            type=ctype if ctype in {"string", "number", "boolean", "date"} else "string",  # type: ignore[arg-type]
            description=str(data.get("description") or ""),
            format=data.get("format"),
        )


@dataclass(frozen=True)
class CsvSourceConfig:
    id: str
    name: str
    file_path: str
    description: str = ""
    original_filename: str = ""
    columns: list[CsvColumn] = field(default_factory=list)
    sample_data: list[Row] = field(default_factory=list)
    row_count: int = 0
    file_size: int = 0
    category_ids: list[int] = field(default_factory=list)
    status: SourceStatus = "active"
    created_by: str = ""
    created_at: str = ""
    updated_at: str = ""
    last_error: str | None = None
    delimiter: str = ","
    has_header: bool = True
    skip_rows: int = 0
    encoding: str = "utf-8"

    @property
    def parse_options(self) -> dict[str, Any]:
        """Options the file was uploaded with; every reparse must use the same ones."""
        return {
            "delimiter": self.delimiter,
            "has_header": self.has_header,
            "skip_rows": self.skip_rows,
            "encoding": self.encoding,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CsvSourceConfig":
        status = str(data.get("status") or "active")
        return cls(
            id=str(data.get("id") or "").strip(),
            name=str(data.get("name") or "").strip(),
            file_path=str(_pick(data, "filePath", "file_path", default="")),
            description=str(data.get("description") or ""),
            original_filename=str(_pick(data, "originalFilename", "original_filename", default="")),
            columns=[CsvColumn.from_dict(c) for c in (data.get("columns") or []) if isinstance(c, dict)],
            sample_data=list(_pick(data, "sampleData", "sample_data", default=[]) or []),
            row_count=int(_pick(data, "rowCount", "row_count", default=0) or 0),
            file_size=int(_pick(data, "fileSize", "file_size", default=0) or 0),
            category_ids=_int_list(_pick(data, "categoryIds", "category_ids", default=[])),
            status=status if status in VALID_STATUSES else "active",  # type: ignore[arg-type]
            created_by=str(_pick(data, "createdBy", "created_by", default="")),
            created_at=str(_pick(data, "createdAt", "created_at", default="")),
            updated_at=str(_pick(data, "updatedAt", "updated_at", default="")),
            last_error=_pick(data, "lastError", "last_error"),
            delimiter=str(data.get("delimiter") or ",")[:1],
            has_header=bool(_pick(data, "hasHeader", "has_header", default=True)),
            skip_rows=max(0, int(_pick(data, "skipRows", "skip_rows", default=0) or 0)),
            encoding=str(data.get("encoding") or "utf-8"),
        )


@dataclass(frozen=True)
class ApiDataSource:
    config: ApiSourceConfig
    type: Literal["api"] = "api"


@dataclass(frozen=True)
class CsvDataSource:
    config: CsvSourceConfig
    type: Literal["csv"] = "csv"


DataSource = Union[ApiDataSource, CsvDataSource]


def data_source_from_dict(data: dict[str, Any]) -> DataSource:
    kind = str(data.get("type") or "").strip().lower()
    config = data.get("config") if isinstance(data.get("config"), dict) else data
    if kind == "api":
        return ApiDataSource(config=ApiSourceConfig.from_dict(config))
    if kind == "csv":
        return CsvDataSource(config=CsvSourceConfig.from_dict(config))
    raise ValueError(f"unknown data source type: {kind or '(empty)'}")


def _int_list(raw: Any) -> list[int]:
    if not isinstance(raw, (list, tuple)):
        return []
    out: list[int] = []
    for item in raw:
        try:
            out.append(int(item))
        except (TypeError, ValueError):
            continue
    return out


def _opt_int(raw: Any) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


# ===== Query model =====


@dataclass(frozen=True)
class DataFilter:
    field: str
    operator: FilterOperator
    value: Any = None


@dataclass(frozen=True)
class DataSort:
    field: str
    direction: Literal["asc", "desc"] = "asc"


@dataclass(frozen=True)
class AggregationMetric:
    field: str
    operation: AggregationOperation

    @property
    def key(self) -> str:
        return f"{self.field}_{self.operation}"


@dataclass(frozen=True)
class AggregationConfig:
    group_by: str | list[str]
    metrics: list[AggregationMetric] = field(default_factory=list)

    @property
    def group_by_fields(self) -> list[str]:
        if isinstance(self.group_by, str):
            return [self.group_by]
        return list(self.group_by)

    @property
    def result_fields(self) -> list[str]:
        return [*self.group_by_fields, "count", *[m.key for m in self.metrics]]


@dataclass(frozen=True)
class VisualizationHint:
    chart_type: ChartType
    x_field: str | None = None
    y_field: str | None = None
    group_by: str | None = None
    series: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"chartType": self.chart_type}
        if self.x_field is not None:
            out["xField"] = self.x_field
        if self.y_field is not None:
            out["yField"] = self.y_field
        if self.group_by is not None:
            out["groupBy"] = self.group_by
        if self.series is not None:
            out["series"] = list(self.series)
        return out


# ===== Response envelope =====


@dataclass
class QueryMetadata:
    source: str
    source_type: SourceType
    fetched_at: str
    cached: bool = False
    record_count: int = 0
    total_records: int | None = None
    fields: list[str] = field(default_factory=list)
    execution_time_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "sourceType": self.source_type,
            "fetchedAt": self.fetched_at,
            "cached": self.cached,
            "recordCount": self.record_count,
            "totalRecords": self.total_records,
            "fields": list(self.fields),
            "executionTimeMs": self.execution_time_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueryMetadata":
        return cls(
            source=str(data.get("source") or ""),
            source_type="csv" if data.get("sourceType") == "csv" else "api",
            fetched_at=str(data.get("fetchedAt") or ""),
            cached=bool(data.get("cached", False)),
            record_count=int(data.get("recordCount") or 0),
            total_records=_opt_int(data.get("totalRecords")),
            fields=[str(f) for f in (data.get("fields") or [])],
            execution_time_ms=int(data.get("executionTimeMs") or 0),
        )


@dataclass
class QueryError:
    code: str
    message: str
    details: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            out["details"] = self.details
        out.update(self.extra)
        return out


@dataclass
class QueryResponse:
    success: bool
    data: list[Row] | None
    metadata: QueryMetadata
    error: QueryError | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "success": self.success,
            "data": self.data,
            "metadata": self.metadata.to_dict(),
        }
        if self.error is not None:
            out["error"] = self.error.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueryResponse":
        rows = data.get("data")
        return cls(
            success=bool(data.get("success")),
            data=list(rows) if isinstance(rows, list) else None,
            metadata=QueryMetadata.from_dict(data.get("metadata") or {}),
        )
