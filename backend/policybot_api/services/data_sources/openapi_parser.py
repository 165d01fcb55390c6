"""
OpenAPI 3.x import: turns an API description document into an API source configuration.

Only the first path carrying a GET (preferred) or POST operation is imported.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import yaml

from .types import ApiParameter, AuthConfig, AuthCredentials, ResponseField, ResponseStructure


_MAX_SCHEMA_DEPTH = 3
_WRAPPER_KEYS = ("data", "results", "items", "records")
_PARAM_LOCATIONS = {"query", "path", "header"}


class OpenAPIValidationError(ValueError):
    def __init__(self, errors: list[str], warnings: list[str] | None = None) -> None:
        super().__init__(f"Invalid OpenAPI spec: {'; '.join(errors)}")
        self.errors = list(errors)
        self.warnings = list(warnings or [])


@dataclass(frozen=True)
class OpenAPIValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors), "warnings": list(self.warnings)}


@dataclass(frozen=True)
class ParsedOpenAPI:
    name: str
    description: str
    endpoint: str
    method: str
    path: str
    authentication: AuthConfig
    parameters: list[ApiParameter]
    response_structure: ResponseStructure
    sample_response: dict[str, Any] | None
    original_spec: dict[str, Any]


def _load(content: str | dict[str, Any]) -> dict[str, Any]:
    if isinstance(content, dict):
        return content
    doc = yaml.safe_load(content)
    if not isinstance(doc, dict):
        raise yaml.YAMLError("document root must be a mapping")
    return doc


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def validate_openapi_spec(content: str | dict[str, Any]) -> OpenAPIValidationResult:
    """Check a YAML/JSON document for the fields an import needs; never raises."""
    errors: list[str] = []
    warnings: list[str] = []

    try:
        spec = _load(content)
    except yaml.YAMLError as e:
        return OpenAPIValidationResult(valid=False, errors=[f"Invalid YAML: {e}"])

    version = spec.get("openapi")
    if not version:
        warnings.append("Missing openapi version field")
    elif not str(version).startswith("3."):
        errors.append(f"Unsupported OpenAPI version: {version}. Only OpenAPI 3.x is supported.")

    info = _as_dict(spec.get("info"))
    if not info.get("title"):
        errors.append("Missing info.title - API name is required")

    servers = spec.get("servers")
    if not isinstance(servers, list) or not servers or not _as_dict(servers[0]).get("url"):
        errors.append("Missing servers[0].url - Base URL is required")

    paths = _as_dict(spec.get("paths"))
    if not paths:
        errors.append("Missing paths - At least one path is required")
    elif not any(_as_dict(item).get("get") or _as_dict(item).get("post") for item in paths.values()):
        errors.append("No GET or POST methods found in paths")

    if not info.get("description"):
        warnings.append("Missing info.description - Consider adding a description")

    return OpenAPIValidationResult(valid=not errors, errors=errors, warnings=warnings)


def parse_openapi_spec(content: str | dict[str, Any]) -> ParsedOpenAPI:
    validation = validate_openapi_spec(content)
    if not validation.valid:
        raise OpenAPIValidationError(validation.errors, validation.warnings)

    spec = _load(content)
    info = _as_dict(spec.get("info"))
    components = _as_dict(spec.get("components"))
    schemas = _as_dict(components.get("schemas"))

    base_url = str(_as_dict(spec["servers"][0]).get("url") or "").rstrip("/")

    paths = _as_dict(spec.get("paths"))
    selected_path = next(iter(paths), "/")
    method = "GET"
    operation: dict[str, Any] = {}
    for path_key, item in paths.items():
        item = _as_dict(item)
        if item.get("get"):
            selected_path, method, operation = path_key, "GET", _as_dict(item["get"])
            break
        if item.get("post"):
            selected_path, method, operation = path_key, "POST", _as_dict(item["post"])
            break

    path_item = _as_dict(paths.get(selected_path))
    raw_params = [*(path_item.get("parameters") or []), *(operation.get("parameters") or [])]
    responses = _as_dict(operation.get("responses"))

    return ParsedOpenAPI(
        name=str(info.get("title") or "Unnamed API"),
        description=str(info.get("description") or ""),
        endpoint=f"{base_url}{selected_path}",
        method=method,
        path=selected_path,
        authentication=_parse_authentication(_as_dict(components.get("securitySchemes"))),
        parameters=_parse_parameters(raw_params),
        response_structure=_parse_response_structure(responses, schemas),
        sample_response=_extract_sample_response(responses),
        original_spec=spec,
    )


def _parse_parameters(raw: list[Any]) -> list[ApiParameter]:
    params: list[ApiParameter] = []
    for p in raw:
        p = _as_dict(p)
        location = p.get("in")
        if location not in _PARAM_LOCATIONS or not p.get("name"):
            continue
        schema = _as_dict(p.get("schema"))
        ptype = schema.get("type")
        enum = schema.get("enum")
        params.append(
            ApiParameter(
                name=str(p["name"]),
                type=ptype if ptype in {"integer", "number", "boolean", "array"} else "string",
                location=location,
                description=str(p.get("description") or ""),
                required=bool(p.get("required", False)),
                default=schema.get("default"),
                example=p.get("example") if p.get("example") is not None else schema.get("example"),
                allowed_values=list(enum) if isinstance(enum, list) else None,
            )
        )
    return params


def _resolve(schema: Any, schemas: dict[str, Any], depth: int = 0) -> dict[str, Any]:
    schema = _as_dict(schema)
    ref = schema.get("$ref")
    if isinstance(ref, str) and depth <= _MAX_SCHEMA_DEPTH:
        # "#/components/schemas/User" -> "User"
        target = schemas.get(ref.rsplit("/", 1)[-1])
        if isinstance(target, dict):
            return _resolve(target, schemas, depth + 1)
    return schema


def _field_type(schema_type: Any) -> str:
    if schema_type in {"integer", "number"}:
        return "number"
    if schema_type in {"boolean", "array", "object"}:
        return schema_type
    return "string"


def _parse_fields(schema: dict[str, Any], schemas: dict[str, Any], depth: int = 0) -> list[ResponseField]:
    properties = _as_dict(schema.get("properties"))
    if depth > _MAX_SCHEMA_DEPTH or not properties:
        return []

    fields: list[ResponseField] = []
    for name, prop in properties.items():
        resolved = _resolve(prop, schemas)
        nested: list[ResponseField] = []
        if resolved.get("type") == "object" and resolved.get("properties"):
            nested = _parse_fields(resolved, schemas, depth + 1)
        elif resolved.get("type") == "array" and resolved.get("items"):
            item = _resolve(resolved["items"], schemas)
            if item.get("type") == "object" and item.get("properties"):
                nested = _parse_fields(item, schemas, depth + 1)
        fields.append(
            ResponseField(
                name=str(name),
                type=_field_type(resolved.get("type")),  # type: ignore[arg-type]
                description=str(resolved.get("description") or ""),
                format=resolved.get("format"),
                nested_fields=nested,
            )
        )
    return fields


def _success_json(responses: dict[str, Any], *codes: str) -> dict[str, Any]:
    for code in codes:
        resp = _as_dict(responses.get(code))
        if resp:
            return _as_dict(_as_dict(resp.get("content")).get("application/json"))
    return {}


def _parse_response_structure(responses: dict[str, Any], schemas: dict[str, Any]) -> ResponseStructure:
    content = _success_json(responses, "200", "201", "default")
    if not content.get("schema"):
        return ResponseStructure()

    schema = _resolve(content["schema"], schemas)
    if schema.get("type") == "array":
        items = schema.get("items")
        fields = _parse_fields(_resolve(items, schemas), schemas) if items else []
        return ResponseStructure(json_path="$", data_is_array=True, fields=fields)

    properties = _as_dict(schema.get("properties"))
    for key, prop in properties.items():
        resolved = _resolve(prop, schemas)
        if resolved.get("type") == "array" and key in _WRAPPER_KEYS:
            items = resolved.get("items")
            return ResponseStructure(
                json_path=key,
                data_is_array=True,
                fields=_parse_fields(_resolve(items, schemas), schemas) if items else [],
            )

    return ResponseStructure(json_path="$", data_is_array=False, fields=_parse_fields(schema, schemas))


def _extract_sample_response(responses: dict[str, Any]) -> dict[str, Any] | None:
    example = _success_json(responses, "200", "201").get("example")
    return example if example is not None else None


def _parse_authentication(schemes: dict[str, Any]) -> AuthConfig:
    if not schemes:
        return AuthConfig(type="none")

    scheme = _as_dict(next(iter(schemes.values())))
    if scheme.get("type") == "http":
        if scheme.get("scheme") == "bearer":
            return AuthConfig(type="bearer", credentials=AuthCredentials(token=""))
        if scheme.get("scheme") == "basic":
            return AuthConfig(type="basic", credentials=AuthCredentials(username="", password=""))
    elif scheme.get("type") == "apiKey":
        return AuthConfig(
            type="api_key",
            credentials=AuthCredentials(
                api_key="",
                api_key_header=str(scheme.get("name") or "X-API-Key"),
                api_key_location="query" if scheme.get("in") == "query" else "header",
            ),
        )
    return AuthConfig(type="none")


def parsed_openapi_to_config(parsed: ParsedOpenAPI) -> dict[str, Any]:
    """Creation payload for an API source; id, status, categories and audit fields are left to the registry."""
    out: dict[str, Any] = {
        "name": parsed.name,
        "description": parsed.description,
        "endpoint": parsed.endpoint,
        "method": parsed.method,
        "responseFormat": "json",
        "authentication": parsed.authentication.to_dict(),
        "parameters": [p.to_dict() for p in parsed.parameters],
        "responseStructure": parsed.response_structure.to_dict(),
        "openApiSpec": parsed.original_spec,
        "configMethod": "openapi",
    }
    if parsed.sample_response is not None:
        out["sampleResponse"] = parsed.sample_response
    return out
