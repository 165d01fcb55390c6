from __future__ import annotations

import pytest

from policybot_api.services.data_sources.openapi_parser import (
    OpenAPIValidationError,
    parse_openapi_spec,
    parsed_openapi_to_config,
    validate_openapi_spec,
)


PERMITS_SPEC = """
openapi: 3.0.3
info:
  title: City Permits
  description: Building permits issued by the city
servers:
  - url: https://permits.example.test/v1/
paths:
  /permits/{district}:
    parameters:
      - name: district
        in: path
        required: true
        schema: {type: string}
    get:
      parameters:
        - name: status
          in: query
          schema:
            type: string
            enum: [open, closed]
            default: open
        - name: limit
          in: query
          example: 25
          schema: {type: integer}
        - name: session
          in: cookie
          schema: {type: string}
      responses:
        "200":
          description: ok
          content:
            application/json:
              schema:
                type: object
                properties:
                  total: {type: integer}
                  results:
                    type: array
                    items: {$ref: "#/components/schemas/Permit"}
              example:
                total: 1
                results: [{id: 1, issued: "2024-01-02"}]
components:
  securitySchemes:
    key:
      type: apiKey
      in: query
      name: api_key
  schemas:
    Permit:
      type: object
      properties:
        id: {type: integer}
        issued: {type: string, format: date}
        owner: {$ref: "#/components/schemas/Owner"}
    Owner:
      type: object
      properties:
        name: {type: string}
        parent: {$ref: "#/components/schemas/Owner"}
"""


def test_validation_errors_and_warnings() -> None:
    result = validate_openapi_spec({"openapi": "2.0", "info": {}, "paths": {"/x": {"put": {}}}})
    assert result.valid is False
    assert result.errors == [
        "Unsupported OpenAPI version: 2.0. Only OpenAPI 3.x is supported.",
        "Missing info.title - API name is required",
        "Missing servers[0].url - Base URL is required",
        "No GET or POST methods found in paths",
    ]
    assert result.warnings == ["Missing info.description - Consider adding a description"]


def test_validation_of_unparseable_document() -> None:
    result = validate_openapi_spec("openapi: [unclosed")
    assert result.valid is False
    assert result.errors[0].startswith("Invalid YAML:")


def test_missing_version_is_only_a_warning() -> None:
    doc = {"info": {"title": "T", "description": "d"}, "servers": [{"url": "https://x.test"}], "paths": {"/a": {"post": {"responses": {}}}}}
    result = validate_openapi_spec(doc)
    assert result.valid is True
    assert result.warnings == ["Missing openapi version field"]


def test_parse_selects_get_path_and_wrapper_array() -> None:
    parsed = parse_openapi_spec(PERMITS_SPEC)

    assert parsed.name == "City Permits"
    assert parsed.method == "GET"
    assert parsed.path == "/permits/{district}"
    assert parsed.endpoint == "https://permits.example.test/v1/permits/{district}"
    assert parsed.response_structure.json_path == "results"
    assert parsed.response_structure.data_is_array is True
    assert parsed.sample_response == {"total": 1, "results": [{"id": 1, "issued": "2024-01-02"}]}


def test_parse_parameters_combines_path_and_operation_levels() -> None:
    params = {p.name: p for p in parse_openapi_spec(PERMITS_SPEC).parameters}

    assert list(params) == ["district", "status", "limit"]
    assert params["district"].location == "path"
    assert params["district"].required is True
    assert params["status"].allowed_values == ["open", "closed"]
    assert params["status"].default == "open"
    assert params["limit"].type == "integer"
    assert params["limit"].example == 25


def test_parse_resolves_refs_with_bounded_depth() -> None:
    fields = {f.name: f for f in parse_openapi_spec(PERMITS_SPEC).response_structure.fields}

    assert fields["id"].type == "number"
    assert fields["issued"].format == "date"
    owner = fields["owner"]
    assert owner.type == "object"
    assert [f.name for f in owner.nested_fields] == ["name", "parent"]


def test_authentication_mapping() -> None:
    auth = parse_openapi_spec(PERMITS_SPEC).authentication
    assert auth.type == "api_key"
    assert auth.credentials.api_key_header == "api_key"
    assert auth.credentials.api_key_location == "query"

    bearer_doc = {
        "openapi": "3.1.0",
        "info": {"title": "T"},
        "servers": [{"url": "https://x.test"}],
        "paths": {"/items": {"get": {"responses": {}}}},
        "components": {"securitySchemes": {"jwt": {"type": "http", "scheme": "bearer"}}},
    }
    assert parse_openapi_spec(bearer_doc).authentication.type == "bearer"


def test_top_level_array_response() -> None:
    doc = {
        "openapi": "3.0.0",
        "info": {"title": "List"},
        "servers": [{"url": "https://x.test"}],
        "paths": {
            "/things": {
                "get": {
                    "responses": {
                        "200": {
                            "content": {
                                "application/json": {
                                    "schema": {"type": "array", "items": {"type": "object", "properties": {"a": {"type": "string"}}}}
                                }
                            }
                        }
                    }
                }
            }
        },
    }
    structure = parse_openapi_spec(doc).response_structure
    assert structure.json_path == "$"
    assert structure.data_is_array is True
    assert [f.name for f in structure.fields] == ["a"]


def test_parse_rejects_invalid_document() -> None:
    with pytest.raises(OpenAPIValidationError) as exc:
        parse_openapi_spec({"openapi": "3.0.0"})
    assert "Missing info.title - API name is required" in exc.value.errors


def test_config_payload() -> None:
    config = parsed_openapi_to_config(parse_openapi_spec(PERMITS_SPEC))

    assert config["configMethod"] == "openapi"
    assert config["responseFormat"] == "json"
    assert config["authentication"] == {
        "type": "api_key",
        "credentials": {"apiKey": "", "apiKeyHeader": "api_key", "apiKeyLocation": "query"},
    }
    assert config["responseStructure"]["jsonPath"] == "results"
    assert config["parameters"][0] == {
        "name": "district",
        "type": "string",
        "in": "path",
        "description": "",
        "required": True,
    }
    assert "sampleResponse" in config
