"""Data source query engine.

Uniform querying over uploaded CSV files and described HTTP APIs:
- Parse and type tabular files, import OpenAPI descriptions
- Call remote endpoints with auth, deadline and cache
- Filter, sort, aggregate and suggest a chart for the result
"""

from .api_caller import ApiCaller
from .cache import InMemoryQueryCache
from .credentials import AesGcmCredentialProvider, NoopCredentialProvider
from .query_service import DataSourceQuery, DataSourceQueryService, RequestContext
from .registry import InMemoryDataSourceRegistry
from .tool_config import DataSourceToolConfig

__all__ = [
    "ApiCaller",
    "InMemoryQueryCache",
    "AesGcmCredentialProvider",
    "NoopCredentialProvider",
    "DataSourceQuery",
    "DataSourceQueryService",
    "RequestContext",
    "InMemoryDataSourceRegistry",
    "DataSourceToolConfig",
]
