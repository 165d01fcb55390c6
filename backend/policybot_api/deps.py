from __future__ import annotations

from fastapi import Request

from .config import Settings, load_settings
from .services.data_sources.query_service import DataSourceQueryService
from .services.data_sources.registry import InMemoryDataSourceRegistry


def get_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    if isinstance(settings, Settings):
        return settings
    return load_settings()


def get_registry(request: Request) -> InMemoryDataSourceRegistry:
    return request.app.state.registry


def get_query_service(request: Request) -> DataSourceQueryService:
    return request.app.state.query_service
