from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings
from .routers import data_sources
from .services.data_sources.api_caller import ApiCaller
from .services.data_sources.cache import InMemoryQueryCache, QueryCache
from .services.data_sources.credentials import AesGcmCredentialProvider
from .services.data_sources.query_service import DataSourceQueryService
from .services.data_sources.registry import InMemoryDataSourceRegistry, load_sources_file


logger = logging.getLogger(__name__)


def create_app(
    settings: Settings,
    *,
    registry: InMemoryDataSourceRegistry | None = None,
    cache: QueryCache | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    registry = registry or InMemoryDataSourceRegistry()
    credentials = AesGcmCredentialProvider(settings.encryption_key)
    tool_config = settings.tool_config()
    api_caller = ApiCaller(
        tool_config=tool_config,
        cache=cache if cache is not None else InMemoryQueryCache(),
        credentials=credentials,
        transport=transport,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ANN001
        settings.csv_storage_dir.mkdir(parents=True, exist_ok=True)
        if settings.sources_file is not None:
            if settings.sources_file.exists():
                for source in load_sources_file(settings.sources_file):
                    await registry.save(source)
                logger.info("loaded data sources from %s", settings.sources_file)
            else:
                logger.warning("sources file not found: %s", settings.sources_file)
        if not credentials.configured:
            logger.warning("DATA_SOURCE_ENCRYPTION_KEY not set; stored credentials are used as-is")
        yield

    app = FastAPI(title="Policy Assistant Data API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.query_service = DataSourceQueryService(registry=registry, api_caller=api_caller, tool_config=tool_config)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(data_sources.router, prefix="/api")

    @app.get("/health")
    def health() -> dict:
        return {"ok": True}

    return app
