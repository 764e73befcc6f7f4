"""FastAPI application entry point for the Workflow X-Ray backend.

This module initializes the FastAPI application with all middleware,
routers, and startup wiring configured.

Usage:
    uv run uvicorn main:app --reload
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from analysis_cache import AnalysisCache
from api.routes import (
    router,
    set_decomposition_service,
    set_share_store,
    set_workflow_store,
)
from config import configure_logging, settings
from decompose import DecompositionService
from llm import get_llm_client
from models.database import KeyValueStore, create_key_value_store, get_memory_store
from workflow_store import ShareStore, WorkflowStore

# Configure structured logging
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)


async def _open_store() -> KeyValueStore:
    store = create_key_value_store(settings.database_path)
    try:
        await store.init()
        return store
    except Exception as e:
        # Keep the API available even if persistence initialization fails.
        logger.warning(
            "kv_store_init_failed_falling_back",
            database_path=settings.database_path,
            error=str(e),
        )
    fallback = get_memory_store()
    await fallback.init()
    return fallback


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events.

    Builds the key/value store, analysis cache, workflow store, LLM client
    and decomposition service, and injects them into the router.

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    logger.info(
        "application_starting",
        backend_port=settings.backend_port,
        log_level=settings.log_level,
        use_mock_llm=settings.use_mock_llm,
        cache_enabled=settings.cache_enabled,
    )

    store = await _open_store()
    cache = (
        AnalysisCache(store, ttl_seconds=settings.cache_ttl_seconds)
        if settings.cache_enabled
        else None
    )
    workflow_store = WorkflowStore(store)
    service = DecompositionService(
        get_llm_client(),
        cache=cache,
        workflow_store=workflow_store,
    )

    set_workflow_store(workflow_store, backend=store.backend_name)
    set_share_store(ShareStore(store))
    set_decomposition_service(service)

    app.state.kv_store = store
    app.state.decomposition_service = service

    logger.info("application_started", storage_backend=store.backend_name)

    yield

    logger.info("application_shutdown_complete")


# Create FastAPI application
app = FastAPI(
    title="Workflow X-Ray",
    description="Backend API that decomposes business workflows into step graphs, "
    "scores their health, and lays them out for visualization.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(router, tags=["workflows"])


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Root endpoint pointing at the API documentation."""
    return {
        "message": "Workflow X-Ray API",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.backend_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
