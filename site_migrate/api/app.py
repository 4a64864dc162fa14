"""FastAPI application for site-migrate."""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
import logging
import redis.asyncio as redis

from ..config import MigrateConfig
from ..database import SqliteOptionsStore, SqliteRelationalStore
from ..errors import MigrationError
from ..interfaces import ContentProvider, MediaProvider, SiteHooks
from ..pipeline import PipelineContext, build_continuation, build_export_pipeline, build_import_pipeline
from .config import settings
from .exceptions import to_http_exception
from .routers import chunks, health, history, lock, migrations, snapshots

# Configure site-migrate logger with app-managed pattern
# This ensures INFO logs are visible regardless of uvicorn's logging config
import sys
import os

migrate_logger = logging.getLogger("site-migrate")
migrate_logger.setLevel(logging.INFO)

# App-managed pattern: attach our own handler and don't propagate
migrate_logger.propagate = False
migrate_logger.handlers.clear()

console_handler = logging.StreamHandler(sys.stdout)
console_handler.setLevel(logging.INFO)
formatter = logging.Formatter(
    '%(asctime)s - [%(name)s] - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
console_handler.setFormatter(formatter)
migrate_logger.addHandler(console_handler)

# Optional: Allow disabling app-managed logging via env var for production
if os.getenv("DISABLE_APP_LOGGING", "false").lower() == "true":
    migrate_logger.handlers.clear()
    migrate_logger.propagate = True  # Fall back to server-managed pattern

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage the migration engine lifecycle."""
    logger.info("Initializing site-migrate...")

    config: MigrateConfig = getattr(app.state, "migrate_config", None) or MigrateConfig.from_env()

    # Redis backs the job lock and pipeline state when configured
    if settings.redis_url:
        try:
            app.state.redis_client = redis.from_url(
                settings.redis_url,
                password=settings.redis_password,
                encoding="utf-8",
                decode_responses=True
            )
            await app.state.redis_client.ping()
            logger.info("Redis client initialized")
        except Exception as e:
            logger.warning(f"Failed to initialize Redis client: {e}")
            app.state.redis_client = None
    else:
        app.state.redis_client = None
        logger.info("Redis not configured - using file-backed lock and state")

    store = SqliteRelationalStore(config.site.database_path)
    options = SqliteOptionsStore(store, config.site.table_prefix)

    try:
        context = PipelineContext.from_config(
            config,
            store,
            options=options,
            redis_client=app.state.redis_client,
            content=getattr(app.state, "content_provider", None),
            media=getattr(app.state, "media_provider", None),
            hooks=getattr(app.state, "site_hooks", None),
        )
    except Exception as e:
        logger.error(f"Failed to initialize site-migrate: {e}")
        store.close()
        raise

    continuation = build_continuation(config.pipeline, settings.admin_api_key)
    app.state.context = context
    app.state.export_pipeline = build_export_pipeline(context, continuation)
    app.state.import_pipeline = build_import_pipeline(context, continuation)
    logger.info("site-migrate initialized successfully")

    yield

    # Cleanup
    logger.info("Shutting down site-migrate...")
    store.close()
    if app.state.redis_client:
        await app.state.redis_client.close()


async def migration_error_handler(request: Request, exc: MigrationError) -> JSONResponse:
    """Translate engine errors into HTTP responses."""
    http_error = to_http_exception(exc)
    return JSONResponse(status_code=http_error.status_code, content={"detail": http_error.detail})


def create_app(
    config: Optional[MigrateConfig] = None,
    content_provider: Optional[ContentProvider] = None,
    media_provider: Optional[MediaProvider] = None,
    hooks: Optional[SiteHooks] = None,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        config: Engine configuration; read from the environment when omitted
        content_provider: Enables page, post, form and bundle imports
        media_provider: Enables attachment restore for content imports
        hooks: Host callbacks run at the end of an import
    """
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )
    app.state.migrate_config = config
    app.state.content_provider = content_provider
    app.state.media_provider = media_provider
    app.state.site_hooks = hooks

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(MigrationError, migration_error_handler)

    # Include routers (order matters - specific routes first)
    app.include_router(migrations.router, prefix=settings.api_prefix)
    app.include_router(chunks.router, prefix=settings.api_prefix)
    app.include_router(snapshots.router, prefix=settings.api_prefix)
    app.include_router(history.router, prefix=settings.api_prefix)
    app.include_router(lock.router, prefix=settings.api_prefix)
    app.include_router(health.router, prefix=settings.api_prefix)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.api_title,
            "version": settings.api_version,
            "docs": f"{settings.api_prefix}/docs"
        }

    return app


# Create default app instance
app = create_app()
