"""Dependency injection for FastAPI."""

import hmac
from typing import TYPE_CHECKING, Optional

from fastapi import Depends, Header, Request

from ..chunking import ChunkTransferService
from ..pipeline import Pipeline, PipelineContext
from ..recovery import SnapshotManager
from .config import settings
from .exceptions import ProviderUnavailableError, UnauthorizedError

if TYPE_CHECKING:
    import redis.asyncio as redis


async def verify_api_key(x_api_key: Optional[str] = Header(default=None)) -> None:
    """Reject requests without the admin key when one is configured."""
    expected = settings.admin_api_key
    if not expected:
        return
    if not x_api_key or not hmac.compare_digest(x_api_key, expected):
        raise UnauthorizedError()


async def get_context(request: Request) -> PipelineContext:
    """Get pipeline context from app state."""
    return request.app.state.context


async def get_export_pipeline(request: Request) -> Pipeline:
    return request.app.state.export_pipeline


async def get_import_pipeline(request: Request) -> Pipeline:
    return request.app.state.import_pipeline


async def get_chunk_service(context: PipelineContext = Depends(get_context)) -> ChunkTransferService:
    if context.chunks is None:
        raise ProviderUnavailableError("Chunk transfer")
    return context.chunks


async def get_snapshots(context: PipelineContext = Depends(get_context)) -> SnapshotManager:
    if context.snapshots is None:
        raise ProviderUnavailableError("Snapshot storage")
    return context.snapshots


async def get_redis(request: Request) -> Optional["redis.Redis"]:
    """Get Redis client from app state if available."""
    return getattr(request.app.state, "redis_client", None)
