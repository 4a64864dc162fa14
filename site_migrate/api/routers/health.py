"""Health check endpoints."""

import asyncio
import os
from pathlib import Path
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from ...pipeline import PipelineContext
from ..dependencies import get_context, get_redis
from ..models import HealthStatus

router = APIRouter(prefix="/health", tags=["health"])


async def check_storage(context: PipelineContext) -> bool:
    """Check the storage directory is writable."""
    storage = Path(context.config.pipeline.storage_dir)
    return storage.is_dir() and os.access(storage, os.W_OK)


async def check_redis(redis_client) -> Optional[bool]:
    """Check Redis connectivity; None when Redis is not configured."""
    if redis_client is None:
        return None
    try:
        return bool(await redis_client.ping())
    except Exception:
        return False


@router.get("", response_model=HealthStatus)
async def health_check(
    context: PipelineContext = Depends(get_context),
    redis_client=Depends(get_redis),
) -> HealthStatus:
    storage_ok, redis_ok = await asyncio.gather(check_storage(context), check_redis(redis_client))

    checks = [storage_ok] + ([redis_ok] if redis_ok is not None else [])
    if all(checks):
        status = "healthy"
    elif not any(checks):
        status = "unhealthy"
    else:
        status = "degraded"

    return HealthStatus(status=status, storage=storage_ok, redis=redis_ok)


@router.get("/ready")
async def readiness_probe(
    context: PipelineContext = Depends(get_context),
    redis_client=Depends(get_redis),
) -> Dict[str, str]:
    """Kubernetes readiness probe."""
    health = await health_check(context, redis_client)
    if health.status == "unhealthy":
        raise HTTPException(status_code=503, detail="Service not ready")
    return {"status": "ready"}


@router.get("/live")
async def liveness_probe() -> Dict[str, str]:
    """Kubernetes liveness probe."""
    return {"status": "alive"}
