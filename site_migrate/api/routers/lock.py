"""Job lock inspection endpoints."""

from fastapi import APIRouter, Depends

from ...pipeline import PipelineContext
from ..dependencies import get_context, verify_api_key
from ..models import LockStatus

router = APIRouter(prefix="/lock", tags=["lock"], dependencies=[Depends(verify_api_key)])


@router.get("", response_model=LockStatus)
async def current_lock(context: PipelineContext = Depends(get_context)) -> LockStatus:
    await context.job_lock.release_if_expired()
    lock = await context.job_lock.current()
    return LockStatus(locked=lock is not None, lock=lock)


@router.delete("", response_model=LockStatus)
async def force_release(context: PipelineContext = Depends(get_context)) -> LockStatus:
    """Drop the lock regardless of owner, for runs that died without releasing it."""
    await context.job_lock.force_release()
    return LockStatus(locked=False)
