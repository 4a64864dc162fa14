"""Operation history endpoint."""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query

from ...pipeline import PipelineContext
from ..dependencies import get_context, verify_api_key

router = APIRouter(prefix="/history", tags=["history"], dependencies=[Depends(verify_api_key)])


@router.get("")
async def list_history(
    limit: int = Query(default=20, ge=1, le=50),
    context: PipelineContext = Depends(get_context),
) -> List[Dict[str, Any]]:
    """Recent operations, newest first; abandoned runs are reported as failed."""
    return context.history.all(limit)
