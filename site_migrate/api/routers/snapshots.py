"""Snapshot endpoints."""

import asyncio
from typing import List

from fastapi import APIRouter, Depends

from ...pipeline import Pipeline
from ...recovery import SnapshotManager, SnapshotMeta
from ..dependencies import get_import_pipeline, get_snapshots, verify_api_key
from ..exceptions import ResourceNotFoundError
from ..models import MessageResponse, RunResponse, SnapshotCreateRequest

router = APIRouter(prefix="/snapshots", tags=["snapshots"], dependencies=[Depends(verify_api_key)])


@router.get("", response_model=List[SnapshotMeta])
async def list_snapshots(snapshots: SnapshotManager = Depends(get_snapshots)) -> List[SnapshotMeta]:
    """List snapshots, newest first."""
    return snapshots.all()


@router.post("", response_model=SnapshotMeta)
async def create_snapshot(
    request: SnapshotCreateRequest,
    snapshots: SnapshotManager = Depends(get_snapshots),
) -> SnapshotMeta:
    return await asyncio.to_thread(
        snapshots.create,
        request.label,
        request.include_plugins,
        request.include_themes,
    )


@router.get("/{snapshot_id}", response_model=SnapshotMeta)
async def get_snapshot(snapshot_id: str, snapshots: SnapshotManager = Depends(get_snapshots)) -> SnapshotMeta:
    snapshot = snapshots.get(snapshot_id)
    if snapshot is None:
        raise ResourceNotFoundError(f"Snapshot not found: {snapshot_id}")
    return snapshot


@router.delete("/{snapshot_id}", response_model=MessageResponse)
async def delete_snapshot(snapshot_id: str, snapshots: SnapshotManager = Depends(get_snapshots)) -> MessageResponse:
    snapshots.delete(snapshot_id)
    return MessageResponse(message=f"Snapshot deleted: {snapshot_id}")


@router.post("/{snapshot_id}/restore", response_model=RunResponse)
async def restore_snapshot(
    snapshot_id: str,
    snapshots: SnapshotManager = Depends(get_snapshots),
    pipeline: Pipeline = Depends(get_import_pipeline),
) -> RunResponse:
    """Roll the site back to a snapshot through the import pipeline."""
    params = await pipeline.start(snapshots.restore_params(snapshot_id))
    return RunResponse.from_params(params)
