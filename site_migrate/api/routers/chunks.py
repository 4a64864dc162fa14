"""Chunked upload and download endpoints."""

import asyncio

from fastapi import APIRouter, BackgroundTasks, Depends

from ...chunking import ChunkTransferService
from ..dependencies import get_chunk_service, verify_api_key
from ..models import (
    CancelResponse,
    ChunkUploadRequest,
    ChunkUploadResponse,
    DownloadChunkResponse,
    DownloadInitResponse,
    UploadInitRequest,
    UploadInitResponse,
)

router = APIRouter(prefix="/chunks", tags=["chunks"], dependencies=[Depends(verify_api_key)])


@router.post("/upload", response_model=UploadInitResponse)
async def init_upload(
    request: UploadInitRequest,
    service: ChunkTransferService = Depends(get_chunk_service),
) -> UploadInitResponse:
    """Start a chunked upload; the response carries the negotiated chunk size."""
    result = service.init_upload(request.total_chunks, checksum=request.checksum, chunk_size=request.chunk_size)
    return UploadInitResponse(**result)


@router.post("/upload/{job_id}", response_model=ChunkUploadResponse)
async def upload_chunk(
    job_id: str,
    request: ChunkUploadRequest,
    service: ChunkTransferService = Depends(get_chunk_service),
) -> ChunkUploadResponse:
    result = await asyncio.to_thread(service.upload_chunk, job_id, request.index, request.chunk)
    return ChunkUploadResponse(**result)


@router.post("/download", response_model=DownloadInitResponse)
async def init_download(
    background_tasks: BackgroundTasks,
    service: ChunkTransferService = Depends(get_chunk_service),
) -> DownloadInitResponse:
    """Create a download job and build the full-site archive in the background."""
    result = service.init_download()
    background_tasks.add_task(service.run_download_export, result["job_id"])
    return DownloadInitResponse(**result)


@router.get("/download/{job_id}/{index}", response_model=DownloadChunkResponse)
async def download_chunk(
    job_id: str,
    index: int,
    service: ChunkTransferService = Depends(get_chunk_service),
) -> DownloadChunkResponse:
    result = await asyncio.to_thread(service.download_chunk, job_id, index)
    return DownloadChunkResponse(**result)


@router.get("/{job_id}")
async def job_status(
    job_id: str,
    service: ChunkTransferService = Depends(get_chunk_service),
) -> dict:
    return service.status(job_id)


@router.delete("/{job_id}", response_model=CancelResponse)
async def cancel_job(
    job_id: str,
    service: ChunkTransferService = Depends(get_chunk_service),
) -> CancelResponse:
    """Cancel a job; a running download export aborts at its next poll."""
    return CancelResponse(**service.cancel(job_id))
