"""Export and import pipeline endpoints."""

import shutil
from pathlib import Path

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse
from starlette.status import HTTP_202_ACCEPTED

from ..._utils import logger, generate_token
from ...pipeline import Pipeline, PipelineContext, StatusType, get_status
from ..config import settings
from ..dependencies import get_context, get_export_pipeline, get_import_pipeline, verify_api_key
from ..exceptions import ResourceNotFoundError
from ..models import (
    ConfirmRequest,
    ContinueRequest,
    ExportRequest,
    ImportRequest,
    MessageResponse,
    RunResponse,
    RunStatusResponse,
)

router = APIRouter(prefix="/migrations", tags=["migrations"], dependencies=[Depends(verify_api_key)])


@router.post("/export", response_model=RunResponse)
async def start_export(
    request: ExportRequest,
    pipeline: Pipeline = Depends(get_export_pipeline),
) -> RunResponse:
    """Start a full-site export; later steps continue in the background."""
    params = await pipeline.start(request.model_dump())
    return RunResponse.from_params(params)


@router.post("/import", response_model=RunResponse)
async def start_import(
    request: ImportRequest,
    pipeline: Pipeline = Depends(get_import_pipeline),
) -> RunResponse:
    """Start an import of a completed chunked upload."""
    if not request.chunk_job_id:
        raise HTTPException(status_code=400, detail="chunk_job_id is required")
    params = await pipeline.start(request.model_dump(exclude_none=True))
    return RunResponse.from_params(params)


@router.post("/import/upload", response_model=RunResponse)
async def start_import_upload(
    file: UploadFile = File(...),
    confirmed: bool = Form(False),
    skip_snapshot: bool = Form(False),
    pipeline: Pipeline = Depends(get_import_pipeline),
) -> RunResponse:
    """Start an import of an archive sent as a multipart upload."""
    uploads = Path(settings.working_dir) / "uploads"
    uploads.mkdir(parents=True, exist_ok=True)
    name = Path(file.filename or "upload.wpbkp").name
    upload_path = uploads / f"{generate_token(12)}-{name}"
    with open(upload_path, "wb") as f:
        shutil.copyfileobj(file.file, f)
    logger.info(f"Received archive upload: {name} ({upload_path.stat().st_size:,} bytes)")

    params = await pipeline.start({
        "upload_path": str(upload_path),
        "archive": name,
        "confirmed": confirmed,
        "skip_snapshot": skip_snapshot,
    })
    return RunResponse.from_params(params)


@router.post("/{kind}/continue", response_model=MessageResponse, status_code=HTTP_202_ACCEPTED)
async def continue_run(
    kind: str,
    request: ContinueRequest,
    background_tasks: BackgroundTasks,
    export_pipeline: Pipeline = Depends(get_export_pipeline),
    import_pipeline: Pipeline = Depends(get_import_pipeline),
) -> MessageResponse:
    """Run the next step of a checkpointed run after the response is sent."""
    pipelines = {export_pipeline.kind: export_pipeline, import_pipeline.kind: import_pipeline}
    pipeline = pipelines.get(kind)
    if pipeline is None:
        raise ResourceNotFoundError(f"Unknown pipeline: {kind}")
    background_tasks.add_task(pipeline.resume, request.run_id, request.priority)
    return MessageResponse(message=f"Run {request.run_id} scheduled")


@router.post("/{run_id}/confirm", response_model=RunResponse)
async def confirm_run(
    run_id: str,
    request: ConfirmRequest,
    pipeline: Pipeline = Depends(get_import_pipeline),
) -> RunResponse:
    """Answer the confirmation gate of a halted import."""
    params = await pipeline.confirm(run_id, request.confirmed)
    return RunResponse.from_params(params)


@router.get("/{run_id}/status", response_model=RunStatusResponse)
async def run_status(
    run_id: str,
    context: PipelineContext = Depends(get_context),
) -> RunStatusResponse:
    status = await get_status(context.state, run_id)
    if status is None:
        raise ResourceNotFoundError(f"Run {run_id} not found")
    return RunStatusResponse(run_id=run_id, status=status)


@router.get("/{run_id}/download")
async def download_export(
    run_id: str,
    context: PipelineContext = Depends(get_context),
) -> FileResponse:
    """Download the archive of a finished export."""
    status = await get_status(context.state, run_id)
    archive_path = (status.data.get("archive_path") if status else None) or ""
    if status is None or status.type not in (StatusType.DONE, StatusType.DOWNLOAD) or not Path(archive_path).is_file():
        raise ResourceNotFoundError(f"No archive available for run {run_id}")

    filename = Path(archive_path).name
    return FileResponse(
        path=archive_path,
        media_type="application/octet-stream",
        filename=filename,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
