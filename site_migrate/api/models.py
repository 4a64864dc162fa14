"""Pydantic models for API requests and responses."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..pipeline import StatusRecord


class UploadInitRequest(BaseModel):
    total_chunks: int = Field(..., gt=0)
    checksum: Optional[str] = Field(default=None, pattern=r"^[A-Fa-f0-9]{64}$")
    chunk_size: Optional[int] = Field(default=None, gt=0)


class UploadInitResponse(BaseModel):
    job_id: str
    chunk_size: int


class ChunkUploadRequest(BaseModel):
    index: int = Field(..., ge=0)
    chunk: str = Field(..., description="Base64-encoded chunk bytes")


class ChunkUploadResponse(BaseModel):
    next_index: int
    completed: bool
    received_chunks: int


class DownloadInitResponse(BaseModel):
    job_id: str
    status: str
    total_chunks: int = 0


class DownloadChunkResponse(BaseModel):
    chunk: str
    completed: bool
    index: int
    total_chunks: Optional[int] = None
    size: int = 0


class CancelResponse(BaseModel):
    deleted: bool


class ExportRequest(BaseModel):
    include_plugins: bool = False
    include_themes: bool = False


class ImportRequest(BaseModel):
    chunk_job_id: Optional[str] = Field(default=None, pattern=r"^[A-Za-z0-9]+$")
    archive: Optional[str] = Field(default=None, description="Original archive file name")
    confirmed: bool = False
    skip_snapshot: bool = False


class ContinueRequest(BaseModel):
    run_id: str
    priority: Optional[int] = None


class ConfirmRequest(BaseModel):
    confirmed: bool = True


class RunResponse(BaseModel):
    run_id: str
    kind: str
    priority: Optional[int] = None
    completed: bool = False
    requires_confirmation: bool = False
    confirmation: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[Dict[str, Any]] = None
    result: Optional[Dict[str, Any]] = None

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "RunResponse":
        return cls(
            run_id=params["run_id"],
            kind=params.get("kind", ""),
            priority=params.get("priority"),
            completed=bool(params.get("completed")),
            requires_confirmation=bool(params.get("requires_confirmation")),
            confirmation=params.get("confirmation") or {},
            error=params.get("error"),
            result=params.get("result"),
        )


class RunStatusResponse(BaseModel):
    run_id: str
    status: StatusRecord


class SnapshotCreateRequest(BaseModel):
    label: str = "manual"
    include_plugins: bool = False
    include_themes: bool = False


class LockStatus(BaseModel):
    locked: bool
    lock: Optional[Dict[str, Any]] = None


class HealthStatus(BaseModel):
    status: str  # "healthy", "degraded", "unhealthy"
    storage: bool
    redis: Optional[bool] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MessageResponse(BaseModel):
    message: str
