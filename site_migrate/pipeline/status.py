"""Status records polled by clients while a pipeline runs."""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .._utils import logger, utc_timestamp
from .state import StateStore

STATUS_TTL = 86400


class StatusType(str, Enum):
    INFO = "info"
    PROGRESS = "progress"
    DOWNLOAD = "download"
    DONE = "done"
    ERROR = "error"


class StatusRecord(BaseModel):
    type: StatusType
    message: str = ""
    title: Optional[str] = None
    percent: Optional[int] = Field(default=None, ge=0, le=100)
    data: Dict[str, Any] = Field(default_factory=dict)
    updated_at: str = Field(default_factory=utc_timestamp)


def status_key(run_id: str) -> str:
    return f"status:{run_id}"


class StatusReporter:
    """Write the latest status record of one run."""

    def __init__(self, state: StateStore, run_id: str):
        self.state = state
        self.run_id = run_id

    async def _write(self, record: StatusRecord) -> StatusRecord:
        await self.state.set(status_key(self.run_id), record.model_dump(mode="json"), ttl=STATUS_TTL)
        return record

    async def info(self, message: str, data: Optional[Dict[str, Any]] = None) -> StatusRecord:
        logger.info(f"[{self.run_id}] {message}")
        return await self._write(StatusRecord(type=StatusType.INFO, message=message, data=data or {}))

    async def progress(self, percent: int, message: str = "") -> StatusRecord:
        percent = max(0, min(100, int(percent)))
        return await self._write(StatusRecord(type=StatusType.PROGRESS, percent=percent, message=message))

    async def download(self, message: str, data: Optional[Dict[str, Any]] = None) -> StatusRecord:
        return await self._write(StatusRecord(type=StatusType.DOWNLOAD, message=message, data=data or {}))

    async def done(self, message: str, data: Optional[Dict[str, Any]] = None) -> StatusRecord:
        logger.info(f"[{self.run_id}] {message}")
        return await self._write(StatusRecord(type=StatusType.DONE, message=message, percent=100, data=data or {}))

    async def error(self, title: str, message: str) -> StatusRecord:
        logger.error(f"[{self.run_id}] {title}: {message}")
        return await self._write(StatusRecord(type=StatusType.ERROR, title=title, message=message))


async def get_status(state: StateStore, run_id: str) -> Optional[StatusRecord]:
    data = await state.get(status_key(run_id))
    return StatusRecord.model_validate(data) if data else None
