"""Chunked upload/download protocol over the job repository."""

import asyncio
import base64
import binascii
import math
import os
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .._utils import logger, compute_checksum, remove_path
from ..config import ChunkConfig
from ..errors import (
    ChunkError,
    ChunkOutOfBoundsError,
    ConflictError,
    IntegrityError,
    InvalidChunkError,
    JobCancelledError,
    JobNotFoundError,
    WriteError,
)
from .job import ChunkJob, ChunkJobMode, ChunkJobStatus
from .repository import ChunkJobRepository

CancelCheck = Callable[[], bool]
DownloadExporter = Callable[[Path, CancelCheck], Any]


class ChunkTransferService:
    """Upload and download large files in fixed-size base64 chunks.

    Download exports run in a worker thread and abort as soon as the job's
    side-file disappears or ``cancel()`` is called in this process.
    """

    def __init__(
        self,
        repository: ChunkJobRepository,
        config: Optional[ChunkConfig] = None,
        exporter: Optional[DownloadExporter] = None,
        job_lock=None,
    ):
        """Initialize service.

        Args:
            repository: Job store
            config: Chunk size bounds
            exporter: Default download exporter ``(output_path, cancel_check)``
            job_lock: JobLock held while the default exporter runs
        """
        self.repository = repository
        self.config = config or ChunkConfig()
        self.exporter = exporter
        self.job_lock = job_lock
        self._job_locks: Dict[str, threading.Lock] = {}
        self._cancel_events: Dict[str, threading.Event] = {}
        self._guard = threading.Lock()

    def _job_mutex(self, job_id: str) -> threading.Lock:
        with self._guard:
            return self._job_locks.setdefault(job_id, threading.Lock())

    def _forget(self, job_id: str) -> None:
        with self._guard:
            self._job_locks.pop(job_id, None)
            self._cancel_events.pop(job_id, None)

    def effective_chunk_size(self, requested: Optional[int]) -> int:
        if requested and self.config.min_chunk_size <= requested <= self.config.max_chunk_size:
            return requested
        return self.config.default_chunk_size

    # Upload

    def init_upload(
        self,
        total_chunks: int,
        checksum: Optional[str] = None,
        chunk_size: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Create an upload job.

        Returns:
            ``job_id`` and the effective ``chunk_size``
        """
        size = self.effective_chunk_size(chunk_size)
        job = self.repository.create(
            ChunkJobMode.UPLOAD,
            chunk_size=size,
            total_chunks=max(1, int(total_chunks or 0)),
            checksum=(checksum or "").strip().lower(),
        )
        return {"job_id": job.id, "chunk_size": size}

    def upload_chunk(self, job_id: str, index: int, chunk: str) -> Dict[str, Any]:
        """Write one base64 chunk at ``index * chunk_size``.

        Raises:
            InvalidChunkError: Bad index or undecodable/oversized chunk
            ChunkOutOfBoundsError: Index beyond ``total_chunks``
            WriteError: The chunk could not be written; retry the same index
            IntegrityError: Assembled upload does not match the supplied checksum
        """
        if index is None or index < 0:
            raise InvalidChunkError(f"Invalid chunk index: {index}")
        if chunk is None:
            raise InvalidChunkError("Missing chunk data.")
        try:
            data = base64.b64decode(chunk, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidChunkError(f"Invalid chunk payload: {e}") from e

        with self._job_mutex(job_id):
            job = self.repository.get(job_id)
            if job.mode != ChunkJobMode.UPLOAD:
                raise InvalidChunkError(f"Job {job_id} is not an upload job")
            if job.total_chunks is not None and index >= job.total_chunks:
                raise ChunkOutOfBoundsError(f"Chunk index {index} out of bounds ({job.total_chunks} chunks)")
            if len(data) > job.chunk_size:
                raise InvalidChunkError(f"Chunk of {len(data)} bytes exceeds chunk size {job.chunk_size}")

            offset = index * job.chunk_size
            path = self.repository.data_path(job_id)
            try:
                fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
                with os.fdopen(fd, "r+b") as f:
                    f.seek(offset)
                    f.write(data)
            except OSError as e:
                raise WriteError(f"Unable to write chunk {index} of job {job_id}: {e}") from e

            job.mark_received(index, offset + len(data))
            if job.completed:
                self._finish_upload(job, path)
            self.repository.update(job)

        logger.debug(f"Chunk {index} written for job {job_id} ({job.received_chunks}/{job.total_chunks})")
        if job.status == ChunkJobStatus.ERROR:
            raise IntegrityError(job.error)

        return {
            "next_index": index + 1,
            "completed": job.completed,
            "received_chunks": job.received_chunks,
        }

    def _finish_upload(self, job: ChunkJob, path: Path) -> None:
        with open(path, "r+b") as f:
            f.truncate(job.size)

        if job.checksum:
            actual = compute_checksum(path)
            if actual != job.checksum:
                job.status = ChunkJobStatus.ERROR
                job.error = f"Upload checksum mismatch: expected {job.checksum}, got {actual}"
                logger.error(f"Chunk job {job.id}: {job.error}")
                return

        job.status = ChunkJobStatus.READY
        logger.info(f"Upload job {job.id} complete: {job.size:,} bytes")

    def assemble_path(self, job_id: str) -> Path:
        """Path of a completed, verified upload."""
        job = self.repository.get(job_id)
        if job.mode != ChunkJobMode.UPLOAD or not job.completed:
            raise ChunkError(f"Upload job {job_id} is not complete")
        if job.status == ChunkJobStatus.ERROR:
            raise IntegrityError(job.error or f"Upload job {job_id} failed verification")
        return self.repository.data_path(job_id)

    # Download

    def init_download(self) -> Dict[str, Any]:
        """Create a download job; the export itself runs via ``run_download_export``."""
        job = self.repository.create(
            ChunkJobMode.DOWNLOAD,
            chunk_size=self.config.default_chunk_size,
            status=ChunkJobStatus.PROCESSING,
        )
        with self._guard:
            self._cancel_events[job.id] = threading.Event()
        return {"job_id": job.id, "status": ChunkJobStatus.PROCESSING.value, "total_chunks": 0}

    def cancel_check_for(self, job_id: str) -> CancelCheck:
        meta_path = self.repository.meta_path(job_id)
        with self._guard:
            event = self._cancel_events.setdefault(job_id, threading.Event())
        return lambda: event.is_set() or not meta_path.exists()

    async def run_download_export(self, job_id: str, exporter: Optional[DownloadExporter] = None) -> None:
        """Produce the download file for a job in a worker thread.

        Never raises: failures are recorded on the job for polling clients.
        The job's cancel event is dropped once the export settles.
        """
        try:
            await self._run_download_export(job_id, exporter)
        finally:
            self._forget(job_id)

    async def _run_download_export(self, job_id: str, exporter: Optional[DownloadExporter]) -> None:
        if not self.repository.exists(job_id):
            logger.info(f"Download job {job_id} cancelled before export started")
            return

        use_lock = exporter is None and self.job_lock is not None
        exporter = exporter or self.exporter
        if exporter is None:
            self._fail_job(job_id, "No exporter configured for downloads")
            return

        lock_id = None
        if use_lock:
            try:
                lock_id = await self.job_lock.acquire("export")
            except ConflictError as e:
                self._fail_job(job_id, str(e))
                return

        try:
            await asyncio.to_thread(self._export_job, job_id, exporter)
        finally:
            if lock_id is not None:
                await self.job_lock.release(lock_id)

    def _export_job(self, job_id: str, exporter: DownloadExporter) -> None:
        output = self.repository.data_path(job_id)
        cancel_check = self.cancel_check_for(job_id)

        try:
            exporter(output, cancel_check)
        except JobCancelledError:
            logger.info(f"Download export cancelled: {job_id}")
            remove_path(output)
            return
        except Exception as e:
            logger.error(f"Download export {job_id} failed: {e}")
            if cancel_check():
                remove_path(output)
            else:
                self._fail_job(job_id, str(e))
            return

        if cancel_check():
            logger.info(f"Download job {job_id} cancelled during export")
            remove_path(output)
            return

        size = output.stat().st_size if output.exists() else 0
        if size == 0:
            logger.warning(f"Download export {job_id} produced no data")
            self.repository.delete(job_id)
            return

        try:
            job = self.repository.get(job_id)
            job.total_chunks = max(1, math.ceil(size / job.chunk_size))
            job.size = size
            job.status = ChunkJobStatus.READY
            self.repository.update(job)
        except JobNotFoundError:
            remove_path(output)
            return
        logger.info(f"Download job {job_id} ready: {size:,} bytes in {job.total_chunks} chunk(s)")

    def _fail_job(self, job_id: str, message: str) -> None:
        try:
            job = self.repository.get(job_id)
        except JobNotFoundError:
            return
        job.status = ChunkJobStatus.ERROR
        job.error = message
        try:
            self.repository.update(job)
        except JobNotFoundError:
            pass

    def download_chunk(self, job_id: str, index: int) -> Dict[str, Any]:
        """Return one base64 chunk; the job is deleted after the final chunk.

        Raises:
            JobCancelledError: The job no longer exists
            ChunkError: Export still running or failed
            ChunkOutOfBoundsError: Index beyond ``total_chunks``
        """
        if not self.repository.exists(job_id):
            raise JobCancelledError("Export job was cancelled.")
        job = self.repository.get(job_id)

        if job.status == ChunkJobStatus.ERROR:
            raise ChunkError(job.error or "Export failed.")
        if job.status != ChunkJobStatus.READY:
            raise ChunkError("Export is not ready yet.")
        if index < 0 or (job.total_chunks and index >= job.total_chunks):
            raise ChunkOutOfBoundsError(f"Chunk index {index} out of bounds ({job.total_chunks} chunks)")

        path = self.repository.data_path(job_id)
        try:
            with open(path, "rb") as f:
                f.seek(index * job.chunk_size)
                data = f.read(job.chunk_size)
        except FileNotFoundError:
            raise JobNotFoundError(f"Job data not found: {job_id}")

        completed = index + 1 >= (job.total_chunks or 0)
        if completed:
            self.repository.delete(job_id)
            self._forget(job_id)
            logger.info(f"Download job {job_id} finished and removed")

        return {
            "chunk": base64.b64encode(data).decode("ascii"),
            "completed": completed,
            "index": index,
            "total_chunks": job.total_chunks,
            "size": job.size,
        }

    # Common

    def cancel(self, job_id: str) -> Dict[str, bool]:
        """Delete the job; any running export observes it and aborts."""
        with self._guard:
            event = self._cancel_events.get(job_id)
        if event is not None:
            event.set()
        try:
            deleted = self.repository.delete(job_id)
        except JobNotFoundError:
            deleted = True
        self._forget(job_id)
        logger.info(f"Chunk job {job_id} cancelled")
        return {"deleted": deleted}

    def status(self, job_id: str) -> Dict[str, Any]:
        return self.repository.get(job_id).model_dump(mode="json")

    def release(self, job_id: str) -> None:
        """Drop a consumed upload job."""
        self.repository.delete(job_id)
        self._forget(job_id)
