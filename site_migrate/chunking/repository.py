"""File-backed store of chunk jobs: one JSON side-file plus one data blob per job."""

import json
import os
import re
import time
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .._utils import logger, generate_token, save_json, remove_path, PathLike
from ..config import ChunkConfig
from ..errors import JobNotFoundError
from .job import ChunkJob, ChunkJobMode

JOB_ID_PATTERN = re.compile(r"^[A-Za-z0-9]+$")

META_SUFFIX = ".json"
DATA_SUFFIX = ".part"


class ChunkJobRepository:
    """Create, load, persist and delete chunk jobs.

    Jobs older than the TTL are purged, whatever their state, every time a
    repository is opened.
    """

    def __init__(self, directory: PathLike, ttl: int = 86400, sweep: bool = True):
        self.directory = Path(directory)
        self.ttl = ttl
        self.directory.mkdir(parents=True, exist_ok=True)
        if sweep:
            self.cleanup_expired()

    @classmethod
    def from_config(cls, config: ChunkConfig) -> "ChunkJobRepository":
        return cls(config.directory, ttl=config.job_ttl)

    def meta_path(self, job_id: str) -> Path:
        return self.directory / f"{self._validate_id(job_id)}{META_SUFFIX}"

    def data_path(self, job_id: str) -> Path:
        return self.directory / f"{self._validate_id(job_id)}{DATA_SUFFIX}"

    def exists(self, job_id: str) -> bool:
        try:
            return self.meta_path(job_id).is_file()
        except JobNotFoundError:
            return False

    def create(self, mode: ChunkJobMode, chunk_size: int, **fields) -> ChunkJob:
        job_id = generate_token(20)
        while self.meta_path(job_id).exists():
            job_id = generate_token(20)

        job = ChunkJob(id=job_id, mode=mode, chunk_size=chunk_size, **fields)
        self.save(job)
        logger.info(f"Created {mode.value} chunk job {job_id}")
        return job

    def get(self, job_id: str) -> ChunkJob:
        path = self.meta_path(job_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return ChunkJob.model_validate(json.load(f))
        except FileNotFoundError:
            raise JobNotFoundError(f"Chunk job not found: {job_id}")
        except (ValueError, ValidationError) as e:
            raise JobNotFoundError(f"Chunk job record is unreadable: {job_id}: {e}") from e

    def save(self, job: ChunkJob) -> None:
        save_json(job.model_dump(mode="json"), self.meta_path(job.id))

    def update(self, job: ChunkJob) -> None:
        """Persist an existing job; a job deleted meanwhile stays deleted."""
        if not self.meta_path(job.id).exists():
            raise JobNotFoundError(f"Chunk job not found: {job.id}")
        self.save(job)

    def delete(self, job_id: str) -> bool:
        """Remove side-file and data blob. Returns whether the side-file is gone."""
        meta = self.meta_path(job_id)
        remove_path(meta)
        remove_path(self.data_path(job_id))
        return not meta.exists()

    def list_ids(self) -> List[str]:
        return sorted(path.stem for path in self.directory.glob(f"*{META_SUFFIX}"))

    def cleanup_expired(self, ttl: Optional[int] = None) -> int:
        """Purge jobs older than ttl and orphaned data blobs.

        Returns:
            Number of jobs removed
        """
        ttl = self.ttl if ttl is None else ttl
        now = time.time()
        removed = 0

        for path in self.directory.glob(f"*{META_SUFFIX}"):
            job_id = path.stem
            if not JOB_ID_PATTERN.match(job_id):
                continue
            try:
                job = self.get(job_id)
            except JobNotFoundError:
                self.delete(job_id)
                removed += 1
                continue
            if job.is_expired(ttl, now):
                self.delete(job_id)
                removed += 1

        for path in self.directory.glob(f"*{DATA_SUFFIX}"):
            if path.with_suffix(META_SUFFIX).exists():
                continue
            try:
                if path.stat().st_mtime < now - ttl:
                    os.unlink(path)
            except FileNotFoundError:
                continue

        if removed:
            logger.info(f"Purged {removed} expired chunk job(s)")
        return removed

    @staticmethod
    def _validate_id(job_id: str) -> str:
        if not job_id or not JOB_ID_PATTERN.match(job_id):
            raise JobNotFoundError(f"Invalid chunk job id: {job_id!r}")
        return job_id
