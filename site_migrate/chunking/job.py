"""Chunk transfer job record."""

import time
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ChunkJobMode(str, Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"


class ChunkJobStatus(str, Enum):
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class ChunkJob(BaseModel):
    """Durable record of one chunked upload or download."""

    id: str
    created_at: int = Field(default_factory=lambda: int(time.time()))
    mode: ChunkJobMode = ChunkJobMode.UPLOAD
    chunk_size: int
    total_chunks: Optional[int] = None
    received_chunks: int = 0
    received_indices: List[int] = Field(default_factory=list)
    completed: bool = False
    checksum: str = ""
    size: int = 0
    status: ChunkJobStatus = ChunkJobStatus.PROCESSING
    error: Optional[str] = None

    def mark_received(self, index: int, end_offset: int) -> None:
        """Record a written chunk; repeated indices count once."""
        if index not in self.received_indices:
            self.received_indices.append(index)
            self.received_indices.sort()
        self.received_chunks = len(self.received_indices)
        self.size = max(self.size, end_offset)
        if self.total_chunks is not None and self.received_chunks >= self.total_chunks:
            self.completed = True

    def is_expired(self, ttl: int, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return self.created_at <= 0 or self.created_at < now - ttl
