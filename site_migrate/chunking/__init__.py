from .job import ChunkJob, ChunkJobMode, ChunkJobStatus
from .repository import ChunkJobRepository
from .service import ChunkTransferService

__all__ = [
    "ChunkJob",
    "ChunkJobMode",
    "ChunkJobStatus",
    "ChunkJobRepository",
    "ChunkTransferService",
]
