from .history import HistoryRepository
from .job_lock import FileJobLock, JobLock, RedisJobLock, create_job_lock
from .snapshots import SnapshotManager, SnapshotMeta

__all__ = [
    "FileJobLock",
    "HistoryRepository",
    "JobLock",
    "RedisJobLock",
    "SnapshotManager",
    "SnapshotMeta",
    "create_job_lock",
]
