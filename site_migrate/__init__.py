__version__ = "0.1.0"
__author__ = "mksddn"
__url__ = "https://github.com/mksddn/WP-MksDdn-Migrate-Content"

from .archive import Packer, Extractor
from .chunking import ChunkJob, ChunkJobRepository, ChunkTransferService
from .config import MigrateConfig
from .database import FullDatabaseExporter, FullDatabaseImporter
from .pipeline import Pipeline, build_export_pipeline, build_import_pipeline
from .recovery import FileJobLock, RedisJobLock, SnapshotManager, HistoryRepository

__all__ = [
    "Packer",
    "Extractor",
    "ChunkJob",
    "ChunkJobRepository",
    "ChunkTransferService",
    "MigrateConfig",
    "FullDatabaseExporter",
    "FullDatabaseImporter",
    "Pipeline",
    "build_export_pipeline",
    "build_import_pipeline",
    "FileJobLock",
    "RedisJobLock",
    "SnapshotManager",
    "HistoryRepository",
]
