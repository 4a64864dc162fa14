"""Base test suites and fixtures."""

from .archive_suite import ArchiveBackendContract, BaseArchiveBackendTestSuite
from .fixtures import (
    InMemoryContentProvider,
    InMemoryMediaProvider,
    make_config,
    migrate_config,
    seed_site,
    sqlite_store,
    temp_dir,
)

__all__ = [
    "ArchiveBackendContract",
    "BaseArchiveBackendTestSuite",
    "InMemoryContentProvider",
    "InMemoryMediaProvider",
    "make_config",
    "migrate_config",
    "seed_site",
    "sqlite_store",
    "temp_dir",
]
