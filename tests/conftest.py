"""Global pytest configuration and fixtures."""

import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# Import fixtures from the shared base to make them globally available
from tests.base.fixtures import (
    migrate_config,
    sqlite_store,
    temp_dir,
)

# Re-export fixtures for global use
__all__ = [
    "migrate_config",
    "sqlite_store",
    "temp_dir",
]
