"""Contract-based tests for the streaming zip backend."""

import pytest

from site_migrate.archive import StreamingZipBackend
from tests.base.archive_suite import ArchiveBackendContract, BaseArchiveBackendTestSuite


class TestStreamingZipContract(BaseArchiveBackendTestSuite):
    """Pure-Python backend contract tests."""

    @pytest.fixture
    def backend(self):
        return StreamingZipBackend()

    @pytest.fixture
    def contract(self):
        return ArchiveBackendContract(name="streaming", recovers_truncated=True)
