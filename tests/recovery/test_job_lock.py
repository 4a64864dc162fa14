"""Tests for the file and Redis job lock backends."""

import json
import os
import time
from unittest.mock import AsyncMock

import pytest

from site_migrate.config import LockConfig
from site_migrate.errors import ConflictError
from site_migrate.recovery import FileJobLock, RedisJobLock, create_job_lock


@pytest.fixture
def file_lock(temp_dir):
    return FileJobLock(temp_dir)


class TestFileJobLock:
    @pytest.mark.asyncio
    async def test_single_holder(self, file_lock):
        lock_id = await file_lock.acquire("export", user_id=7)

        with pytest.raises(ConflictError) as exc_info:
            await file_lock.acquire("import")

        assert exc_info.value.context == "export"
        assert exc_info.value.lock["user_id"] == 7
        current = await file_lock.current()
        assert current["id"] == lock_id
        assert current["context"] == "export"

    @pytest.mark.asyncio
    async def test_release_requires_matching_id(self, file_lock):
        lock_id = await file_lock.acquire("export")

        assert await file_lock.release("someone-else") is False
        assert await file_lock.current() is not None
        assert await file_lock.release(lock_id) is True
        assert await file_lock.current() is None

        await file_lock.acquire("import")

    @pytest.mark.asyncio
    async def test_minimum_ttl(self, file_lock):
        await file_lock.acquire("export", ttl=5)

        current = await file_lock.current()

        assert current["expires_at"] - current["created_at"] == 60

    @pytest.mark.asyncio
    async def test_touch_extends_expiry(self, file_lock):
        lock_id = await file_lock.acquire("export", ttl=60)

        assert await file_lock.touch(lock_id, ttl=600) is True
        current = await file_lock.current()
        assert current["expires_at"] >= int(time.time()) + 599
        assert await file_lock.touch("stale-id") is False

    @pytest.mark.asyncio
    async def test_expired_lock_is_replaced(self, file_lock):
        file_lock.path.write_text(json.dumps({
            "id": "old",
            "context": "import",
            "created_at": 1,
            "last_update": 1,
            "expires_at": int(time.time()) - 1,
        }))

        assert await file_lock.current() is None
        lock_id = await file_lock.acquire("export")

        assert lock_id != "old"

    @pytest.mark.asyncio
    async def test_corrupt_record_counts_as_expired(self, file_lock):
        file_lock.path.write_text("{half")
        stale = time.time() - file_lock.min_ttl - 5
        os.utime(file_lock.path, (stale, stale))

        assert await file_lock.release_if_expired() is True
        await file_lock.acquire("export")

    @pytest.mark.asyncio
    async def test_fresh_unreadable_record_is_held(self, file_lock):
        """A lock file still being written blocks other acquirers."""
        os.close(os.open(file_lock.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY))

        assert await file_lock.release_if_expired() is False
        with pytest.raises(ConflictError):
            await file_lock.acquire("import")
        assert file_lock.path.read_bytes() == b""

    @pytest.mark.asyncio
    async def test_acquire_leaves_no_temp_files(self, file_lock):
        await file_lock.acquire("export")
        with pytest.raises(ConflictError):
            await file_lock.acquire("import")

        assert [p.name for p in file_lock.path.parent.iterdir()] == [file_lock.path.name]
        assert json.loads(file_lock.path.read_text())["context"] == "export"

    @pytest.mark.asyncio
    async def test_force_release(self, file_lock):
        await file_lock.acquire("export")

        assert await file_lock.force_release() is True
        assert await file_lock.force_release() is False
        await file_lock.acquire("import")

    @pytest.mark.asyncio
    async def test_hold_releases_on_error(self, file_lock):
        with pytest.raises(RuntimeError):
            async with file_lock.hold("export"):
                raise RuntimeError("boom")

        assert await file_lock.current() is None


class TestRedisJobLock:
    @pytest.fixture
    def redis_client(self):
        client = AsyncMock()
        client.set.return_value = True
        client.eval.return_value = 1
        client.delete.return_value = 1
        client.get.return_value = None
        return client

    @pytest.mark.asyncio
    async def test_acquire_uses_set_nx(self, redis_client):
        lock = RedisJobLock(redis_client, ttl=120)

        lock_id = await lock.acquire("export")

        args, kwargs = redis_client.set.call_args
        assert args[0] == "site_migrate:job_lock"
        assert json.loads(args[1])["id"] == lock_id
        assert kwargs == {"nx": True, "ex": 120}

    @pytest.mark.asyncio
    async def test_conflict(self, redis_client):
        redis_client.set.return_value = None
        redis_client.get.return_value = json.dumps({
            "id": "held",
            "context": "import",
            "expires_at": int(time.time()) + 100,
        }).encode("utf-8")
        lock = RedisJobLock(redis_client)

        with pytest.raises(ConflictError) as exc_info:
            await lock.acquire("export")

        assert exc_info.value.context == "import"

    @pytest.mark.asyncio
    async def test_release_and_touch(self, redis_client):
        lock = RedisJobLock(redis_client)
        redis_client.get.return_value = json.dumps({
            "id": "mine",
            "context": "export",
            "expires_at": int(time.time()) + 100,
        })

        assert await lock.release("mine") is True
        assert redis_client.eval.call_args.args[1:] == (1, "site_migrate:job_lock", "mine")

        assert await lock.touch("mine", ttl=300) is True
        touch_args = redis_client.eval.call_args.args
        assert touch_args[-1] == 300
        assert json.loads(touch_args[-2])["expires_at"] >= int(time.time()) + 299

        assert await lock.touch("other") is False

    @pytest.mark.asyncio
    async def test_expired_record_is_not_current(self, redis_client):
        redis_client.get.return_value = json.dumps({"id": "old", "expires_at": 1})
        lock = RedisJobLock(redis_client)

        assert await lock.current() is None


def test_create_job_lock(temp_dir):
    assert isinstance(create_job_lock(LockConfig(directory=str(temp_dir))), FileJobLock)
    assert isinstance(create_job_lock(LockConfig(backend="redis"), AsyncMock()), RedisJobLock)
    with pytest.raises(ValueError):
        create_job_lock(LockConfig(backend="redis"))
