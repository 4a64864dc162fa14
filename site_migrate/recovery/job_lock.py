"""Process-wide mutual exclusion for destructive migration jobs."""

import json
import os
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

import redis.asyncio as redis

from .._utils import logger, save_json, PathLike
from ..config import LockConfig
from ..errors import ConflictError

DEFAULT_TTL = 900
MIN_TTL = 60


class JobLock(ABC):
    """At most one unexpired lock exists at a time.

    Acquisition clears an expired lock first and fails fast with
    ConflictError while a live lock is held.
    """

    def __init__(self, ttl: int = DEFAULT_TTL, min_ttl: int = MIN_TTL):
        self.ttl = ttl
        self.min_ttl = min_ttl

    def _effective_ttl(self, ttl: Optional[int]) -> int:
        return max(self.min_ttl, int(ttl if ttl is not None else self.ttl))

    def _new_record(self, context: str, ttl: int, user_id: Optional[Any]) -> Dict[str, Any]:
        now = int(time.time())
        return {
            "id": str(uuid.uuid4()),
            "context": context,
            "created_at": now,
            "last_update": now,
            "expires_at": now + ttl,
            "user_id": user_id,
        }

    @staticmethod
    def is_expired(record: Optional[Dict[str, Any]], now: Optional[float] = None) -> bool:
        if not record:
            return True
        now = time.time() if now is None else now
        expires_at = record.get("expires_at")
        return not expires_at or expires_at <= now

    @abstractmethod
    async def acquire(self, context: str, ttl: Optional[int] = None, user_id: Optional[Any] = None) -> str:
        """Take the lock and return a fresh lock id.

        Raises:
            ConflictError: A live lock is already held
        """
        pass

    @abstractmethod
    async def release(self, lock_id: str) -> bool:
        """Release the lock if lock_id still holds it."""
        pass

    @abstractmethod
    async def touch(self, lock_id: str, ttl: Optional[int] = None) -> bool:
        """Extend the holder's lock; False if lock_id no longer holds it."""
        pass

    @abstractmethod
    async def current(self) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def force_release(self) -> bool:
        pass

    @abstractmethod
    async def release_if_expired(self) -> bool:
        pass

    @asynccontextmanager
    async def hold(self, context: str, ttl: Optional[int] = None) -> AsyncIterator[str]:
        lock_id = await self.acquire(context, ttl)
        try:
            yield lock_id
        finally:
            await self.release(lock_id)


class FileJobLock(JobLock):
    """Lock record hard-linked into place, so the lock file never appears empty.

    An unreadable lock file younger than ``min_ttl`` is treated as a live lock
    held by a writer that has not finished; older ones count as expired.
    """

    def __init__(self, directory: PathLike, ttl: int = DEFAULT_TTL, min_ttl: int = MIN_TTL,
                 filename: str = "job.lock"):
        super().__init__(ttl, min_ttl)
        self.path = Path(directory) / filename
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _read(self) -> Optional[Dict[str, Any]]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except ValueError:
            return self._unreadable_record()
        return data if isinstance(data, dict) else self._unreadable_record()

    def _unreadable_record(self) -> Dict[str, Any]:
        try:
            modified = self.path.stat().st_mtime
        except FileNotFoundError:
            return {}
        if modified + self.min_ttl <= time.time():
            return {}
        return {"id": None, "context": "migration", "expires_at": int(modified) + self.min_ttl}

    def _remove(self) -> bool:
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            return False
        return True

    async def acquire(self, context: str, ttl: Optional[int] = None, user_id: Optional[Any] = None) -> str:
        await self.release_if_expired()
        record = self._new_record(context, self._effective_ttl(ttl), user_id)

        tmp_path = self.path.with_name(f".{self.path.name}.{record['id']}")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(record, f)
        try:
            os.link(tmp_path, self.path)
        except FileExistsError:
            current = self._read() or {}
            raise ConflictError(current.get("context") or "migration", current)
        finally:
            os.unlink(tmp_path)

        logger.info(f"Job lock acquired for {context}: {record['id']}")
        return record["id"]

    async def release(self, lock_id: str) -> bool:
        current = self._read()
        if not current or current.get("id") != lock_id:
            return False
        released = self._remove()
        if released:
            logger.info(f"Job lock released: {lock_id}")
        return released

    async def touch(self, lock_id: str, ttl: Optional[int] = None) -> bool:
        current = self._read()
        if not current or current.get("id") != lock_id:
            return False
        now = int(time.time())
        current["last_update"] = now
        current["expires_at"] = now + self._effective_ttl(ttl)
        save_json(current, self.path)
        return True

    async def current(self) -> Optional[Dict[str, Any]]:
        record = self._read()
        if self.is_expired(record):
            return None
        return record

    async def force_release(self) -> bool:
        released = self._remove()
        if released:
            logger.warning("Job lock force-released")
        return released

    async def release_if_expired(self) -> bool:
        record = self._read()
        if record is None or not self.is_expired(record):
            return False
        logger.info(f"Clearing expired job lock: {record.get('id', 'unknown')}")
        return self._remove()


_RELEASE_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if not current then return 0 end
local data = cjson.decode(current)
if data['id'] == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""

_TOUCH_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if not current then return 0 end
local data = cjson.decode(current)
if data['id'] == ARGV[1] then
    redis.call('SET', KEYS[1], ARGV[2], 'EX', tonumber(ARGV[3]))
    return 1
end
return 0
"""


class RedisJobLock(JobLock):
    """Lock record stored under one Redis key with ``SET NX EX``.

    Redis expiry clears abandoned locks; release and touch compare the lock
    id atomically in a script.
    """

    def __init__(self, redis_client: "redis.Redis", ttl: int = DEFAULT_TTL, min_ttl: int = MIN_TTL,
                 key: str = "site_migrate:job_lock"):
        super().__init__(ttl, min_ttl)
        self.redis = redis_client
        self.key = key

    async def acquire(self, context: str, ttl: Optional[int] = None, user_id: Optional[Any] = None) -> str:
        ttl = self._effective_ttl(ttl)
        record = self._new_record(context, ttl, user_id)

        acquired = await self.redis.set(self.key, json.dumps(record), nx=True, ex=ttl)
        if not acquired:
            current = await self.current() or {}
            raise ConflictError(current.get("context") or "migration", current)

        logger.info(f"Job lock acquired for {context}: {record['id']}")
        return record["id"]

    async def release(self, lock_id: str) -> bool:
        released = bool(await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, lock_id))
        if released:
            logger.info(f"Job lock released: {lock_id}")
        return released

    async def touch(self, lock_id: str, ttl: Optional[int] = None) -> bool:
        current = await self.current()
        if not current or current.get("id") != lock_id:
            return False
        ttl = self._effective_ttl(ttl)
        now = int(time.time())
        current["last_update"] = now
        current["expires_at"] = now + ttl
        return bool(await self.redis.eval(_TOUCH_SCRIPT, 1, self.key, lock_id, json.dumps(current), ttl))

    async def current(self) -> Optional[Dict[str, Any]]:
        raw = await self.redis.get(self.key)
        if not raw:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            record = json.loads(raw)
        except ValueError:
            return None
        return None if self.is_expired(record) else record

    async def force_release(self) -> bool:
        released = bool(await self.redis.delete(self.key))
        if released:
            logger.warning("Job lock force-released")
        return released

    async def release_if_expired(self) -> bool:
        # Redis removes the key itself once the TTL passes.
        return False


def create_job_lock(config: LockConfig, redis_client: Optional["redis.Redis"] = None) -> JobLock:
    """Build the configured lock backend."""
    if config.backend == "redis":
        if redis_client is None:
            raise ValueError("Redis job lock requires a redis client")
        return RedisJobLock(redis_client, ttl=config.ttl, min_ttl=config.min_ttl)
    return FileJobLock(config.directory, ttl=config.ttl, min_ttl=config.min_ttl)
