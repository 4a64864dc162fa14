"""Checkpoint storage for pipeline params and status records."""

import json
import re
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

import redis.asyncio as redis

from .._utils import logger, save_json, load_json, PathLike
from ..config import PipelineConfig

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class StateStore(ABC):
    """Expiring JSON key/value storage shared by every pipeline worker."""

    def __init__(self, default_ttl: int = 3600):
        self.default_ttl = default_ttl

    @abstractmethod
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def set(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass


class FileStateStore(StateStore):
    """One JSON file per key holding the value and its expiry."""

    def __init__(self, directory: PathLike, default_ttl: int = 3600):
        super().__init__(default_ttl)
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        path = self._path(key)
        try:
            record = load_json(path)
        except FileNotFoundError:
            return None
        except ValueError as e:
            logger.warning(f"Discarding unreadable state {key}: {e}")
            return None

        if record.get("expires_at", 0) <= time.time():
            path.unlink(missing_ok=True)
            return None
        return record.get("value")

    async def set(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None:
        ttl = ttl or self.default_ttl
        save_json({"expires_at": time.time() + ttl, "value": value}, self._path(key))

    async def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class RedisStateStore(StateStore):
    """Values stored with ``SETEX`` under a namespaced key."""

    def __init__(self, redis_client: "redis.Redis", default_ttl: int = 3600, prefix: str = "site_migrate:"):
        super().__init__(default_ttl)
        self.redis = redis_client
        self.prefix = prefix

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        raw = await self.redis.get(f"{self.prefix}{key}")
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Discarding unreadable state {key}")
            return None

    async def set(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None:
        await self.redis.setex(f"{self.prefix}{key}", ttl or self.default_ttl, json.dumps(value, default=str))

    async def delete(self, key: str) -> None:
        await self.redis.delete(f"{self.prefix}{key}")


def create_state_store(config: PipelineConfig, redis_client: Optional["redis.Redis"] = None) -> StateStore:
    if config.state_backend == "redis":
        if redis_client is None:
            raise ValueError("Redis state backend requires a redis client")
        return RedisStateStore(redis_client, default_ttl=config.params_ttl)
    return FileStateStore(config.state_dir, default_ttl=config.params_ttl)
