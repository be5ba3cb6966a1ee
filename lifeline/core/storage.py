"""
Device-local durable key-value stores.

The submission pipeline keeps three pieces of per-device state here:
the pending alert queue, the send history used for rate limiting, and the
last successfully acquired location. Values are JSON-serialisable.

Backends:
    • JsonFileStore — single JSON document on disk, survives restarts
    • MemoryStore   — process-local dict (tests, ephemeral kiosks)
    • RedisStore    — async Redis client (edge gateways with local Redis)

Consistency model is last-writer-wins; no cross-process transactions.

Usage:
    from lifeline.core.storage import build_local_store

    store = build_local_store(settings)
    await store.set("pending_alerts", [...])
    pending = await store.get("pending_alerts", [])
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from lifeline.core.config import Settings

logger = logging.getLogger(__name__)


class LocalStore(Protocol):
    """Async get/set/delete over JSON-serialisable values."""

    async def get(self, key: str, default: Any = None) -> Any:
        ...

    async def set(self, key: str, value: Any) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


class MemoryStore:
    """In-process store. Values are deep-copied through JSON on write."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    async def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value, default=str)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """
    Durable store backed by one JSON file.

    Every write rewrites the whole document to a temporary file and then
    atomically replaces the original, so a crash mid-write leaves the
    previous state intact. File access runs in a worker thread.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Local store %s unreadable (%s), starting empty", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, default=str)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def _set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def _delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    async def get(self, key: str, default: Any = None) -> Any:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
        return data.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            await asyncio.to_thread(self._set, key, value)

    async def delete(self, key: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._delete, key)


class RedisStore:
    """Store backed by redis.asyncio; client created lazily on first use."""

    def __init__(self, url: str, prefix: str = "lifeline:"):
        self.url = url
        self.prefix = prefix
        self._client = None

    async def _get_client(self):
        if self._client is None:
            import redis.asyncio as aioredis
            self._client = aioredis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("Redis connected: %s", self.url)
        return self._client

    async def get(self, key: str, default: Any = None) -> Any:
        client = await self._get_client()
        raw = await client.get(self.prefix + key)
        if raw is None:
            return default
        return json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        client = await self._get_client()
        await client.set(self.prefix + key, json.dumps(value, default=str))

    async def delete(self, key: str) -> None:
        client = await self._get_client()
        await client.delete(self.prefix + key)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Redis connection closed")


def build_local_store(config: Settings, backend: Optional[str] = None) -> LocalStore:
    """Construct the configured local store backend."""
    backend = (backend or config.LOCAL_STORE_BACKEND).lower()
    if backend == "memory":
        return MemoryStore()
    if backend == "redis":
        return RedisStore(config.REDIS_URL, prefix=config.REDIS_KEY_PREFIX)
    if backend == "json":
        return JsonFileStore(config.LOCAL_STORE_PATH)
    raise ValueError(f"Unknown local store backend '{backend}'")
