# src/storage/kv.py
from __future__ import annotations

import asyncio
import os
import re
import tempfile
from pathlib import Path
from typing import Optional, Protocol

from redis.asyncio import Redis


class KVBackend(Protocol):
    """
    Text key-value persistence. Whole-value overwrite semantics:
    set(key, value) replaces whatever was stored under key.
    """
    async def get(self, key: str) -> Optional[str]: ...
    async def set(self, key: str, value: str) -> None: ...


class MemoryKV:
    """Process-local backend (tests, ephemeral runs)."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value


_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class FileKV:
    """
    One file per key under `directory` (<key>.json).
    Writes go to a temp file in the same directory and are swapped in with
    os.replace so a crash never leaves a half-written value behind.
    Blocking I/O is pushed to a worker thread.
    """

    def __init__(self, directory: str | os.PathLike, suffix: str = ".json"):
        self.directory = Path(directory)
        self.suffix = suffix

    def path_for(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"unsafe store key: {key!r}")
        return self.directory / f"{key}{self.suffix}"

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, self.path_for(key))

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._write, self.path_for(key), value)

    @staticmethod
    def _read(path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    @staticmethod
    def _write(path: Path, value: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except BaseException:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise


class RedisKV:
    """
    Plain GET/SET on a redis.asyncio client. Keys are namespaced:
    {prefix}{key}, e.g. pricewatch:priceAlerts
    """

    def __init__(self, redis: Redis, prefix: str = "pricewatch:"):
        self.redis = redis
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[str]:
        raw = await self.redis.get(self._key(key))
        if raw is None:
            return None
        if isinstance(raw, (bytes, bytearray)):
            return raw.decode("utf-8")
        return str(raw)

    async def set(self, key: str, value: str) -> None:
        await self.redis.set(self._key(key), value)

    async def close(self) -> None:
        await self.redis.aclose()
