"""
Object storage for raw image bytes, keyed by Image file name.

LocalStorage keeps files under settings.STORAGE_DIR; MemoryStorage keeps
them in a dict and is used for tests and ephemeral deployments.
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, Optional, Tuple

from imagevault.errors import NotFound, StorageError

logger = logging.getLogger(__name__)


def _check_key(key: str) -> str:
    if not key or "/" in key or "\\" in key or key.startswith("."):
        raise StorageError(f"invalid storage key: {key!r}")
    return key


class LocalStorage:
    def __init__(self, base_dir: str):
        self.base = Path(base_dir)
        self.base.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.base / _check_key(key)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path(key).exists)

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as e:
            raise NotFound(f"file {key} not found") from e

    async def put(self, key: str, data: bytes, content_type: str = "") -> None:
        path = self._path(key)
        tmp = path.with_name(path.name + ".part")

        def _write():
            tmp.write_bytes(data)
            tmp.replace(path)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise StorageError(f"store file {key}: {e}") from e
        logger.debug("Stored %s (%d bytes, %s)", key, len(data), content_type or "unknown type")

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._path(key).unlink, True)
        except OSError as e:
            raise StorageError(f"delete file {key}: {e}") from e


class MemoryStorage:
    def __init__(self):
        self.files: Dict[str, Tuple[bytes, str]] = {}

    async def exists(self, key: str) -> bool:
        return _check_key(key) in self.files

    async def get(self, key: str) -> bytes:
        entry = self.files.get(_check_key(key))
        if entry is None:
            raise NotFound(f"file {key} not found")
        return entry[0]

    async def put(self, key: str, data: bytes, content_type: str = "") -> None:
        self.files[_check_key(key)] = (bytes(data), content_type)

    async def delete(self, key: str) -> None:
        self.files.pop(_check_key(key), None)

    def content_type(self, key: str) -> Optional[str]:
        entry = self.files.get(key)
        return entry[1] if entry else None


def build_storage(driver: str, base_dir: str):
    if driver == "memory":
        return MemoryStorage()
    if driver == "local":
        return LocalStorage(base_dir)
    raise ValueError(f"unknown STORAGE_DRIVER: {driver}")
