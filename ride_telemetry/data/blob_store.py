"""
Key/value blob stores backing the session store.

The engine only needs three operations on raw bytes. A failed write
must leave the previous value in place.
"""

import asyncio
import logging
import os
import re
from typing import Dict, Optional, Protocol

from ride_telemetry.errors import StorageUnavailable

logger = logging.getLogger('rideTelemetry.blobstore')


class KeyValueBlobStore(Protocol):
    """Async key/value store of byte blobs."""

    async def read(self, key: str) -> Optional[bytes]:
        ...

    async def write(self, key: str, data: bytes) -> None:
        ...

    async def remove(self, key: str) -> None:
        ...


class MemoryBlobStore:
    """In-process blob store. Nothing survives the process."""

    def __init__(self, initial: Optional[Dict[str, bytes]] = None):
        self._blobs: Dict[str, bytes] = dict(initial or {})

    async def read(self, key: str) -> Optional[bytes]:
        return self._blobs.get(key)

    async def write(self, key: str, data: bytes) -> None:
        self._blobs[key] = bytes(data)

    async def remove(self, key: str) -> None:
        self._blobs.pop(key, None)


_KEY_PATTERN = re.compile(r'^[A-Za-z0-9_.-]+$')


class FileBlobStore:
    """
    One file per key inside a directory.

    Writes go to a temporary file that is then renamed over the target,
    so readers see either the old blob or the new one.
    """

    def __init__(self, directory: str):
        self.directory = os.path.expanduser(directory)

    def _path(self, key: str) -> str:
        if not _KEY_PATTERN.match(key) or key in ('.', '..'):
            raise ValueError(f"invalid blob key: {key!r}")
        return os.path.join(self.directory, key + '.json')

    def _read(self, path: str) -> Optional[bytes]:
        try:
            with open(path, 'rb') as f:
                return f.read()
        except FileNotFoundError:
            return None

    def _write(self, path: str, data: bytes):
        os.makedirs(self.directory, exist_ok=True)
        temp_path = path + '.tmp'
        try:
            with open(temp_path, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, path)
        except OSError:
            try:
                if os.path.exists(temp_path):
                    os.remove(temp_path)
            except OSError:
                pass
            raise

    def _remove(self, path: str):
        try:
            os.remove(path)
        except FileNotFoundError:
            pass

    async def read(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            return await asyncio.to_thread(self._read, path)
        except OSError as e:
            logger.warning("Could not read %s: %s", path, e)
            raise StorageUnavailable(f"read failed for {key}: {e}") from e

    async def write(self, key: str, data: bytes) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            logger.warning("Could not write %s: %s", path, e)
            raise StorageUnavailable(f"write failed for {key}: {e}") from e

    async def remove(self, key: str) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(self._remove, path)
        except OSError as e:
            logger.warning("Could not remove %s: %s", path, e)
            raise StorageUnavailable(f"remove failed for {key}: {e}") from e
