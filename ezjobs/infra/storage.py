"""
File storage used by the PDF and cleanup jobs.

Paths handed to and returned from a Storage are relative to its root and use
forward slashes.
"""

import logging
import os
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Protocol

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)

METADATA_SUFFIX = ".meta.json"


class StorageError(Exception):
    """Raised when a storage operation fails."""


class Storage(Protocol):
    async def save(self, data: bytes, path: str) -> str: ...

    async def read(self, path: str) -> bytes: ...

    async def delete(self, path: str) -> bool: ...

    async def exists(self, path: str) -> bool: ...

    async def copy(self, source: str, destination: str) -> str: ...

    async def move(self, source: str, destination: str) -> str: ...


class LocalStorage:
    """Storage rooted at a directory on the local filesystem."""

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path).resolve()

    def resolve(self, path: str) -> Path:
        """Absolute path for a storage path; refuses paths escaping the root."""
        full_path = (self.base_path / path).resolve()
        if not full_path.is_relative_to(self.base_path):
            raise StorageError(f"Path escapes storage root: {path}")
        return full_path

    def relative(self, full_path: Path) -> str:
        return full_path.relative_to(self.base_path).as_posix()

    async def save(self, data: bytes, path: str) -> str:
        full_path = self.resolve(path)
        await aiofiles.os.makedirs(full_path.parent, exist_ok=True)
        async with aiofiles.open(full_path, mode="wb") as f:
            await f.write(data)
        return self.relative(full_path)

    async def read(self, path: str) -> bytes:
        full_path = self.resolve(path)
        try:
            async with aiofiles.open(full_path, mode="rb") as f:
                return await f.read()
        except FileNotFoundError as e:
            raise StorageError(f"File not found: {path}") from e

    async def delete(self, path: str) -> bool:
        """Delete a file and its metadata sidecar; False when it did not exist."""
        full_path = self.resolve(path)
        try:
            await aiofiles.os.remove(full_path)
        except FileNotFoundError:
            return False

        sidecar = full_path.with_name(full_path.name + METADATA_SUFFIX)
        if await aiofiles.os.path.exists(sidecar):
            await aiofiles.os.remove(sidecar)
        return True

    async def exists(self, path: str) -> bool:
        return await aiofiles.os.path.exists(self.resolve(path))

    async def copy(self, source: str, destination: str) -> str:
        return await self.save(await self.read(source), destination)

    async def move(self, source: str, destination: str) -> str:
        target = self.resolve(destination)
        await aiofiles.os.makedirs(target.parent, exist_ok=True)
        try:
            await aiofiles.os.rename(self.resolve(source), target)
        except FileNotFoundError as e:
            raise StorageError(f"File not found: {source}") from e
        return self.relative(target)

    async def iter_files(self, directory: str) -> AsyncIterator[tuple[str, os.stat_result]]:
        """Yield (relative path, stat) for every file below a directory."""
        root = self.resolve(directory)
        if not await aiofiles.os.path.isdir(root):
            return
        for dirpath, _, filenames in os.walk(root):
            for filename in filenames:
                full_path = Path(dirpath) / filename
                try:
                    stat = await aiofiles.os.stat(full_path)
                except FileNotFoundError:
                    continue
                yield self.relative(full_path), stat
