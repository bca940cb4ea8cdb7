"""Byte-level object storage with generation preconditions.

Objects are replaced whole; there is no native append. A write names the
generation it was based on and fails with ``PreconditionFailedError`` when
another writer got there first.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

import aiosqlite

from yuruppu.errors import (
    PreconditionFailedError,
    StorageReadError,
    StorageTimeoutError,
    StorageWriteError,
)
from yuruppu.storage.database import Database

# Generation of an object that does not exist; writing with it means "create".
MISSING_GENERATION = 0


class ObjectStorage(ABC):
    """Keyed blob store with optimistic concurrency."""

    @abstractmethod
    async def read(self, key: str) -> tuple[bytes | None, int]:
        """Return the object's data and generation, or ``(None, 0)`` if it does not exist."""
        ...

    @abstractmethod
    async def write(
        self,
        key: str,
        data: bytes,
        expected_generation: int,
        content_type: str = "application/octet-stream",
    ) -> int:
        """Replace the object if its generation still matches; return the new generation.

        ``expected_generation == 0`` creates the object and fails if it exists.
        """
        ...


class SQLiteObjectStorage(ObjectStorage):
    """ObjectStorage over the ``objects`` table."""

    def __init__(self, db: Database):
        self._db = db

    async def read(self, key: str) -> tuple[bytes | None, int]:
        try:
            cursor = await self._db.conn.execute(
                "SELECT data, generation FROM objects WHERE key = ?", (key,)
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageReadError(f"failed to read {key}: {e}") from e
        if row is None:
            return None, MISSING_GENERATION
        return bytes(row["data"]), row["generation"]

    async def write(
        self,
        key: str,
        data: bytes,
        expected_generation: int,
        content_type: str = "application/octet-stream",
    ) -> int:
        try:
            if expected_generation == MISSING_GENERATION:
                cursor = await self._db.conn.execute(
                    """INSERT INTO objects (key, data, content_type, generation)
                       VALUES (?, ?, ?, 1)
                       ON CONFLICT(key) DO NOTHING""",
                    (key, data, content_type),
                )
                new_generation = 1
            else:
                cursor = await self._db.conn.execute(
                    """UPDATE objects
                       SET data = ?, content_type = ?, generation = generation + 1,
                           updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
                       WHERE key = ? AND generation = ?""",
                    (data, content_type, key, expected_generation),
                )
                new_generation = expected_generation + 1
            await self._db.conn.commit()
        except aiosqlite.Error as e:
            raise StorageWriteError(f"failed to write {key}: {e}") from e

        if cursor.rowcount == 0:
            raise PreconditionFailedError(key)
        return new_generation


class TimeoutObjectStorage(ObjectStorage):
    """Wraps another ObjectStorage and bounds every operation by ``timeout`` seconds."""

    def __init__(self, inner: ObjectStorage, timeout: float):
        self._inner = inner
        self._timeout = timeout

    async def read(self, key: str) -> tuple[bytes | None, int]:
        try:
            return await asyncio.wait_for(self._inner.read(key), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise StorageTimeoutError(f"read {key} timed out after {self._timeout}s") from e

    async def write(
        self,
        key: str,
        data: bytes,
        expected_generation: int,
        content_type: str = "application/octet-stream",
    ) -> int:
        try:
            return await asyncio.wait_for(
                self._inner.write(key, data, expected_generation, content_type),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise StorageTimeoutError(f"write {key} timed out after {self._timeout}s") from e
