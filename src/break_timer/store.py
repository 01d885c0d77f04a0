"""Async key/value stores for timer state and settings.

Values are JSON-serializable objects. SqliteStore keeps them in a single
kv_store table; MemoryStore is for embedding and tests.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

logger = logging.getLogger("break_timer.store")


class StorageError(Exception):
    """The storage backend failed to read or write."""


class PersistentStore(ABC):
    """Async key -> value store. At-least-once durability, no transactions."""

    @abstractmethod
    async def get(self, key: str) -> Any:
        """Return the stored value, or None when the key is absent."""

    async def get_many(self, keys: list[str]) -> dict[str, Any]:
        return {key: await self.get(key) for key in keys}

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        ...

    async def set_many(self, items: dict[str, Any]) -> None:
        for key, value in items.items():
            await self.set(key, value)

    @abstractmethod
    async def remove(self, key: str) -> None:
        ...


class MemoryStore(PersistentStore):
    """Dict-backed store. Set `fail = True` to simulate an unavailable backend."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, str] = {}
        self.fail = False
        self.writes = 0
        for key, value in (initial or {}).items():
            self._data[key] = json.dumps(value)

    def _check(self) -> None:
        if self.fail:
            raise StorageError("memory store unavailable")

    async def get(self, key: str) -> Any:
        self._check()
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        self._check()
        self._data[key] = json.dumps(value)
        self.writes += 1

    async def set_many(self, items: dict[str, Any]) -> None:
        self._check()
        for key, value in items.items():
            self._data[key] = json.dumps(value)
        self.writes += 1

    async def remove(self, key: str) -> None:
        self._check()
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, Any]:
        return {key: json.loads(raw) for key, raw in self._data.items()}


class SqliteStore(PersistentStore):
    """aiosqlite-backed store, one row per key."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    async def _connect(self) -> aiosqlite.Connection:
        db = await aiosqlite.connect(self.db_path)
        # Prevent indefinite blocking on lock contention
        await db.execute("PRAGMA busy_timeout=5000")
        return db

    async def init(self) -> None:
        """Create the database file and the kv_store table."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            db = await self._connect()
            try:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS kv_store (
                        key TEXT PRIMARY KEY,
                        value_json TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                """)
                await db.commit()
            finally:
                await db.close()
        except (aiosqlite.Error, OSError) as e:
            raise StorageError(f"cannot initialize {self.db_path}: {e}") from e
        logger.info(f"Store initialized at {self.db_path}")

    async def get(self, key: str) -> Any:
        return (await self.get_many([key]))[key]

    async def get_many(self, keys: list[str]) -> dict[str, Any]:
        result: dict[str, Any] = {key: None for key in keys}
        if not keys:
            return result
        placeholders = ", ".join("?" for _ in keys)
        try:
            db = await self._connect()
            try:
                cursor = await db.execute(
                    f"SELECT key, value_json FROM kv_store WHERE key IN ({placeholders})",
                    tuple(keys),
                )
                rows = await cursor.fetchall()
            finally:
                await db.close()
        except (aiosqlite.Error, OSError) as e:
            raise StorageError(f"read failed: {e}") from e

        for key, raw in rows:
            try:
                result[key] = json.loads(raw)
            except json.JSONDecodeError as e:
                raise StorageError(f"value for {key!r} is not valid JSON") from e
        return result

    async def set(self, key: str, value: Any) -> None:
        await self.set_many({key: value})

    async def set_many(self, items: dict[str, Any]) -> None:
        now = datetime.now().isoformat()
        try:
            rows = [(key, json.dumps(value), now) for key, value in items.items()]
        except (TypeError, ValueError) as e:
            raise StorageError(f"value is not JSON-serializable: {e}") from e
        try:
            db = await self._connect()
            try:
                await db.executemany("""
                    INSERT INTO kv_store (key, value_json, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value_json = excluded.value_json,
                        updated_at = excluded.updated_at
                """, rows)
                await db.commit()
            finally:
                await db.close()
        except (aiosqlite.Error, OSError) as e:
            raise StorageError(f"write failed: {e}") from e

    async def remove(self, key: str) -> None:
        try:
            db = await self._connect()
            try:
                await db.execute("DELETE FROM kv_store WHERE key = ?", (key,))
                await db.commit()
            finally:
                await db.close()
        except (aiosqlite.Error, OSError) as e:
            raise StorageError(f"delete failed: {e}") from e
