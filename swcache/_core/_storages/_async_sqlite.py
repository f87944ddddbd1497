from __future__ import annotations

import logging
import time
import uuid
from pathlib import Path
from typing import List, Optional, Union

import anysqlite

from swcache._core._storages._async_base import AsyncBaseCache, AsyncBaseCacheStorage, AsyncBaseSyncQueue
from swcache._core._storages._packing import pack, unpack
from swcache._core.models import Entry, EntryMeta, QueuedRequest, Request, Response
from swcache._synchronization import AsyncLock
from swcache._utils import ensure_cache_dict, generate_key

logger = logging.getLogger("swcache.storages")


async def _connect(database_path: Path) -> anysqlite.Connection:
    # Create cache directory and resolve full path on first connection
    parent = database_path.parent if database_path.parent != Path(".") else None
    full_path = ensure_cache_dict(parent) / database_path.name
    return await anysqlite.connect(str(full_path))


class AsyncSqliteCache(AsyncBaseCache):
    def __init__(self, storage: "AsyncSqliteCacheStorage", name: str) -> None:
        self._storage = storage
        self.name = name

    async def match(self, request: Request) -> Optional[Response]:
        if request.method.upper() != "GET":
            return None
        connection = await self._storage._ensure_connection()
        cursor = await connection.cursor()
        await cursor.execute(
            "SELECT data FROM entries WHERE cache_name = ? AND key = ?",
            (self.name, generate_key(request)),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return unpack(row[0], kind="entry").to_response()

    async def put(self, request: Request, response: Response) -> None:
        body = await response.aread()
        key = generate_key(request)
        entry = Entry(
            cache_name=self.name,
            key=key,
            request=request,
            response=response,
            body=body,
            meta=EntryMeta(created_at=time.time()),
        )
        connection = await self._storage._ensure_connection()
        async with self._storage._lock:
            cursor = await connection.cursor()
            # Delete first so that an overwritten entry moves to the end of the insertion order
            await cursor.execute("DELETE FROM entries WHERE cache_name = ? AND key = ?", (self.name, key))
            await cursor.execute(
                "INSERT INTO entries (cache_name, key, data, created_at) VALUES (?, ?, ?, ?)",
                (self.name, key, pack(entry, kind="entry"), entry.meta.created_at),
            )
            await connection.commit()

    async def delete(self, request: Request) -> bool:
        key = generate_key(request)
        connection = await self._storage._ensure_connection()
        async with self._storage._lock:
            cursor = await connection.cursor()
            await cursor.execute("SELECT 1 FROM entries WHERE cache_name = ? AND key = ?", (self.name, key))
            if await cursor.fetchone() is None:
                return False
            await cursor.execute("DELETE FROM entries WHERE cache_name = ? AND key = ?", (self.name, key))
            await connection.commit()
        return True

    async def keys(self) -> List[Request]:
        connection = await self._storage._ensure_connection()
        cursor = await connection.cursor()
        await cursor.execute("SELECT data FROM entries WHERE cache_name = ? ORDER BY rowid", (self.name,))
        return [unpack(row[0], kind="entry").request for row in await cursor.fetchall()]


class AsyncSqliteCacheStorage(AsyncBaseCacheStorage):
    """
    Cache storage persisted in a SQLite database.

    Args:
        connection: An already opened connection. When omitted, `database_path` is opened lazily.
        database_path: Database file name; relative names are placed under `.cache/swcache`.
    """

    def __init__(
        self,
        *,
        connection: Optional[anysqlite.Connection] = None,
        database_path: Union[str, Path] = "swcache.db",
    ) -> None:
        self.connection = connection
        self.database_path: Path = database_path if isinstance(database_path, Path) else Path(database_path)
        self._initialized = False
        self._lock = AsyncLock()

    async def _ensure_connection(self) -> anysqlite.Connection:
        """Ensure connection is established and database is initialized."""
        if self.connection is None:
            self.connection = await _connect(self.database_path)
        if not self._initialized:
            await self._initialize_database()
            self._initialized = True
        return self.connection

    async def _initialize_database(self) -> None:
        assert self.connection is not None
        cursor = await self.connection.cursor()

        await cursor.execute("""
            CREATE TABLE IF NOT EXISTS caches (
                name TEXT PRIMARY KEY,
                created_at REAL NOT NULL
            )
        """)

        await cursor.execute("""
            CREATE TABLE IF NOT EXISTS entries (
                cache_name TEXT NOT NULL,
                key TEXT NOT NULL,
                data BLOB NOT NULL,
                created_at REAL NOT NULL
            )
        """)

        await cursor.execute("CREATE UNIQUE INDEX IF NOT EXISTS idx_entries_key ON entries(cache_name, key)")

        await self.connection.commit()

    async def open(self, name: str) -> AsyncSqliteCache:
        connection = await self._ensure_connection()
        async with self._lock:
            cursor = await connection.cursor()
            await cursor.execute(
                "INSERT OR IGNORE INTO caches (name, created_at) VALUES (?, ?)",
                (name, time.time()),
            )
            await connection.commit()
        return AsyncSqliteCache(self, name)

    async def has(self, name: str) -> bool:
        connection = await self._ensure_connection()
        cursor = await connection.cursor()
        await cursor.execute("SELECT 1 FROM caches WHERE name = ?", (name,))
        return await cursor.fetchone() is not None

    async def delete(self, name: str) -> bool:
        if not await self.has(name):
            return False
        connection = await self._ensure_connection()
        async with self._lock:
            cursor = await connection.cursor()
            await cursor.execute("DELETE FROM entries WHERE cache_name = ?", (name,))
            await cursor.execute("DELETE FROM caches WHERE name = ?", (name,))
            await connection.commit()
        logger.debug(f"Deleted cache store {name}")
        return True

    async def keys(self) -> List[str]:
        connection = await self._ensure_connection()
        cursor = await connection.cursor()
        await cursor.execute("SELECT name FROM caches ORDER BY rowid")
        return [row[0] for row in await cursor.fetchall()]

    async def close(self) -> None:
        if self.connection is not None:
            await self.connection.close()
            self.connection = None
            self._initialized = False


class AsyncSqliteSyncQueue(AsyncBaseSyncQueue):
    """
    Background sync queue persisted in a SQLite database.

    It can share a connection with `AsyncSqliteCacheStorage`; the two use separate tables.
    """

    def __init__(
        self,
        *,
        connection: Optional[anysqlite.Connection] = None,
        database_path: Union[str, Path] = "swcache.db",
    ) -> None:
        self.connection = connection
        self.database_path: Path = database_path if isinstance(database_path, Path) else Path(database_path)
        self._initialized = False
        self._lock = AsyncLock()

    async def _ensure_connection(self) -> anysqlite.Connection:
        if self.connection is None:
            self.connection = await _connect(self.database_path)
        if not self._initialized:
            cursor = await self.connection.cursor()
            await cursor.execute("""
                CREATE TABLE IF NOT EXISTS sync_queue (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id BLOB NOT NULL UNIQUE,
                    data BLOB NOT NULL
                )
            """)
            await self.connection.commit()
            self._initialized = True
        return self.connection

    async def push(self, request: Request) -> QueuedRequest:
        body = await request.aread()
        queued = QueuedRequest(request=request, body=body)
        connection = await self._ensure_connection()
        async with self._lock:
            cursor = await connection.cursor()
            await cursor.execute(
                "INSERT INTO sync_queue (id, data) VALUES (?, ?)",
                (queued.id.bytes, pack(queued, kind="queued")),
            )
            await connection.commit()
        return queued

    async def entries(self) -> List[QueuedRequest]:
        connection = await self._ensure_connection()
        cursor = await connection.cursor()
        await cursor.execute("SELECT data FROM sync_queue ORDER BY seq")
        return [unpack(row[0], kind="queued") for row in await cursor.fetchall()]

    async def update(self, queued: QueuedRequest) -> None:
        connection = await self._ensure_connection()
        async with self._lock:
            cursor = await connection.cursor()
            await cursor.execute(
                "UPDATE sync_queue SET data = ? WHERE id = ?",
                (pack(queued, kind="queued"), queued.id.bytes),
            )
            await connection.commit()

    async def remove(self, id: uuid.UUID) -> None:
        connection = await self._ensure_connection()
        async with self._lock:
            cursor = await connection.cursor()
            await cursor.execute("DELETE FROM sync_queue WHERE id = ?", (id.bytes,))
            await connection.commit()

    async def close(self) -> None:
        if self.connection is not None:
            await self.connection.close()
            self.connection = None
            self._initialized = False
