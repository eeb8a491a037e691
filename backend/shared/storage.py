"""Key-value storage for serialized game records.

Every store is a flat string-keyed map of opaque blobs with a per-key TTL.
Only single-key get/set/delete/exists are offered; callers must not rely
on multi-key atomicity or compare-and-swap.
"""

import asyncio
import contextlib
import sqlite3
import time
from pathlib import Path
from typing import Protocol

import structlog

logger = structlog.get_logger()

CLEANUP_INTERVAL_SECONDS = 300

_DB_FILE_PERMISSIONS = 0o600

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    expires_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_kv_store_expires_at ON kv_store (expires_at);
"""


class StoreUnavailableError(Exception):
    """The backing store could not be read or written."""


class KeyValueStore(Protocol):
    """Protocol for blob persistence with per-key expiry."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def exists(self, key: str) -> bool: ...


class InMemoryStore:
    """Process-local store with lazy and periodic expiry.

    Suitable for a single server process and for tests. Call
    start_cleanup() on app startup and stop_cleanup() on shutdown.
    """

    def __init__(self) -> None:
        self._entries: dict[str, tuple[str, float]] = {}  # key -> (value, expires_at)
        self._cleanup_task: asyncio.Task[None] | None = None

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if time.time() > expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._entries[key] = (value, time.time() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    def cleanup_expired(self) -> int:
        """Remove all expired entries. Return the number removed."""
        now = time.time()
        expired = [key for key, (_, expires_at) in self._entries.items() if now > expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("expired store entries removed", count=len(expired))
        return len(expired)

    def start_cleanup(self) -> None:
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop_cleanup(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None

    async def _cleanup_loop(self) -> None:  # pragma: no cover - long-running background loop
        while True:
            await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
            self.cleanup_expired()


class SqliteStore:
    """SQLite-backed store shared by every server process on one host.

    Each key is one row holding the full blob and its absolute expiry time.
    Expired rows are ignored on read and purged by cleanup_expired().
    """

    def __init__(self, path: str | Path) -> None:
        self._path = str(path)
        self._conn: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreUnavailableError("Store is not connected")
        return self._conn

    def connect(self) -> None:
        """Open the database, apply pragmas, create the schema and restrict file permissions."""
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(self._path, check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")
            self._conn.executescript(_SCHEMA_SQL)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Failed to open store at {self._path}: {exc}") from exc
        if self._path != ":memory:":
            Path(self._path).chmod(_DB_FILE_PERMISSIONS)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    async def get(self, key: str) -> str | None:
        try:
            row = self.connection.execute(
                "SELECT data FROM kv_store WHERE key = ? AND expires_at >= ?",
                (key, time.time()),
            ).fetchone()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(str(exc)) from exc
        return row[0] if row else None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        try:
            self.connection.execute(
                "INSERT INTO kv_store (key, data, expires_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET data = excluded.data, expires_at = excluded.expires_at",
                (key, value, time.time() + ttl_seconds),
            )
            self.connection.commit()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(str(exc)) from exc

    async def delete(self, key: str) -> None:
        try:
            self.connection.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            self.connection.commit()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(str(exc)) from exc

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    def cleanup_expired(self) -> int:
        """Delete expired rows. Return the number removed."""
        cursor = self.connection.execute("DELETE FROM kv_store WHERE expires_at < ?", (time.time(),))
        self.connection.commit()
        if cursor.rowcount:
            logger.info("expired store rows removed", count=cursor.rowcount)
        return cursor.rowcount
