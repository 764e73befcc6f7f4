"""Key/value persistence for the analysis cache and workflow store.

This module defines the small get/set/delete contract the rest of the
backend persists through, and two implementations:

    SQLiteKeyValueStore: durable store backed by a single SQLite table via
        aiosqlite. This is the preferred backend.
    MemoryKeyValueStore: process-lifetime dict, used only when no database
        path is configured or the SQLite file cannot be opened. Data is lost
        on restart; this is a degraded mode, not a peer option.

Values are JSON strings, so every read hands the caller a fresh copy that
cannot alias stored state.

Usage:
    >>> from models.database import create_key_value_store
    >>> store = create_key_value_store("./data/xray.db")
    >>> await store.init()
    >>> await store.set("workflow:abc", '{"id": "abc"}', ttl_seconds=3600)
    >>> await store.get("workflow:abc")
    '{"id": "abc"}'
"""

import threading
import time
from pathlib import Path
from typing import Literal, Protocol, runtime_checkable

import aiosqlite
import structlog

logger = structlog.get_logger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Async key/value contract shared by all storage backends."""

    backend_name: Literal["sqlite", "memory"]

    async def init(self) -> None: ...

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def keys(self, prefix: str = "") -> list[str]: ...


def _expires_at(ttl_seconds: int | None, now: float) -> float | None:
    if ttl_seconds is None or ttl_seconds <= 0:
        return None
    return now + ttl_seconds


class SQLiteKeyValueStore:
    """Async SQLite key/value store with optional per-key expiry.

    All public methods except ``init`` catch exceptions internally and log
    them rather than propagating: reads degrade to misses and writes to
    no-ops, so a storage fault never fails an analysis request.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    backend_name: Literal["sqlite", "memory"] = "sqlite"

    def __init__(self, db_path: str) -> None:
        """Initialize the store.

        Args:
            db_path: Filesystem path to the SQLite database file.
                     Parent directories are created automatically on init().
        """
        self.db_path = db_path

    async def init(self) -> None:
        """Create the key/value table if it does not exist."""
        db_dir = Path(self.db_path).parent
        db_dir.mkdir(parents=True, exist_ok=True)

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS kv_entries (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        expires_at REAL,
                        updated_at REAL NOT NULL
                    )
                """)
                await db.commit()
            logger.info("kv_store_initialized", db_path=self.db_path)
        except Exception as e:
            logger.error(
                "kv_store_init_failed",
                db_path=self.db_path,
                error=str(e),
            )
            raise

    async def get(self, key: str) -> str | None:
        """Return the value for ``key``, or None if missing or expired."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    "SELECT value, expires_at FROM kv_entries WHERE key = ?",
                    (key,),
                )
                row = await cursor.fetchone()
                if row is None:
                    return None

                value, expires_at = row
                if expires_at is not None and expires_at <= time.time():
                    await db.execute("DELETE FROM kv_entries WHERE key = ?", (key,))
                    await db.commit()
                    logger.debug("kv_entry_expired", key=key)
                    return None
                return str(value)
        except Exception as e:
            logger.error("kv_store_get_failed", key=key, error=str(e))
            return None

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Insert or replace ``key``.

        Args:
            key: Entry key.
            value: JSON-encoded payload.
            ttl_seconds: Optional lifetime; None or non-positive means no expiry.
        """
        now = time.time()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT OR REPLACE INTO kv_entries (key, value, expires_at, updated_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (key, value, _expires_at(ttl_seconds, now), now),
                )
                await db.commit()
            logger.debug("kv_entry_saved", key=key, ttl_seconds=ttl_seconds)
        except Exception as e:
            logger.error("kv_store_set_failed", key=key, error=str(e))

    async def delete(self, key: str) -> bool:
        """Delete ``key``. Returns True if a row was removed."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute("DELETE FROM kv_entries WHERE key = ?", (key,))
                await db.commit()
                return cursor.rowcount > 0
        except Exception as e:
            logger.error("kv_store_delete_failed", key=key, error=str(e))
            return False

    async def keys(self, prefix: str = "") -> list[str]:
        """List live keys starting with ``prefix``, in key order."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    """
                    SELECT key FROM kv_entries
                    WHERE substr(key, 1, ?) = ?
                      AND (expires_at IS NULL OR expires_at > ?)
                    ORDER BY key
                    """,
                    (len(prefix), prefix, time.time()),
                )
                rows = await cursor.fetchall()
                return [str(row[0]) for row in rows]
        except Exception as e:
            logger.error("kv_store_keys_failed", prefix=prefix, error=str(e))
            return []


class MemoryKeyValueStore:
    """In-process key/value store. Not durable across restarts.

    Concurrent read-modify-write sequences against one key are not atomic;
    callers that need atomic updates must use the SQLite backend.
    """

    backend_name: Literal["sqlite", "memory"] = "memory"

    def __init__(self) -> None:
        self._entries: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.Lock()

    async def init(self) -> None:
        logger.warning(
            "memory_store_in_use",
            detail="analysis cache and workflows will not survive a restart",
        )

    async def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= time.time():
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        with self._lock:
            self._entries[key] = (value, _expires_at(ttl_seconds, time.time()))

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> list[str]:
        now = time.time()
        with self._lock:
            return sorted(
                key
                for key, (_, expires_at) in self._entries.items()
                if key.startswith(prefix) and (expires_at is None or expires_at > now)
            )

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()


# Process-wide memory store, shared by every caller in this process
_memory_store: MemoryKeyValueStore | None = None
_store_lock = threading.Lock()


def get_memory_store() -> MemoryKeyValueStore:
    """Get the process-wide MemoryKeyValueStore.

    Creates the instance on first call (lazy initialization). The store lives
    from first use until process exit. This function is thread-safe.

    Returns:
        The shared MemoryKeyValueStore instance.
    """
    global _memory_store
    if _memory_store is None:
        with _store_lock:
            if _memory_store is None:
                _memory_store = MemoryKeyValueStore()
    return _memory_store


def reset_memory_store() -> None:
    """Discard the process-wide memory store.

    Primarily useful for tests that need a clean state between runs.
    """
    global _memory_store
    with _store_lock:
        _memory_store = None
    logger.debug("memory_store_reset")


def create_key_value_store(database_path: str | None) -> KeyValueStore:
    """Pick a backend for the configured database path.

    Args:
        database_path: SQLite file path. Empty or None selects the
            process-wide memory store.

    Returns:
        An uninitialized store; callers must await ``init()``.
    """
    if database_path:
        return SQLiteKeyValueStore(database_path)
    logger.warning("kv_store_no_database_path", backend="memory")
    return get_memory_store()
