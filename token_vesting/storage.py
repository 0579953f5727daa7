"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). Records are JSON documents keyed by id; amounts are
stored as decimal strings so 256-bit integers survive the round trip.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from datetime import datetime, timezone
import sqlite3
import json
import re
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager


_TABLE_NAME = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

# Marker for a record deleted inside an uncommitted transaction
_DELETED = object()


def _check_table(table: str) -> str:
    if not _TABLE_NAME.match(table):
        raise ValueError(f"Invalid table name: {table!r}")
    return table


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        # Python ints are unbounded but JSON consumers are not
        for key, value in result.items():
            if isinstance(value, int) and not isinstance(value, bool):
                result[key] = str(value)
        return result

    def touch(self) -> None:
        """Bump updated_at to now"""
        self.updated_at = datetime.now(timezone.utc)


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def begin_transaction(self) -> None:
        """Start a transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations; nested blocks join the outer one"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except BaseException:
            self.rollback()
            raise


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key not in record or record[key] != value:
            return False
    return True


def _copy(data: Dict[str, Any]) -> Dict[str, Any]:
    return json.loads(json.dumps(data, default=str))


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation

    Writes made inside atomic() are staged in a per-thread overlay and merged
    on commit, so other threads never observe uncommitted records and a
    rollback simply discards the overlay.
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._local = threading.local()

    # Transaction overlay helpers

    def _overlay(self) -> Optional[Dict[str, Dict[str, Any]]]:
        return getattr(self._local, 'overlay', None)

    def _depth(self) -> int:
        return getattr(self._local, 'depth', 0)

    def _view(self, table: str) -> Dict[str, Dict[str, Any]]:
        """Committed records merged with this thread's staged writes"""
        with self._lock:
            merged = dict(self._data.get(table, {}))
        overlay = self._overlay()
        if overlay and table in overlay:
            for record_id, record in overlay[table].items():
                if record is _DELETED:
                    merged.pop(record_id, None)
                else:
                    merged[record_id] = record
        return merged

    def _lookup(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """One record as this thread sees it, without copying the table"""
        overlay = self._overlay()
        if overlay and record_id in overlay.get(table, {}):
            record = overlay[table][record_id]
            return None if record is _DELETED else record
        with self._lock:
            return self._data.get(table, {}).get(record_id)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        _check_table(table)
        record = _copy(data)
        overlay = self._overlay()
        if overlay is not None:
            overlay.setdefault(table, {})[record_id] = record
            return
        with self._lock:
            self._data.setdefault(table, {})[record_id] = record

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        record = self._lookup(_check_table(table), record_id)
        if record is not None:
            return _copy(record)
        return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table in insertion order"""
        return [_copy(record) for record in self._view(_check_table(table)).values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        _check_table(table)
        if self._lookup(table, record_id) is None:
            return False
        overlay = self._overlay()
        if overlay is not None:
            overlay.setdefault(table, {})[record_id] = _DELETED
            return True
        with self._lock:
            self._data.get(table, {}).pop(record_id, None)
        return True

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        return self._lookup(_check_table(table), record_id) is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        return [
            _copy(record) for record in self._view(_check_table(table)).values()
            if _matches(record, filters)
        ]

    def count(self, table: str) -> int:
        """Count records in table"""
        return len(self._view(_check_table(table)))

    def begin_transaction(self) -> None:
        """Start (or join) this thread's transaction"""
        if self._depth() == 0:
            self._local.overlay = {}
        self._local.depth = self._depth() + 1

    def commit(self) -> None:
        """Merge staged writes once the outermost block commits"""
        depth = self._depth()
        if depth == 0:
            return
        self._local.depth = depth - 1
        if depth > 1:
            return

        overlay = self._overlay() or {}
        self._local.overlay = None
        with self._lock:
            for table, records in overlay.items():
                target = self._data.setdefault(table, {})
                for record_id, record in records.items():
                    if record is _DELETED:
                        target.pop(record_id, None)
                    else:
                        target[record_id] = record

    def rollback(self) -> None:
        """Discard everything staged by this thread once the outermost block fails"""
        depth = self._depth()
        if depth == 0:
            return
        self._local.depth = depth - 1
        if depth == 1:
            self._local.overlay = None

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """
    SQLite storage implementation for persistence

    Writes go through one connection whose lock is held from begin to
    commit/rollback. Reads from other threads use their own connection and
    see only committed rows (WAL), so they never wait for a writer. An
    in-process ":memory:" database cannot be shared across connections and
    reads it through the writer connection instead.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # Set isolation_level to 'DEFERRED' to enable manual transaction control
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._owner: Optional[int] = None
        self._known_tables = set()
        self._local = threading.local()
        self._readers: List[sqlite3.Connection] = []
        self._readers_lock = threading.Lock()
        self._shared_reads = self.db_path == ":memory:"

        # Enable WAL mode for better concurrent access
        if not self._shared_reads:
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        _check_table(table)
        if table in self._known_tables:
            return
        with self._lock:
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            if self._depth == 0:
                self._connection.commit()
            self._known_tables.add(table)

    def _maybe_commit(self) -> None:
        if self._depth == 0:
            self._connection.commit()

    def _reader_connection(self) -> sqlite3.Connection:
        connection = getattr(self._local, 'connection', None)
        if connection is None:
            connection = sqlite3.connect(self.db_path, check_same_thread=False)
            connection.row_factory = sqlite3.Row
            self._local.connection = connection
            with self._readers_lock:
                self._readers.append(connection)
        return connection

    @contextmanager
    def _reading(self, table: str):
        """
        Yield a connection to read `table` with, or None if it does not exist

        The thread that owns the open transaction reads through the writer
        connection so it sees its own uncommitted rows.
        """
        _check_table(table)
        if self._shared_reads or (self._depth and self._owner == threading.get_ident()):
            with self._lock:
                self._ensure_table(table)
                yield self._connection
            return

        connection = self._reader_connection()
        row = connection.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
        ).fetchone()
        yield connection if row else None

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or update a record, keeping its original position"""
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            cursor = self._connection.execute(f"""
                UPDATE {table} SET data = ?, updated_at = ? WHERE id = ?
            """, (data_json, now, record_id))
            if cursor.rowcount == 0:
                self._connection.execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                """, (record_id, data_json, now, now))

            self._maybe_commit()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._reading(table) as connection:
            if connection is None:
                return None
            row = connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,)).fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table in insertion order"""
        with self._reading(table) as connection:
            if connection is None:
                return []
            rows = connection.execute(f"""
                SELECT data FROM {table} ORDER BY seq
            """).fetchall()
            return [json.loads(row['data']) for row in rows]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            self._maybe_commit()
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._reading(table) as connection:
            if connection is None:
                return False
            row = connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,)).fetchone()
            return row is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        return [record for record in self.load_all(table) if _matches(record, filters)]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._reading(table) as connection:
            if connection is None:
                return 0
            row = connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """).fetchone()
            return row['count']

    def begin_transaction(self) -> None:
        """Start a database transaction, holding the writer lock"""
        self._lock.acquire()
        if self._depth == 0:
            self._owner = threading.get_ident()
        self._depth += 1

    def commit(self) -> None:
        """Commit once the outermost block finishes"""
        if self._depth == 0:
            return
        try:
            self._depth -= 1
            if self._depth == 0:
                self._owner = None
                self._connection.commit()
        finally:
            self._lock.release()

    def rollback(self) -> None:
        """Rollback the whole transaction"""
        if self._depth == 0:
            return
        try:
            self._depth -= 1
            # Inner blocks re-raise into the outer one, which rolls back
            if self._depth == 0:
                self._owner = None
                self._connection.rollback()
                self._known_tables.clear()
        finally:
            self._lock.release()

    def close(self) -> None:
        """Close the writer and every reader connection"""
        with self._readers_lock:
            for connection in self._readers:
                connection.close()
            self._readers.clear()
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a URL

    Supported forms: "memory://", "sqlite:///relative/or/absolute.db",
    "sqlite:///:memory:".
    """
    if database_url in ("memory://", "memory", ""):
        return InMemoryStorage()
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):] or ":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
