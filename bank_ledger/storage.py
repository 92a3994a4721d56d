"""
Storage Backend Module

Provides the abstract storage interface and implementations for in-memory
(testing and single-process deployments), SQLite and PostgreSQL persistence.

Every backend offers atomic units of work (``atomic()``) and exclusive row
locks scoped to the enclosing unit (``lock_record``). A unit of work belongs
to the thread that opened it; nested ``atomic()`` blocks join the outer unit.
All monetary values are stored as fixed two-decimal strings.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Tuple, Union
from decimal import Decimal
from datetime import datetime, timezone
from enum import Enum
import sqlite3
import json
import threading
from dataclasses import dataclass, fields
from pathlib import Path
from contextlib import contextmanager

from .currency import Money
from .errors import TransientError
from .logging_config import get_logger, log_action


logger = get_logger("bank_ledger.storage")

RowKey = Tuple[str, str]


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, Money):
                value = value.format()
            elif isinstance(value, Decimal):
                value = str(value)
            elif isinstance(value, Enum):
                value = value.value
            result[f.name] = value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        data = dict(data)
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if 'updated_at' in data and isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        return cls(**data)


class UnitOfWork:
    """Writes staged and row locks held by one atomic block"""

    def __init__(self):
        self.writes: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.held_locks: List[RowKey] = []

    def holds(self, key: RowKey) -> bool:
        return key in self.held_locks


class RowLockManager:
    """
    Exclusive per-row locks, acquired by units of work and released when they end.

    A row's lock is kept only while some thread holds or waits for it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[RowKey, threading.Lock] = {}
        self._users: Dict[RowKey, int] = {}

    def acquire(self, key: RowKey, timeout: Optional[float]) -> bool:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            self._users[key] = self._users.get(key, 0) + 1
        acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            with self._guard:
                self._forget(key)
        return acquired

    def release(self, key: RowKey) -> None:
        with self._guard:
            self._locks[key].release()
            self._forget(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _forget(self, key: RowKey) -> None:
        self._users[key] -= 1
        if self._users[key] == 0:
            del self._users[key]
            del self._locks[key]


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    lock_timeout: Optional[float] = None

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

    @abstractmethod
    def begin_transaction(self) -> None:
        """Open a unit of work for the calling thread"""
        pass

    @abstractmethod
    def commit(self) -> None:
        """Commit the calling thread's unit of work and release its locks"""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Discard the calling thread's unit of work and release its locks"""
        pass

    @abstractmethod
    def lock_record(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """
        Acquire an exclusive lock on a row for the rest of the current unit
        of work and return its current data (None if the row does not exist).

        Raises:
            RuntimeError: if called outside a unit of work
            TransientError: if the lock could not be acquired in time
        """
        pass

    def _current_unit(self) -> Optional[UnitOfWork]:
        return getattr(self._local, 'unit', None)

    def _require_unit(self) -> UnitOfWork:
        unit = self._current_unit()
        if unit is None:
            raise RuntimeError("Operation requires an open unit of work (use storage.atomic())")
        return unit

    def in_transaction(self) -> bool:
        """Check whether the calling thread has an open unit of work"""
        return self._current_unit() is not None

    def holds_lock(self, table: str, record_id: str) -> bool:
        """Check whether the calling thread's unit of work holds a row lock"""
        unit = self._current_unit()
        return unit is not None and unit.holds((table, record_id))

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations; joins an already open unit"""
        if self.in_transaction():
            yield
            return

        self.begin_transaction()
        try:
            yield
        except BaseException:
            self.rollback()
            raise
        self.commit()


class InMemoryStorage(StorageInterface):
    """
    In-memory storage with per-row locking.

    Writes made inside a unit of work are staged and become visible to other
    threads only at commit, so disjoint units proceed in parallel.
    """

    def __init__(self, lock_timeout: Optional[float] = 10.0):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._row_locks = RowLockManager()
        self._local = threading.local()
        self.lock_timeout = lock_timeout

    def _committed(self, table: str) -> Dict[str, Dict[str, Any]]:
        if table not in self._data:
            self._data[table] = {}
        return self._data[table]

    def _merged(self, table: str) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            rows = dict(self._committed(table))
        unit = self._current_unit()
        if unit is not None:
            rows.update(unit.writes.get(table, {}))
        return rows

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record (staged until commit inside a unit of work)"""
        # Deep copy to prevent external mutation
        payload = json.loads(json.dumps(data, default=str))
        unit = self._current_unit()
        if unit is not None:
            unit.writes.setdefault(table, {})[record_id] = payload
            return
        with self._lock:
            self._committed(table)[record_id] = payload

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record, seeing the caller's own staged writes"""
        record = self._merged(table).get(record_id)
        if record is not None:
            return json.loads(json.dumps(record))
        return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        return [json.loads(json.dumps(record)) for record in self._merged(table).values()]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        return record_id in self._merged(table)

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        results = []
        for record in self._merged(table).values():
            if all(key in record and record[key] == value for key, value in filters.items()):
                results.append(json.loads(json.dumps(record)))
        return results

    def count(self, table: str) -> int:
        """Count records in table"""
        return len(self._merged(table))

    def begin_transaction(self) -> None:
        """Open a unit of work for the calling thread"""
        self._local.unit = UnitOfWork()

    def commit(self) -> None:
        """Publish staged writes atomically, then release row locks"""
        unit = self._require_unit()
        self._local.unit = None
        try:
            with self._lock:
                for table, rows in unit.writes.items():
                    self._committed(table).update(rows)
        finally:
            self._release(unit)

    def rollback(self) -> None:
        """Discard staged writes and release row locks"""
        unit = self._current_unit()
        if unit is None:
            return
        self._local.unit = None
        self._release(unit)

    def lock_record(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Lock a row for the rest of the unit of work and return its data"""
        unit = self._require_unit()
        key = (table, record_id)
        if not unit.holds(key):
            if not self._row_locks.acquire(key, self.lock_timeout):
                log_action(
                    logger, "error", "Row lock wait timed out",
                    action="lock_record", resource=f"{table}:{record_id}"
                )
                raise TransientError(f"Timed out waiting for lock on {table}:{record_id}")
            unit.held_locks.append(key)
        return self.load(table, record_id)

    def _release(self, unit: UnitOfWork) -> None:
        for key in reversed(unit.held_locks):
            self._row_locks.release(key)
        unit.held_locks.clear()

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """
    SQLite storage for persistence.

    SQLite has a single writer, so a unit of work holds the connection for its
    whole duration (``BEGIN IMMEDIATE``); row locks are implied by that hold.
    Readers on other threads wait for the unit to finish and never observe
    uncommitted state.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:", lock_timeout: Optional[float] = 10.0):
        self.db_path = str(db_path)
        self.lock_timeout = lock_timeout
        # Autocommit mode; units of work issue BEGIN/COMMIT explicitly
        self._connection = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None,
            timeout=lock_timeout if lock_timeout is not None else 5.0
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._local = threading.local()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)

            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            # Use INSERT OR REPLACE to handle updates
            self._connection.execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, data_json, record_id, now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY created_at, rowid
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        results = []
        for record in self.load_all(table):
            if all(key in record and record[key] == value for key, value in filters.items()):
                results.append(record)
        return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def begin_transaction(self) -> None:
        """Take the connection and start an IMMEDIATE transaction"""
        timeout = -1 if self.lock_timeout is None else self.lock_timeout
        if not self._lock.acquire(timeout=timeout):
            raise TransientError("Timed out waiting for the database connection")
        try:
            self._connection.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            self._lock.release()
            log_action(logger, "error", "Could not begin transaction",
                       action="begin_transaction", extra={"error": str(e)}, exc_info=e)
            raise TransientError("Could not begin transaction", cause=e)
        self._local.unit = UnitOfWork()

    def commit(self) -> None:
        """Commit the current transaction"""
        self._require_unit()
        self._local.unit = None
        try:
            self._connection.execute("COMMIT")
        except sqlite3.Error as e:
            try:
                self._connection.execute("ROLLBACK")
            except sqlite3.Error:
                logger.debug("ROLLBACK after failed COMMIT raised", exc_info=True)
            log_action(logger, "error", "Commit failed",
                       action="commit", extra={"error": str(e)}, exc_info=e)
            raise TransientError("Commit failed", cause=e)
        finally:
            self._lock.release()

    def rollback(self) -> None:
        """Rollback the current transaction"""
        if self._current_unit() is None:
            return
        self._local.unit = None
        try:
            self._connection.execute("ROLLBACK")
        except sqlite3.Error:
            # SQLite may already have rolled back after a failed statement
            logger.debug("ROLLBACK raised", exc_info=True)
        finally:
            self._lock.release()

    def lock_record(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """The open transaction already excludes other writers; record the hold"""
        unit = self._require_unit()
        key = (table, record_id)
        if not unit.holds(key):
            unit.held_locks.append(key)
        return self.load(table, record_id)

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class PostgreSQLStorage(StorageInterface):
    """
    PostgreSQL storage with ``SELECT ... FOR UPDATE`` row locks.

    Each thread gets its own connection so units of work on disjoint rows
    run in parallel. Lock waits are bounded by ``SET LOCAL lock_timeout``.
    """

    def __init__(self, connection_string: str, lock_timeout: Optional[float] = 10.0):
        try:
            import psycopg2
            import psycopg2.extras
            self.psycopg2 = psycopg2
            self.extras = psycopg2.extras
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        self.connection_string = connection_string
        self.lock_timeout = lock_timeout
        self._local = threading.local()
        self._lock = threading.Lock()
        self._connections = []
        self._known_tables = set()

    def _connection(self):
        conn = getattr(self._local, 'connection', None)
        if conn is None:
            conn = self.psycopg2.connect(
                self.connection_string,
                cursor_factory=self.extras.RealDictCursor
            )
            conn.autocommit = True  # Units of work issue BEGIN/COMMIT explicitly
            self._local.connection = conn
            with self._lock:
                self._connections.append(conn)
        return conn

    def _execute(self, sql: str, params=None, fetch: str = ""):
        cursor = self._connection().cursor()
        try:
            cursor.execute(sql, params)
            if fetch == "one":
                return cursor.fetchone()
            if fetch == "all":
                return cursor.fetchall()
            return None
        finally:
            cursor.close()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists; DDL runs outside any open unit of work"""
        if table in self._known_tables:
            return
        conn = self.psycopg2.connect(self.connection_string)
        try:
            conn.autocommit = True
            cursor = conn.cursor()
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data JSONB NOT NULL,
                    created_at TIMESTAMP DEFAULT NOW(),
                    updated_at TIMESTAMP DEFAULT NOW()
                )
            """)
            cursor.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
            cursor.close()
        finally:
            conn.close()
        self._known_tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to PostgreSQL using UPSERT"""
        self._ensure_table(table)
        now = datetime.now(timezone.utc)
        self._execute(f"""
            INSERT INTO {table} (id, data, created_at, updated_at)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (id) DO UPDATE SET
                data = EXCLUDED.data,
                updated_at = EXCLUDED.updated_at
        """, (record_id, json.dumps(data, default=str), now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from PostgreSQL"""
        self._ensure_table(table)
        row = self._execute(f"SELECT data FROM {table} WHERE id = %s", (record_id,), fetch="one")
        return dict(row['data']) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        self._ensure_table(table)
        rows = self._execute(f"SELECT data FROM {table} ORDER BY created_at", fetch="all")
        return [dict(row['data']) for row in rows]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        self._ensure_table(table)
        return self._execute(
            f"SELECT 1 FROM {table} WHERE id = %s LIMIT 1", (record_id,), fetch="one"
        ) is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using JSONB operators"""
        self._ensure_table(table)
        if not filters:
            return self.load_all(table)

        conditions = []
        params = []
        for key, value in filters.items():
            conditions.append("data ->> %s = %s")
            params.extend([key, str(value)])

        rows = self._execute(f"""
            SELECT data FROM {table}
            WHERE {" AND ".join(conditions)}
            ORDER BY created_at
        """, params, fetch="all")
        return [dict(row['data']) for row in rows]

    def count(self, table: str) -> int:
        """Count records in table"""
        self._ensure_table(table)
        return self._execute(f"SELECT COUNT(*) AS count FROM {table}", fetch="one")['count']

    def begin_transaction(self) -> None:
        """Start a transaction on this thread's connection"""
        try:
            self._execute("BEGIN")
            if self.lock_timeout is not None:
                self._execute("SET LOCAL lock_timeout = %s", (f"{int(self.lock_timeout * 1000)}ms",))
        except self.psycopg2.OperationalError as e:
            raise TransientError("Could not begin transaction", cause=e)
        self._local.unit = UnitOfWork()

    def commit(self) -> None:
        """Commit current transaction"""
        self._require_unit()
        self._local.unit = None
        try:
            self._execute("COMMIT")
        except self.psycopg2.Error as e:
            self._execute("ROLLBACK")
            log_action(logger, "error", "Commit failed",
                       action="commit", extra={"error": str(e)}, exc_info=e)
            raise TransientError("Commit failed", cause=e)

    def rollback(self) -> None:
        """Rollback current transaction"""
        if self._current_unit() is None:
            return
        self._local.unit = None
        self._execute("ROLLBACK")

    def lock_record(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """SELECT ... FOR UPDATE inside the current transaction"""
        unit = self._require_unit()
        self._ensure_table(table)
        try:
            row = self._execute(
                f"SELECT data FROM {table} WHERE id = %s FOR UPDATE", (record_id,), fetch="one"
            )
        except self.psycopg2.OperationalError as e:
            log_action(logger, "error", "Row lock wait failed",
                       action="lock_record", resource=f"{table}:{record_id}", exc_info=e)
            raise TransientError(f"Could not lock {table}:{record_id}", cause=e)
        key = (table, record_id)
        if not unit.holds(key):
            unit.held_locks.append(key)
        return dict(row['data']) if row else None

    def close(self) -> None:
        """Close all PostgreSQL connections"""
        with self._lock:
            for conn in self._connections:
                try:
                    conn.close()
                except self.psycopg2.Error:
                    pass
            self._connections = []
        self._local = threading.local()


def create_storage(backend: str, database_url: str = "",
                   lock_timeout: Optional[float] = 10.0) -> StorageInterface:
    """Build a storage backend from configuration values"""
    if backend == "memory":
        return InMemoryStorage(lock_timeout=lock_timeout)
    if backend == "sqlite":
        return SQLiteStorage(database_url or ":memory:", lock_timeout=lock_timeout)
    if backend == "postgres":
        return PostgreSQLStorage(database_url, lock_timeout=lock_timeout)
    raise ValueError(f"Unknown storage backend: {backend}")
