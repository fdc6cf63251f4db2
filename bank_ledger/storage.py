"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values stored as Decimal strings.

Both backends support one write transaction at a time: a transaction holds the
storage lock from begin to commit/rollback, so readers on other threads never
see uncommitted rows.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Tuple, Union
from datetime import datetime, timezone
import sqlite3
import json
import threading
from pathlib import Path
from contextlib import contextmanager


class StorageError(Exception):
    """Raised when a storage backend cannot complete an operation"""
    pass


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
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    @property
    def in_transaction(self) -> bool:
        """Whether the calling thread has an open transaction"""
        return False

    def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass


def _acquire(lock: threading.RLock, timeout: Optional[float]) -> None:
    """Acquire the storage lock or raise StorageError on timeout"""
    acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
    if not acquired:
        raise StorageError(f"Timed out after {timeout}s waiting for storage lock")


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing

    Writes made inside a transaction are recorded in an undo log, so a
    rollback restores exactly the rows that existed before the transaction.
    """

    def __init__(self, lock_timeout: Optional[float] = None):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._local = threading.local()
        self.lock_timeout = lock_timeout

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def _undo_log(self) -> Optional[List[Tuple[str, str, Optional[Dict[str, Any]]]]]:
        return getattr(self._local, 'undo_log', None)

    def _remember(self, table: str, record_id: str) -> None:
        """Record the current version of a row before it changes"""
        undo_log = self._undo_log()
        if undo_log is not None:
            undo_log.append((table, record_id, self._data[table].get(record_id)))

    @property
    def in_transaction(self) -> bool:
        return self._undo_log() is not None

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            self._remember(table, record_id)
            # Deep copy to prevent external mutation
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                # Deep copy to prevent external mutation
                return json.loads(json.dumps(record))
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [json.loads(json.dumps(record)) for record in self._data[table].values()]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            results = []
            for record in self._data[table].values():
                match = True
                for key, value in filters.items():
                    if key not in record or record[key] != value:
                        match = False
                        break
                if match:
                    results.append(json.loads(json.dumps(record)))
            return results

    def begin_transaction(self) -> None:
        """Start a transaction, holding the storage lock until it ends"""
        if self.in_transaction:
            raise StorageError("A transaction is already in progress on this thread")
        _acquire(self._lock, self.lock_timeout)
        self._local.undo_log = []

    def commit(self) -> None:
        """Commit current transaction"""
        if not self.in_transaction:
            return
        self._local.undo_log = None
        self._lock.release()

    def rollback(self) -> None:
        """Rollback current transaction by replaying the undo log backwards"""
        undo_log = self._undo_log()
        if undo_log is None:
            return
        try:
            for table, record_id, previous in reversed(undo_log):
                if previous is None:
                    self._data[table].pop(record_id, None)
                else:
                    self._data[table][record_id] = previous
        finally:
            self._local.undo_log = None
            self._lock.release()

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


@contextmanager
def _sqlite_errors(operation: str):
    """Translate sqlite3 errors into StorageError"""
    try:
        yield
    except sqlite3.Error as e:
        raise StorageError(f"SQLite {operation} failed: {e}") from e


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", lock_timeout: Optional[float] = None):
        self.db_path = str(db_path)
        self.lock_timeout = lock_timeout
        # Autocommit mode; write transactions are opened explicitly with BEGIN IMMEDIATE
        with _sqlite_errors("connect"):
            self._connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                isolation_level=None,
                timeout=lock_timeout if lock_timeout is not None else 5.0
            )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._local = threading.local()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock, _sqlite_errors("configure"):
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
        # Create index on timestamps for better query performance
        self._connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)

    @property
    def in_transaction(self) -> bool:
        return getattr(self._local, 'active', False)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock, _sqlite_errors("save"):
            self._ensure_table(table)

            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            # Keep the original created_at on updates
            self._connection.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """, (record_id, data_json, now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock, _sqlite_errors("load"):
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
        with self._lock, _sqlite_errors("load_all"):
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY created_at, rowid
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock, _sqlite_errors("exists"):
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using JSON field extraction"""
        with self._lock, _sqlite_errors("find"):
            self._ensure_table(table)

            conditions = []
            params = []
            for key, value in filters.items():
                conditions.append("json_extract(data, ?) = ?")
                params.extend([f"$.{key}", value])

            where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
            cursor = self._connection.execute(f"""
                SELECT data FROM {table}
                {where_clause}
                ORDER BY created_at, rowid
            """, params)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def begin_transaction(self) -> None:
        """Start a write transaction, holding the storage lock until it ends"""
        if self.in_transaction:
            raise StorageError("A transaction is already in progress on this thread")
        _acquire(self._lock, self.lock_timeout)
        try:
            with _sqlite_errors("begin"):
                self._connection.execute("BEGIN IMMEDIATE")
        except StorageError:
            self._lock.release()
            raise
        self._local.active = True

    def commit(self) -> None:
        """Commit current transaction"""
        if not self.in_transaction:
            return
        try:
            with _sqlite_errors("commit"):
                self._connection.execute("COMMIT")
        except StorageError:
            with _sqlite_errors("rollback"):
                if self._connection.in_transaction:
                    self._connection.execute("ROLLBACK")
            raise
        finally:
            self._local.active = False
            self._lock.release()

    def rollback(self) -> None:
        """Rollback current transaction"""
        if not self.in_transaction:
            return
        try:
            with _sqlite_errors("rollback"):
                if self._connection.in_transaction:
                    self._connection.execute("ROLLBACK")
        finally:
            self._local.active = False
            self._lock.release()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
