"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing),
SQLite (default persistence) and PostgreSQL. Records are JSON documents keyed by id;
all monetary values are stored as Decimal strings.

Units of work opened with ``atomic()`` are serialized: the backend holds its
lock (and, for SQLite/PostgreSQL, a database-level write lock) until the unit
commits or rolls back. Nested ``atomic()`` blocks join the outermost unit.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Sequence, Tuple, Union
from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager
import sqlite3
import json
import re
import threading

from .exceptions import PersistenceUnavailableError, UniqueConstraintError
from .logging_config import get_logger


logger = get_logger("bank.storage")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

Filters = Dict[str, Any]
Ranges = Dict[str, Tuple[Optional[Any], Optional[Any]]]
OrderBy = Union[str, Sequence[str], None]


def _check_identifier(name: str) -> str:
    """Table and field names are interpolated into SQL, so only plain identifiers pass"""
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid storage identifier: {name!r}")
    return name


def _order_fields(order_by: OrderBy) -> List[str]:
    if order_by is None:
        return []
    if isinstance(order_by, str):
        return [order_by]
    return list(order_by)


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    def __init__(self):
        self._lock = threading.RLock()
        self._depth = 0
        self._unique_fields: Dict[str, List[str]] = {}

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a record"""
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
    def find(
        self,
        table: str,
        filters: Filters,
        ranges: Optional[Ranges] = None,
        order_by: OrderBy = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Find records matching equality filters and inclusive range bounds

        Args:
            table: Table name
            filters: field -> value equality predicates
            ranges: field -> (low, high) inclusive bounds; either bound may be None
            order_by: Field name or sequence of field names to sort by
            descending: Sort direction for every order_by field
            limit: Maximum number of records to return
        """
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def next_sequence(self, name: str, floor: int = 0) -> int:
        """
        Atomically advance a named counter and return the new value

        The new value is max(current value, floor) + 1, so a counter never
        issues a value at or below ``floor``.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def add_unique_constraint(self, table: str, field: str) -> None:
        """Reject saves that would duplicate ``field`` within ``table``"""
        _check_identifier(table)
        _check_identifier(field)
        with self._lock:
            fields = self._unique_fields.setdefault(table, [])
            if field not in fields:
                fields.append(field)
                self._on_unique_constraint_added(table, field)

    def _on_unique_constraint_added(self, table: str, field: str) -> None:
        """Hook for backends that enforce uniqueness with an index"""
        pass

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic units of work"""
        with self._lock:
            if self._depth:
                # Join the enclosing unit; it decides commit or rollback
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            self._depth = 1
            try:
                self.begin_transaction()
                yield
                self.commit()
            except BaseException:
                self.rollback()
                raise
            finally:
                self._depth = 0


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._sequences: Dict[str, int] = {}
        self._snapshot: Optional[Tuple[str, Dict[str, int]]] = None

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    @staticmethod
    def _copy(data: Any) -> Any:
        # Round-trip through JSON so callers never share mutable state with the store
        return json.loads(json.dumps(data, default=str))

    def _check_unique(self, table: str, record_id: str, record: Dict[str, Any]) -> None:
        for field in self._unique_fields.get(table, []):
            value = record.get(field)
            if value is None:
                continue
            for other_id, other in self._data[table].items():
                if other_id != record_id and other.get(field) == value:
                    raise UniqueConstraintError(table, field, value)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._copy(data)
            self._check_unique(table, record_id, record)
            self._data[table][record_id] = record

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return self._copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [self._copy(record) for record in self._data[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(
        self,
        table: str,
        filters: Filters,
        ranges: Optional[Ranges] = None,
        order_by: OrderBy = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            results = []
            for record in self._data[table].values():
                if not all(key in record and record[key] == value for key, value in filters.items()):
                    continue
                if ranges and not self._in_ranges(record, ranges):
                    continue
                results.append(self._copy(record))

        fields = _order_fields(order_by)
        if fields:
            # None sorts first ascending, last descending
            results.sort(
                key=lambda r: tuple(
                    (r.get(f) is not None, r.get(f) if r.get(f) is not None else "") for f in fields
                ),
                reverse=descending
            )
        if limit is not None:
            results = results[:limit]
        return results

    @staticmethod
    def _in_ranges(record: Dict[str, Any], ranges: Ranges) -> bool:
        for key, (low, high) in ranges.items():
            value = record.get(key)
            if value is None:
                return False
            if low is not None and value < low:
                return False
            if high is not None and value > high:
                return False
        return True

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}

    def next_sequence(self, name: str, floor: int = 0) -> int:
        with self._lock:
            value = max(self._sequences.get(name, 0), floor) + 1
            self._sequences[name] = value
            return value

    def begin_transaction(self) -> None:
        """Snapshot all tables and counters so rollback can restore them"""
        self._snapshot = (json.dumps(self._data), dict(self._sequences))

    def commit(self) -> None:
        self._snapshot = None

    def rollback(self) -> None:
        """Restore the snapshot taken when the unit began"""
        if self._snapshot is not None:
            data_json, sequences = self._snapshot
            self._data = json.loads(data_json)
            self._sequences = sequences
            self._snapshot = None

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", timeout: float = 5.0):
        super().__init__()
        self.db_path = str(db_path)
        self._tables: set = set()
        try:
            # Autocommit mode: units of work are delimited explicitly with BEGIN IMMEDIATE
            self._connection = sqlite3.connect(
                self.db_path, timeout=timeout, check_same_thread=False, isolation_level=None
            )
        except sqlite3.Error as e:
            raise PersistenceUnavailableError(f"Cannot open database {self.db_path}: {e}") from e
        self._connection.row_factory = sqlite3.Row

        with self._guard():
            # Enable WAL mode for better concurrent access
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS _sequences (
                    name TEXT PRIMARY KEY,
                    value INTEGER NOT NULL
                )
            """)

    @contextmanager
    def _guard(self, table: Optional[str] = None):
        """Translate sqlite3 errors into storage errors"""
        if self._connection is None:
            raise PersistenceUnavailableError("Storage is closed")
        try:
            yield
        except sqlite3.IntegrityError as e:
            raise self._unique_error(table, e) from e
        except sqlite3.Error as e:
            raise PersistenceUnavailableError(f"SQLite error: {e}") from e

    def _unique_error(self, table: Optional[str], error: sqlite3.IntegrityError) -> Exception:
        message = str(error)
        for field in self._unique_fields.get(table or "", []):
            if f"ux_{table}_{field}" in message:
                return UniqueConstraintError(table, field, None)
        return UniqueConstraintError(table or "?", "id", None)

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema and unique indexes"""
        if table in self._tables:
            return
        _check_identifier(table)
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
        for field in self._unique_fields.get(table, []):
            self._connection.execute(f"""
                CREATE UNIQUE INDEX IF NOT EXISTS ux_{table}_{field}
                ON {table}(json_extract(data, '$.{field}'))
            """)
        self._tables.add(table)

    def _on_unique_constraint_added(self, table: str, field: str) -> None:
        self._tables.discard(table)
        with self._guard(table):
            self._ensure_table(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock, self._guard(table):
            self._ensure_table(table)

            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            # Upsert on id only; a unique index conflict raises instead of replacing
            self._connection.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """, (record_id, data_json, now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock, self._guard(table):
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
        with self._lock, self._guard(table):
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY created_at, rowid
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._lock, self._guard(table):
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock, self._guard(table):
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(
        self,
        table: str,
        filters: Filters,
        ranges: Optional[Ranges] = None,
        order_by: OrderBy = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Find records using json_extract predicates"""
        conditions = []
        params: List[Any] = []
        for key, value in filters.items():
            conditions.append(f"json_extract(data, '$.{_check_identifier(key)}') IS ?")
            params.append(value)
        for key, (low, high) in (ranges or {}).items():
            column = f"json_extract(data, '$.{_check_identifier(key)}')"
            if low is not None:
                conditions.append(f"{column} >= ?")
                params.append(low)
            if high is not None:
                conditions.append(f"{column} <= ?")
                params.append(high)

        sql = f"SELECT data FROM {_check_identifier(table)}"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)

        direction = "DESC" if descending else "ASC"
        fields = _order_fields(order_by)
        if fields:
            sql += " ORDER BY " + ", ".join(
                f"json_extract(data, '$.{_check_identifier(f)}') {direction}" for f in fields
            )
        else:
            sql += " ORDER BY created_at, rowid"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        with self._lock, self._guard(table):
            self._ensure_table(table)
            cursor = self._connection.execute(sql, params)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock, self._guard(table):
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock, self._guard(table):
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")

    def next_sequence(self, name: str, floor: int = 0) -> int:
        with self.atomic(), self._guard():
            self._connection.execute("""
                INSERT INTO _sequences (name, value) VALUES (?, ?)
                ON CONFLICT(name) DO UPDATE SET value = MAX(value, excluded.value - 1) + 1
            """, (name, floor + 1))
            cursor = self._connection.execute(
                "SELECT value FROM _sequences WHERE name = ?", (name,)
            )
            return cursor.fetchone()['value']

    def begin_transaction(self) -> None:
        """Start a transaction holding the database write lock"""
        with self._guard():
            self._connection.execute("BEGIN IMMEDIATE")

    def commit(self) -> None:
        """Commit current transaction"""
        with self._guard():
            if self._connection.in_transaction:
                self._connection.execute("COMMIT")

    def rollback(self) -> None:
        """Rollback current transaction"""
        # Tables created inside the unit disappear with it
        self._tables.clear()
        with self._guard():
            if self._connection.in_transaction:
                self._connection.execute("ROLLBACK")

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class PostgreSQLStorage(StorageInterface):
    """PostgreSQL storage backend with ACID transaction support"""

    # Key for the transaction-scoped advisory lock that serializes units of work
    ADVISORY_LOCK_KEY = 0x42414E4B

    def __init__(self, connection_string: str):
        super().__init__()
        try:
            import psycopg2
            import psycopg2.extras
            self.psycopg2 = psycopg2
            self.extras = psycopg2.extras
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        self.connection_string = connection_string
        self._connection = None
        self._tables: set = set()
        self._connect()
        with self._cursor() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS _sequences (
                    name TEXT PRIMARY KEY,
                    value BIGINT NOT NULL
                )
            """)

    def _connect(self) -> None:
        """Establish database connection"""
        with self._lock:
            if self._connection:
                try:
                    self._connection.close()
                except self.psycopg2.Error:
                    logger.warning("Error closing stale PostgreSQL connection", exc_info=True)

            try:
                self._connection = self.psycopg2.connect(
                    self.connection_string,
                    cursor_factory=self.extras.RealDictCursor
                )
            except self.psycopg2.OperationalError as e:
                raise PersistenceUnavailableError(f"Cannot connect to PostgreSQL: {e}") from e
            self._connection.autocommit = False  # We handle transactions manually

    @contextmanager
    def _cursor(self, table: Optional[str] = None):
        """Cursor that commits outside units of work and translates driver errors"""
        with self._lock:
            if self._connection is None:
                raise PersistenceUnavailableError("Storage is closed")
            cursor = self._connection.cursor()
            try:
                yield cursor
                if not self.in_transaction:
                    self._connection.commit()
            except self.psycopg2.IntegrityError as e:
                self._abort()
                raise self._unique_error(table, e) from e
            except (self.psycopg2.OperationalError, self.psycopg2.InterfaceError) as e:
                self._abort()
                raise PersistenceUnavailableError(f"PostgreSQL error: {e}") from e
            except Exception:
                self._abort()
                raise
            finally:
                if not cursor.closed:
                    cursor.close()

    def _abort(self) -> None:
        # Inside a unit the enclosing atomic() rolls back
        if not self.in_transaction and self._connection is not None and not self._connection.closed:
            self._connection.rollback()

    def _unique_error(self, table: Optional[str], error: Exception) -> Exception:
        message = str(error)
        for field in self._unique_fields.get(table or "", []):
            if f"ux_{table}_{field}" in message:
                return UniqueConstraintError(table, field, None)
        return UniqueConstraintError(table or "?", "id", None)

    def _ensure_table(self, cursor, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        _check_identifier(table)
        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data JSONB NOT NULL,
                created_at TIMESTAMP DEFAULT NOW(),
                updated_at TIMESTAMP DEFAULT NOW()
            )
        """)
        cursor.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_data
            ON {table} USING gin(data)
        """)
        cursor.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)
        for field in self._unique_fields.get(table, []):
            cursor.execute(f"""
                CREATE UNIQUE INDEX IF NOT EXISTS ux_{table}_{field}
                ON {table} ((data ->> '{field}'))
            """)
        self._tables.add(table)

    def _on_unique_constraint_added(self, table: str, field: str) -> None:
        self._tables.discard(table)
        with self._cursor(table) as cursor:
            self._ensure_table(cursor, table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to PostgreSQL using UPSERT"""
        now = datetime.now(timezone.utc)
        data_json = json.dumps(data, default=str)
        with self._cursor(table) as cursor:
            self._ensure_table(cursor, table)
            cursor.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    data = EXCLUDED.data,
                    updated_at = EXCLUDED.updated_at
            """, (record_id, data_json, now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from PostgreSQL"""
        with self._cursor(table) as cursor:
            self._ensure_table(cursor, table)
            cursor.execute(f"SELECT data FROM {table} WHERE id = %s", (record_id,))
            row = cursor.fetchone()
            return dict(row['data']) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._cursor(table) as cursor:
            self._ensure_table(cursor, table)
            cursor.execute(f"SELECT data FROM {table} ORDER BY created_at")
            return [dict(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from PostgreSQL"""
        with self._cursor(table) as cursor:
            self._ensure_table(cursor, table)
            cursor.execute(f"DELETE FROM {table} WHERE id = %s", (record_id,))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._cursor(table) as cursor:
            self._ensure_table(cursor, table)
            cursor.execute(f"SELECT 1 FROM {table} WHERE id = %s LIMIT 1", (record_id,))
            return cursor.fetchone() is not None

    def find(
        self,
        table: str,
        filters: Filters,
        ranges: Optional[Ranges] = None,
        order_by: OrderBy = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Find records using JSONB containment and text range predicates"""
        conditions = []
        params: List[Any] = []
        if filters:
            conditions.append("data @> %s::jsonb")
            params.append(json.dumps(filters, default=str))
        for key, (low, high) in (ranges or {}).items():
            if low is not None:
                conditions.append("data ->> %s >= %s")
                params.extend([_check_identifier(key), str(low)])
            if high is not None:
                conditions.append("data ->> %s <= %s")
                params.extend([_check_identifier(key), str(high)])

        sql = f"SELECT data FROM {_check_identifier(table)}"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)

        direction = "DESC" if descending else "ASC"
        fields = _order_fields(order_by)
        if fields:
            sql += " ORDER BY " + ", ".join(
                # jsonb ordering keeps numbers numeric
                f"data -> '{_check_identifier(f)}' {direction}" for f in fields
            )
        else:
            sql += " ORDER BY created_at"
        if limit is not None:
            sql += " LIMIT %s"
            params.append(int(limit))

        with self._cursor(table) as cursor:
            self._ensure_table(cursor, table)
            cursor.execute(sql, params)
            return [dict(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._cursor(table) as cursor:
            self._ensure_table(cursor, table)
            cursor.execute(f"SELECT COUNT(*) as count FROM {table}")
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._cursor(table) as cursor:
            self._ensure_table(cursor, table)
            cursor.execute(f"DELETE FROM {table}")

    def next_sequence(self, name: str, floor: int = 0) -> int:
        with self._cursor() as cursor:
            cursor.execute("""
                INSERT INTO _sequences (name, value) VALUES (%s, %s)
                ON CONFLICT (name) DO UPDATE SET
                    value = GREATEST(_sequences.value, EXCLUDED.value - 1) + 1
                RETURNING value
            """, (name, floor + 1))
            return cursor.fetchone()['value']

    def begin_transaction(self) -> None:
        """Start a transaction holding the advisory lock"""
        with self._cursor() as cursor:
            cursor.execute("SELECT pg_advisory_xact_lock(%s)", (self.ADVISORY_LOCK_KEY,))

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            try:
                self._connection.commit()
            except (self.psycopg2.OperationalError, self.psycopg2.InterfaceError) as e:
                raise PersistenceUnavailableError(f"PostgreSQL commit failed: {e}") from e

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            self._tables.clear()
            if self._connection is None or self._connection.closed:
                return
            try:
                self._connection.rollback()
            except (self.psycopg2.OperationalError, self.psycopg2.InterfaceError) as e:
                raise PersistenceUnavailableError(f"PostgreSQL rollback failed: {e}") from e

    def close(self) -> None:
        """Close PostgreSQL connection"""
        with self._lock:
            if self._connection:
                try:
                    self._connection.close()
                except self.psycopg2.Error:
                    logger.warning("Error closing PostgreSQL connection", exc_info=True)
                self._connection = None


def create_storage(database_url: str, timeout: float = 5.0) -> StorageInterface:
    """
    Create a storage backend from a database URL

    Supported forms: ``memory://``, ``sqlite:///path/to.db``, ``sqlite://``
    (in-memory SQLite) and ``postgresql://...`` / ``postgres://...``.
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite://"):]
        if path.startswith("/"):
            path = path[1:]
        return SQLiteStorage(path or ":memory:", timeout=timeout)
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLStorage(database_url)
    raise ValueError(f"Unsupported database URL: {database_url}")
