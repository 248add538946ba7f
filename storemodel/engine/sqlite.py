"""
SQLite storage engine for storemodel.

This module implements the storage engine contract on SQLite:
- One SQLite file per logical database
- Database version kept in PRAGMA user_version
- One SQLite table per store: key columns plus the JSON-encoded value
- Secondary indexes as expression indexes over json_extract(value)

Invariants:
    - Structural changes only happen inside the upgrade transaction
    - Every transaction runs on its own connection
    - A failed statement rolls back and aborts its transaction
    - Results are ordered by index value, then primary key

Table schema:
    _storemodel_tables:
        - name TEXT PRIMARY KEY
        - key_path TEXT (JSON string or list)

    _storemodel_indexes:
        - table_name TEXT
        - index_name TEXT
        - key_path TEXT
        - PRIMARY KEY (table_name, index_name)

    "t_<store>":
        - k0 .. kN (one column per key path component, no type affinity)
        - value_json TEXT
        - PRIMARY KEY (k0 .. kN)

    "i_<len(store)>_<store>__<index>":
        - json_extract(value_json, '$.<key_path>')
"""

from __future__ import annotations

import json
import logging
import math
import re
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from .base import (
    ConstraintError,
    DatabaseHandle,
    DataError,
    EngineError,
    Index,
    KeyPath,
    KeyRange,
    NotFoundError,
    Query,
    ReadOnlyError,
    StorageEngine,
    Table,
    Transaction,
    TransactionInactiveError,
    TransactionMode,
    TransactionState,
    UpgradeCallback,
    UpgradeTable,
    UpgradeTransaction,
    VersionError,
)

logger = logging.getLogger(__name__)

_META_SCHEMA = """
    CREATE TABLE IF NOT EXISTS _storemodel_tables (
        name TEXT PRIMARY KEY,
        key_path TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS _storemodel_indexes (
        table_name TEXT NOT NULL,
        index_name TEXT NOT NULL,
        key_path TEXT NOT NULL,
        PRIMARY KEY (table_name, index_name)
    );
"""

_INDEX_PATH = re.compile(r"[A-Za-z0-9_]+")

# SQLite INTEGER is a signed 64-bit value
_MIN_INT = -(2**63)
_MAX_INT = 2**63 - 1

_DB_NAME = re.compile(r"[A-Za-z0-9_-]+")


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _table_sql_name(name: str) -> str:
    return _quote(f"t_{name}")


def _index_sql_name(table: str, index: str) -> str:
    # Length prefix keeps (table, index) pairs from colliding
    return _quote(f"i_{len(table)}_{table}__{index}")


def _path_expr(path: str) -> str:
    if not _INDEX_PATH.fullmatch(path):
        raise DataError(f"Invalid index key path '{path}'")
    return f"json_extract(value_json, '$.{path}')"


def _execute(conn: sqlite3.Connection, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
    """Run a statement, translating sqlite3 errors to engine errors."""
    try:
        return conn.execute(sql, params)
    except sqlite3.IntegrityError as e:
        raise ConstraintError(str(e)) from e
    except sqlite3.Error as e:
        raise EngineError(str(e)) from e
    except OverflowError as e:
        raise DataError(str(e)) from e


def _valid_key_part(value: Any) -> bool:
    if isinstance(value, bool) or value is None:
        return False
    if isinstance(value, float):
        return not math.isnan(value)
    if isinstance(value, int):
        return _MIN_INT <= value <= _MAX_INT
    return isinstance(value, (int, str, bytes))


def _normalize_key(value: Any, arity: int) -> tuple:
    """Turn a key value into a tuple of key parts."""
    if arity == 1:
        parts = (value,)
    elif isinstance(value, (list, tuple)) and len(value) == arity:
        parts = tuple(value)
    else:
        raise DataError(f"Expected a composite key of {arity} parts, got {value!r}")
    for part in parts:
        if not _valid_key_part(part):
            raise DataError(f"Invalid key value {part!r}")
    return parts


@dataclass
class _TableInfo:
    name: str
    key_path: Union[str, tuple[str, ...]]
    indexes: dict[str, str] = field(default_factory=dict)

    @property
    def key_fields(self) -> tuple[str, ...]:
        if isinstance(self.key_path, str):
            return (self.key_path,)
        return self.key_path

    @property
    def key_columns(self) -> list[str]:
        return [f"k{i}" for i in range(len(self.key_fields))]


def _load_tables(conn: sqlite3.Connection) -> dict[str, _TableInfo]:
    tables: dict[str, _TableInfo] = {}
    for row in _execute(conn, "SELECT name, key_path FROM _storemodel_tables"):
        key_path = json.loads(row["key_path"])
        if isinstance(key_path, list):
            key_path = tuple(key_path)
        tables[row["name"]] = _TableInfo(name=row["name"], key_path=key_path)
    for row in _execute(conn, "SELECT table_name, index_name, key_path FROM _storemodel_indexes"):
        info = tables.get(row["table_name"])
        if info is not None:
            info.indexes[row["index_name"]] = row["key_path"]
    return tables


class SqliteUpgradeTable(UpgradeTable):
    """Table handle inside an upgrade transaction."""

    def __init__(self, conn: sqlite3.Connection, name: str) -> None:
        self._conn = conn
        self.name = name

    def create_index(self, name: str, key_path: str) -> None:
        expr = _path_expr(key_path)
        _execute(
            self._conn,
            "INSERT INTO _storemodel_indexes (table_name, index_name, key_path) VALUES (?, ?, ?)",
            (self.name, name, key_path),
        )
        _execute(
            self._conn,
            f"CREATE INDEX {_index_sql_name(self.name, name)} "
            f"ON {_table_sql_name(self.name)} ({expr})",
        )


class SqliteUpgradeTransaction(UpgradeTransaction):
    """Structural changes applied inside the version-change transaction."""

    def __init__(self, conn: sqlite3.Connection, old_version: int, new_version: int) -> None:
        super().__init__(old_version, new_version)
        self._conn = conn

    @property
    def table_names(self) -> list[str]:
        cursor = _execute(self._conn, "SELECT name FROM _storemodel_tables ORDER BY name")
        return [row["name"] for row in cursor]

    def create_table(self, name: str, key_path: KeyPath) -> SqliteUpgradeTable:
        if name in self.table_names:
            raise ConstraintError(f"Table '{name}' already exists")
        if isinstance(key_path, str):
            stored_path: Any = key_path
            arity = 1
        else:
            stored_path = list(key_path)
            arity = len(stored_path)
        if arity == 0:
            raise DataError(f"Table '{name}' needs a key path")

        columns = [f"k{i}" for i in range(arity)]
        _execute(
            self._conn,
            f"CREATE TABLE {_table_sql_name(name)} ("
            + ", ".join(columns)
            + ", value_json TEXT NOT NULL, PRIMARY KEY ("
            + ", ".join(columns)
            + "))",
        )
        _execute(
            self._conn,
            "INSERT INTO _storemodel_tables (name, key_path) VALUES (?, ?)",
            (name, json.dumps(stored_path)),
        )
        logger.debug(f"Created table {name} with key path {key_path}")
        return SqliteUpgradeTable(self._conn, name)

    def drop_table(self, name: str) -> None:
        if name not in self.table_names:
            raise NotFoundError(f"Table '{name}' does not exist")
        _execute(self._conn, f"DROP TABLE IF EXISTS {_table_sql_name(name)}")
        _execute(self._conn, "DELETE FROM _storemodel_indexes WHERE table_name = ?", (name,))
        _execute(self._conn, "DELETE FROM _storemodel_tables WHERE name = ?", (name,))
        logger.debug(f"Dropped table {name}")


class SqliteIndex(Index):
    """Ordered reads over one or more SQL key expressions.

    A table reads through its key columns; a secondary index reads
    through a json_extract expression and breaks ties on the key columns.
    """

    def __init__(
        self,
        transaction: SqliteTransaction,
        info: _TableInfo,
        expressions: list[str],
        secondary: bool = False,
    ) -> None:
        self._tx = transaction
        self._info = info
        self._expressions = expressions
        self._secondary = secondary

    def _where(self, query: Optional[Query]) -> tuple[str, list[Any]]:
        exprs = self._expressions
        lhs = exprs[0] if len(exprs) == 1 else "(" + ", ".join(exprs) + ")"
        slots = "?" if len(exprs) == 1 else "(" + ", ".join("?" * len(exprs)) + ")"

        if query is None:
            if self._secondary:
                return f"WHERE {exprs[0]} IS NOT NULL", []
            return "", []

        if not isinstance(query, KeyRange):
            return f"WHERE {lhs} = {slots}", list(_normalize_key(query, len(exprs)))

        clauses = []
        params: list[Any] = []
        if query.lower is not None:
            clauses.append(f"{lhs} {'>' if query.lower_open else '>='} {slots}")
            params.extend(_normalize_key(query.lower, len(exprs)))
        if query.upper is not None:
            clauses.append(f"{lhs} {'<' if query.upper_open else '<='} {slots}")
            params.extend(_normalize_key(query.upper, len(exprs)))
        return "WHERE " + " AND ".join(clauses), params

    def _select(self, query: Optional[Query], limit: Optional[int]) -> list[Any]:
        if limit is not None and limit < 0:
            raise DataError(f"limit must be >= 0, got {limit}")
        where, params = self._where(query)
        order = self._expressions + (self._info.key_columns if self._secondary else [])
        sql = (
            f"SELECT value_json FROM {_table_sql_name(self._info.name)} {where} "
            f"ORDER BY {', '.join(order)} LIMIT ?"
        )
        params.append(-1 if limit is None else limit)
        cursor = self._tx._execute(sql, params)
        return [json.loads(row["value_json"]) for row in cursor.fetchall()]

    async def get(self, query: Query) -> Optional[Any]:
        rows = self._select(query, 1)
        return rows[0] if rows else None

    async def get_all(self, query: Optional[Query] = None, limit: Optional[int] = None) -> list[Any]:
        return self._select(query, limit)


class SqliteTable(SqliteIndex, Table):
    """A store table bound to a transaction."""

    def __init__(self, transaction: SqliteTransaction, info: _TableInfo) -> None:
        super().__init__(transaction, info, info.key_columns)

    def index(self, name: str) -> SqliteIndex:
        path = self._info.indexes.get(name)
        if path is None:
            raise NotFoundError(f"Index '{name}' does not exist on table '{self._info.name}'")
        return SqliteIndex(self._tx, self._info, [_path_expr(path)], secondary=True)

    def _row(self, value: dict[str, Any]) -> tuple[tuple, str]:
        fields = self._info.key_fields
        missing = [k for k in fields if value.get(k) is None]
        if missing:
            raise DataError(
                f"Value for table '{self._info.name}' is missing key field(s) {missing}"
            )
        parts = tuple(value[k] for k in fields)
        key = _normalize_key(parts if len(fields) > 1 else parts[0], len(fields))
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise DataError(f"Value is not JSON serializable: {e}") from e
        return key, payload

    def _write(self, verb: str, value: dict[str, Any]) -> Any:
        self._tx._check_writable()
        key, payload = self._row(value)
        columns = self._info.key_columns + ["value_json"]
        self._tx._execute(
            f"{verb} INTO {_table_sql_name(self._info.name)} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' * len(columns))})",
            [*key, payload],
        )
        return key[0] if len(key) == 1 else key

    async def insert(self, value: dict[str, Any]) -> Any:
        return self._write("INSERT", value)

    async def put(self, value: dict[str, Any]) -> Any:
        return self._write("INSERT OR REPLACE", value)

    async def delete(self, query: Query) -> None:
        self._tx._check_writable()
        if query is None:
            raise DataError("delete needs a key or KeyRange")
        where, params = self._where(query)
        self._tx._execute(f"DELETE FROM {_table_sql_name(self._info.name)} {where}", params)


class SqliteTransaction(Transaction):
    """A transaction on its own SQLite connection."""

    def __init__(
        self,
        database: SqliteDatabase,
        table_names: Sequence[str],
        mode: TransactionMode,
    ) -> None:
        super().__init__(table_names, mode)
        self._database = database
        try:
            self._conn = database.engine._connect(database.path)
        except sqlite3.Error as e:
            raise EngineError(f"Unable to connect to database '{database.name}': {e}") from e
        try:
            self._conn.execute(
                "BEGIN IMMEDIATE" if mode is TransactionMode.READ_WRITE else "BEGIN"
            )
        except sqlite3.Error as e:
            self._conn.close()
            raise EngineError(f"Unable to begin transaction: {e}") from e

    def _check_active(self) -> None:
        if not self.active:
            raise TransactionInactiveError(f"Transaction is {self.state.value}")

    def _check_writable(self) -> None:
        self._check_active()
        if self.mode is not TransactionMode.READ_WRITE:
            raise ReadOnlyError("Write attempted in a read-only transaction")

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        self._check_active()
        try:
            return _execute(self._conn, sql, params)
        except EngineError:
            self._finish(TransactionState.ABORTED)
            raise

    def _finish(self, state: TransactionState) -> None:
        try:
            if state is TransactionState.COMMITTED:
                try:
                    self._conn.execute("COMMIT")
                except sqlite3.Error as e:
                    state = TransactionState.ABORTED
                    if self._conn.in_transaction:
                        self._conn.execute("ROLLBACK")
                    raise EngineError(f"Commit failed: {e}") from e
            elif self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
        finally:
            self.state = state
            self._conn.close()

    def table(self, name: str) -> SqliteTable:
        self._check_active()
        if name not in self.table_names:
            raise NotFoundError(f"Table '{name}' is not in this transaction's scope")
        return SqliteTable(self, self._database.tables[name])

    async def commit(self) -> None:
        self._check_active()
        self._finish(TransactionState.COMMITTED)

    async def abort(self) -> None:
        self._check_active()
        self._finish(TransactionState.ABORTED)


class SqliteDatabase(DatabaseHandle):
    """Open handle on one SQLite database file."""

    def __init__(
        self,
        engine: SqliteEngine,
        name: str,
        version: int,
        path: Path,
        tables: dict[str, _TableInfo],
    ) -> None:
        super().__init__(name, version)
        self.engine = engine
        self.path = path
        self.tables = tables
        self._closed = False

    @property
    def table_names(self) -> list[str]:
        return sorted(self.tables)

    def transaction(
        self,
        table_names: Union[str, Sequence[str]],
        mode: TransactionMode = TransactionMode.READ_ONLY,
    ) -> SqliteTransaction:
        if self._closed:
            raise EngineError(f"Database '{self.name}' is closed")
        if isinstance(table_names, str):
            table_names = [table_names]
        for name in table_names:
            if name not in self.tables:
                raise NotFoundError(f"Table '{name}' does not exist in database '{self.name}'")
        return SqliteTransaction(self, table_names, mode)

    async def close(self) -> None:
        self._closed = True


class SqliteEngine(StorageEngine):
    """Versioned SQLite databases under a data directory.

    Thread safety:
        Each transaction opens its own connection.
        SQLite serializes writers; WAL mode lets readers proceed.

    Example:
        >>> engine = SqliteEngine("/tmp/data")
        >>> db = await engine.open_database("app", 1, on_upgrade=migrate)
        >>> async with db.transaction("users", TransactionMode.READ_WRITE) as tx:
        ...     await tx.table("users").put({"id": "a"})
    """

    def __init__(
        self,
        data_dir: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms

    def _get_db_path(self, name: str) -> Path:
        """Get database file path for a logical database name."""
        # Names map one-to-one onto file names; no path traversal
        if not _DB_NAME.fullmatch(name):
            raise DataError(
                f"Invalid database name '{name}': only letters, digits, '-' and '_' are allowed"
            )
        return self.data_dir / f"{name}.db"

    def _connect(self, path: Path) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        if self.wal_mode:
            conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    async def open_database(
        self,
        name: str,
        version: int,
        on_upgrade: Optional[UpgradeCallback] = None,
    ) -> SqliteDatabase:
        if version < 1:
            raise VersionError(f"Database version must be >= 1, got {version}")

        path = self._get_db_path(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            conn = self._connect(path)
        except (OSError, sqlite3.Error) as e:
            raise EngineError(f"Unable to open database '{name}': {e}") from e

        try:
            try:
                conn.executescript(_META_SCHEMA)
            except sqlite3.Error as e:
                raise EngineError(f"Unable to open database '{name}': {e}") from e

            current = _execute(conn, "PRAGMA user_version").fetchone()[0]
            if version < current:
                raise VersionError(
                    f"Requested version {version} is lower than stored version {current}"
                )
            if version > current:
                _execute(conn, "BEGIN IMMEDIATE")
                try:
                    upgrade = SqliteUpgradeTransaction(conn, current, version)
                    if on_upgrade is not None:
                        on_upgrade(upgrade)
                    _execute(conn, f"PRAGMA user_version = {int(version)}")
                    _execute(conn, "COMMIT")
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
                logger.info(
                    f"Upgraded database {name} from version {current} to {version}",
                    extra={"database": name, "old_version": current, "new_version": version},
                )

            tables = _load_tables(conn)
        finally:
            conn.close()

        return SqliteDatabase(self, name, version, path, tables)

    async def delete_database(self, name: str) -> bool:
        path = self._get_db_path(name)
        existed = path.exists()
        try:
            for suffix in ("", "-wal", "-shm"):
                Path(f"{path}{suffix}").unlink(missing_ok=True)
        except OSError as e:
            raise EngineError(f"Unable to delete database '{name}': {e}") from e
        return existed
