"""DB-API command executor owning the single shared connection."""

from __future__ import annotations

import contextlib
import logging
import sys
import threading
from typing import Any, Callable, Iterator, List, Mapping, Optional, Sequence, Tuple

from ...core.binder import BinderOptions
from ...core.errors import (
    ContractError,
    DbConnectionError,
    MiniDalError,
    StoreError,
    TransientError,
)
from ...core.results import TableResult, TableRow, column_index
from ...core.statements import Statement, StatementBuilder
from ...core.transactions import Transaction
from ...core.types import DriverParams, MaybeRow, RowMapping, Rows, SqlLogger
from ...config import load_settings
from .connect import ConnectFactory, connect_factory
from .dialects import Dialect

logger = logging.getLogger(__name__)

InputSizes = Optional[List[Any]]


class Database:
    """Thin DB-API wrapper: one lazily opened connection, serialized access.

    Every command ensures the connection is open (reopening it when it was
    observed closed and a connect factory is known), applies the command
    timeout, reports the SQL text to `sql_logger`, executes, and translates
    driver errors into `StoreError` / `TransientError`. Commands outside a
    transaction are committed individually.

    Usage:
        db = Database(sqlite3.connect(":memory:"), SQLiteDialect())
        db = Database(None, SQLiteDialect(), connect=lambda: sqlite3.connect(path))
    """

    def __init__(
        self,
        conn: Any,
        dialect: Dialect,
        *,
        connect: Optional[ConnectFactory] = None,
        command_timeout: Optional[int] = 30,
        sql_logger: Optional[SqlLogger] = None,
        binder_options: Optional[BinderOptions] = None,
    ):
        """Create the executor.

        Args:
            conn: Open DB-API connection, or `None` to open lazily via `connect`.
            dialect: Concrete SQL dialect instance.
            connect: Zero-argument factory used to open and reopen the connection.
            command_timeout: Default per-command timeout in seconds (`None` disables).
            sql_logger: Optional sink receiving the SQL text of every command.
            binder_options: Text/decimal hints for parameter binding.
        """

        if conn is None and connect is None:
            raise ContractError("Database needs a connection or a connect factory.")
        self.conn: Any = conn
        self.dialect = dialect
        self.command_timeout = command_timeout
        self.sql_logger = sql_logger
        self.builder = StatementBuilder(dialect, binder_options)
        self._connect = connect
        self._closed = False
        self._lock = threading.RLock()
        self._tx: Optional[Transaction] = None
        self._tx_owner: Optional[int] = None
        self._session_timeout: Optional[int] = None

    @classmethod
    def from_url(cls, dsn: str, **kwargs: Any) -> Database:
        """Build a lazily connecting executor from a DSN (see `connect_factory`)."""

        factory, dialect = connect_factory(dsn)
        return cls(None, dialect, connect=factory, **kwargs)

    @classmethod
    def from_settings(cls, settings: Any = None) -> Database:
        """Build an executor from `DatabaseSettings` (environment when omitted)."""

        settings = settings or load_settings()
        return cls.from_url(
            settings.dsn,
            command_timeout=settings.command_timeout,
            sql_logger=logging.getLogger("mini_dal.sql").info if settings.log_sql else None,
            binder_options=settings.binder_options(),
        )

    # -- connection ----------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def in_transaction(self) -> bool:
        """Whether the calling thread owns the active transaction."""

        return self._tx is not None and self._tx_owner == threading.get_ident()

    def _require_open_connection(self) -> Any:
        if self._closed:
            raise DbConnectionError("connection is closed")
        conn = self.conn
        if conn is not None and not self.dialect.is_closed(conn):
            return conn
        if conn is not None and self._tx is not None:
            raise DbConnectionError("connection was lost inside a transaction")
        if self._connect is None:
            raise DbConnectionError("connection is closed and no connect factory is known")
        if conn is not None:
            logger.debug("Connection observed closed; reopening")
        try:
            self.conn = self._connect()
        except MiniDalError:
            raise
        except Exception as exc:
            raise DbConnectionError(f"cannot open connection: {exc}") from exc
        self._session_timeout = None
        return self.conn

    def close(self) -> None:
        """Close the connection; repeated calls are no-ops."""

        with self._lock:
            if self._closed:
                return
            conn = self.conn
            self._closed = True
            self.conn = None
            if conn is None:
                return
            close = getattr(conn, "close", None)
            if callable(close):
                close()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()

    # -- transactions --------------------------------------------------------

    @contextlib.contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Commit on success, roll back on any exception or rollback-only mark.

        The connection lock is held for the whole transaction, so other
        threads block until it finishes. Beginning a second transaction on
        the owning thread raises `ContractError`.
        """

        with self._lock:
            if self._tx is not None:
                raise ContractError("Nested transactions are not supported.")
            conn = self._require_open_connection()
            tx = Transaction(self)
            try:
                token = self.dialect.begin(conn)
            except Exception as exc:
                raise self._translate(exc, "BEGIN") from exc
            tx._begin()
            self._tx, self._tx_owner = tx, threading.get_ident()
            try:
                try:
                    yield tx
                except BaseException:
                    self._rollback(conn)
                    tx._finish(committed=False)
                    raise
                if tx.rollback_only:
                    self._rollback(conn)
                    tx._finish(committed=False)
                else:
                    try:
                        conn.commit()
                    except Exception as exc:
                        self._rollback(conn)
                        tx._finish(committed=False)
                        raise self._translate(exc, "COMMIT") from exc
                    tx._finish(committed=True)
            finally:
                self._tx, self._tx_owner = None, None
                self.dialect.finish(conn, token)

    def _rollback(self, conn: Any) -> None:
        try:
            conn.rollback()
        except Exception as exc:
            logger.warning("Rollback failed: %s", exc)
        else:
            logger.debug("Transaction rolled back")

    # -- commands ------------------------------------------------------------

    def prepare(self, sql: Any, params: Any = None) -> Tuple[str, DriverParams, InputSizes]:
        """Resolve SQL text/`Statement` plus params into driver arguments.

        Plain SQL takes a property bag / mapping (bound by name) or a
        positional list/tuple passed to the driver unchanged. The third
        element holds the dialect's `setinputsizes` entries, if any.
        """

        if isinstance(sql, Statement):
            if params is not None:
                raise ContractError("A Statement already carries its parameters.")
            statement = sql
        elif not isinstance(sql, str) or not sql.strip():
            raise ContractError("SQL text must be a non-empty string.")
        elif isinstance(params, (list, tuple)):
            return sql, list(params), None
        else:
            statement = self.builder.text(sql, params)
        return (
            statement.sql,
            statement.driver_params(self.dialect),
            statement.input_sizes(self.dialect),
        )

    def _run(
        self,
        sql: Any,
        params: Any,
        timeout: Optional[int],
        consume: Callable[[Any], Any],
    ) -> Any:
        text, driver_params, sizes = self.prepare(sql, params)
        seconds = self.command_timeout if timeout is None else timeout
        with self._lock:
            conn = self._require_open_connection()
            self._apply_session_timeout(conn, seconds)
            self._emit(text)
            cur = conn.cursor()
            try:
                with self.dialect.command_scope(conn, seconds):
                    _execute(cur, text, driver_params, sizes)
                    result = consume(cur)
                if self._tx is None:
                    conn.commit()
                return result
            except Exception as exc:
                if self._tx is None:
                    self._rollback(conn)
                raise self._translate(exc, text) from exc
            finally:
                _close_cursor(cur)

    def execute(self, sql: Any, params: Any = None, *, timeout: Optional[int] = None) -> int:
        """Execute a command and return the affected-row count (0 if unknown)."""

        return self._run(sql, params, timeout, lambda cur: max(cur.rowcount or 0, 0))

    def scalar(self, sql: Any, params: Any = None, *, timeout: Optional[int] = None) -> Any:
        """Return the first column of the first row, or `None`."""

        def _first(cur: Any) -> Any:
            row = cur.fetchone() if cur.description else None
            if row is None:
                return None
            if isinstance(row, Mapping):
                return next(iter(row.values()), None)
            return row[0]

        return self._run(sql, params, timeout, _first)

    def query(self, sql: Any, params: Any = None, *, timeout: Optional[int] = None) -> TableResult:
        """Return the full tabular result set."""

        def _table(cur: Any) -> TableResult:
            columns = _columns(cur)
            rows = cur.fetchall() if cur.description else []
            return TableResult(columns, [_row_values(columns, row) for row in rows])

        return self._run(sql, params, timeout, _table)

    def fetchone(self, sql: Any, params: Any = None) -> MaybeRow:
        """Execute query and return one normalized row mapping."""

        def _one(cur: Any) -> MaybeRow:
            row = cur.fetchone() if cur.description else None
            return None if row is None else self._row_to_mapping(cur, row)

        return self._run(sql, params, None, _one)

    def fetchall(self, sql: Any, params: Any = None) -> Rows:
        """Execute query and return all rows as normalized mappings."""

        def _all(cur: Any) -> Rows:
            rows = cur.fetchall() if cur.description else []
            return [self._row_to_mapping(cur, row) for row in rows]

        return self._run(sql, params, None, _all)

    @contextlib.contextmanager
    def reader(self, sql: Any, params: Any = None) -> Iterator[Iterator[TableRow]]:
        """Yield a forward-only iterator over the live cursor.

        The connection stays locked until the block exits.
        """

        text, driver_params, sizes = self.prepare(sql, params)
        with self._lock:
            conn = self._require_open_connection()
            self._apply_session_timeout(conn, self.command_timeout)
            self._emit(text)
            cur = conn.cursor()
            try:
                try:
                    _execute(cur, text, driver_params, sizes)
                except Exception as exc:
                    raise self._translate(exc, text) from exc
                yield _iter_rows(cur, self._translate, text)
                if self._tx is None:
                    conn.commit()
            except BaseException:
                if self._tx is None:
                    self._rollback(conn)
                raise
            finally:
                _close_cursor(cur)

    def execute_many(
        self,
        sql: str,
        rows: Sequence[DriverParams],
        *,
        input_sizes: InputSizes = None,
    ) -> int:
        """Run one statement for every driver-params entry; return affected rows."""

        if not rows:
            return 0
        with self._lock:
            conn = self._require_open_connection()
            self._apply_session_timeout(conn, self.command_timeout)
            self._emit(sql)
            cur = conn.cursor()
            try:
                with self.dialect.command_scope(conn, self.command_timeout):
                    if input_sizes:
                        cur.setinputsizes(input_sizes)
                    cur.executemany(sql, list(rows))
                affected = cur.rowcount
                if self._tx is None:
                    conn.commit()
            except Exception as exc:
                if self._tx is None:
                    self._rollback(conn)
                raise self._translate(exc, sql) from exc
            finally:
                _close_cursor(cur)
        return len(rows) if affected is None or affected < 0 else affected

    # -- helpers -------------------------------------------------------------

    def _emit(self, sql: str) -> None:
        logger.debug("SQL: %s", sql)
        if self.sql_logger is not None:
            self.sql_logger(sql)

    def _apply_session_timeout(self, conn: Any, seconds: Optional[int]) -> None:
        if not seconds or self._tx is not None or seconds == self._session_timeout:
            return
        sql = self.dialect.session_timeout_sql(seconds)
        if sql is None:
            return
        cur = conn.cursor()
        try:
            cur.execute(sql)
            conn.commit()
        except Exception as exc:
            raise self._translate(exc, sql) from exc
        finally:
            _close_cursor(cur)
        self._session_timeout = seconds

    def _translate(self, exc: BaseException, sql: Optional[str]) -> MiniDalError:
        """Map a driver exception onto the error hierarchy, keeping its code."""

        if isinstance(exc, MiniDalError):
            return exc
        if not isinstance(exc, self._driver_errors()):
            return StoreError(f"{type(exc).__name__}: {exc}", sql=sql)
        code = self.dialect.error_code(exc)
        if self.dialect.is_transient(exc, code):
            return TransientError(str(exc), code=code, sql=sql)
        return StoreError(str(exc), code=code, sql=sql)

    def _driver_errors(self) -> Tuple[type, ...]:
        errors: List[type] = [TimeoutError]
        conn = self.conn
        error = getattr(conn, "Error", None)
        if error is None and conn is not None:
            module = sys.modules.get(type(conn).__module__.split(".")[0])
            error = getattr(module, "Error", None)
        if isinstance(error, type):
            errors.append(error)
        return tuple(errors)

    def _row_to_mapping(self, cursor: Any, row: Any) -> RowMapping:
        """Normalize row object to mapping.

        Supports mapping rows directly and tuple/list rows via
        `cursor.description`.
        """

        if isinstance(row, Mapping):
            return row
        cols = _columns(cursor)
        if not cols:
            raise StoreError("Cursor has no description; cannot map rows to dict.")
        return dict(zip(cols, row))


def _columns(cursor: Any) -> List[str]:
    desc = getattr(cursor, "description", None) or ()
    return [d[0] for d in desc]


def _row_values(columns: Sequence[str], row: Any) -> Tuple[Any, ...]:
    if isinstance(row, Mapping):
        index = column_index(list(row.keys()))
        values = list(row.values())
        return tuple(values[index[c.lower()]] if c.lower() in index else None for c in columns)
    return tuple(row)


def _iter_rows(cur: Any, translate: Callable[..., MiniDalError], sql: str) -> Iterator[TableRow]:
    columns = tuple(_columns(cur))
    index = column_index(columns)
    if not columns:
        return
    while True:
        try:
            row = cur.fetchone()
        except Exception as exc:
            raise translate(exc, sql) from exc
        if row is None:
            return
        yield TableRow(columns, index, _row_values(columns, row))


def _execute(cur: Any, sql: str, params: DriverParams, sizes: InputSizes) -> None:
    if params is None:
        cur.execute(sql)
        return
    if sizes:
        cur.setinputsizes(sizes)
    cur.execute(sql, params)


def _close_cursor(cur: Any) -> None:
    close = getattr(cur, "close", None)
    if callable(close):
        close()
