"""Concrete SQL dialect implementations for DB-API adapters.

A dialect owns everything that differs between engines: identifier quoting,
placeholder style, pagination windows, upsert shape, stored procedure calls,
schema introspection, value adaptation, timeouts, and error classification.
SQL builders receive a `ph` callback that renders (and records) the
placeholder for a logical parameter name, and must call it in text order.
"""

from __future__ import annotations

import contextlib
import re
import sqlite3
import time as _time
import uuid
from collections.abc import Iterator, Sequence
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, List, Optional

from ...core.binder import BoundParameter
from ...core.contracts import Placeholder
from ...core.errors import ContractError, UnsupportedOperationError
from ...core.type_inference import DbType

_PROC_ARG = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

# ODBC SQL data type codes, the values pyodbc exposes as `pyodbc.SQL_*`.
SQL_DECIMAL = 3
SQL_INTEGER = 4
SQL_SMALLINT = 5
SQL_REAL = 7
SQL_DOUBLE = 8
SQL_TYPE_DATE = 91
SQL_TYPE_TIMESTAMP = 93
SQL_VARBINARY = -3
SQL_BIGINT = -5
SQL_TINYINT = -6
SQL_BIT = -7
SQL_WVARCHAR = -9
SQL_GUID = -11
SQL_SS_TIME2 = -154

# Column size 0 binds as nvarchar(max) / varbinary(max); larger values use it.
_MAX_BINARY_SIZE = 8000

_ODBC_FIXED_SIZES: dict[DbType, tuple[int, int, int]] = {
    DbType.INT32: (SQL_INTEGER, 10, 0),
    DbType.INT64: (SQL_BIGINT, 19, 0),
    DbType.INT16: (SQL_SMALLINT, 5, 0),
    DbType.BYTE: (SQL_TINYINT, 3, 0),
    DbType.BOOLEAN: (SQL_BIT, 1, 0),
    DbType.DOUBLE: (SQL_DOUBLE, 15, 0),
    DbType.SINGLE: (SQL_REAL, 7, 0),
    DbType.GUID: (SQL_GUID, 16, 0),
}


class Dialect:
    """Base dialect: ANSI quoting, `LIMIT/OFFSET`, information_schema."""

    name: str = "generic"
    paramstyle: str = "named"
    quote_char: str = '"'
    close_quote_char: Optional[str] = None
    now_sql: str = "CURRENT_TIMESTAMP"
    transient_codes: frozenset[Any] = frozenset()
    # Whether `upsert_sql` already checks key existence in one statement.
    checked_upsert: bool = False
    select_without_from: str = ""

    def q(self, ident: str) -> str:
        """Quote an identifier, doubling any embedded closing quote."""

        if not isinstance(ident, str) or not ident:
            raise ContractError("Identifier must be a non-empty string.")
        close = self.close_quote_char or self.quote_char
        return f"{self.quote_char}{ident.replace(close, close * 2)}{close}"

    def placeholder(self, key: str) -> str:
        """Return parameter placeholder for current param style."""

        if self.paramstyle == "named":
            return f":{key}"
        if self.paramstyle == "pyformat":
            return f"%({key})s"
        if self.paramstyle == "qmark":
            return "?"
        if self.paramstyle == "format":
            return "%s"
        raise ContractError(f"Unsupported paramstyle: {self.paramstyle}")

    @property
    def uses_names(self) -> bool:
        """Whether drivers receive a mapping (vs. a positional list)."""

        return self.paramstyle in {"named", "pyformat"}

    # -- statement shapes ---------------------------------------------------

    def window_clause(self, ph: Placeholder, limit_key: str, offset_key: str) -> str:
        """Return the skip/take clause appended after `ORDER BY`."""

        return f" LIMIT {ph(limit_key)} OFFSET {ph(offset_key)}"

    def top_sql(self, body: str, count: int) -> str:
        """Return `SELECT <body>` limited to the first `count` rows."""

        return f"SELECT {body} LIMIT {int(count)}"

    def upsert_sql(
        self,
        table: str,
        key: str,
        columns: Sequence[str],
        ph: Placeholder,
    ) -> str:
        """Return the engine conflict-clause upsert keyed by `key`.

        Requires a PRIMARY KEY or UNIQUE constraint on `key`.
        """

        insert = self._insert_sql(table, columns, ph)
        updates = [col for col in columns if col.lower() != key.lower()]
        if not updates:
            return f"{insert} ON CONFLICT ({self.q(key)}) DO NOTHING"
        set_clause = ", ".join(f"{self.q(col)} = excluded.{self.q(col)}" for col in updates)
        return f"{insert} ON CONFLICT ({self.q(key)}) DO UPDATE SET {set_clause}"

    def insert_missing_sql(
        self,
        table: str,
        key: str,
        columns: Sequence[str],
        ph: Placeholder,
    ) -> str:
        """Return an INSERT of one row that only runs when `key` is not present."""

        column_sql = ", ".join(self.q(col) for col in columns)
        values_sql = ", ".join(ph(col) for col in columns)
        table_sql = self.q(table)
        return (
            f"INSERT INTO {table_sql} ({column_sql}) "
            f"SELECT {values_sql}{self.select_without_from} WHERE NOT EXISTS "
            f"(SELECT 1 FROM {table_sql} WHERE {self.q(key)} = {ph(key)})"
        )

    def procedure_sql(
        self,
        procedure: str,
        arguments: Sequence[str],
        ph: Placeholder,
        *,
        returns_rows: bool,
    ) -> str:
        raise UnsupportedOperationError(
            f"Stored procedures are not supported by the {self.name} dialect."
        )

    def list_tables_sql(self) -> str:
        return (
            'SELECT table_schema AS "TABLE_SCHEMA", table_name AS "TABLE_NAME", '
            'table_type AS "TABLE_TYPE" FROM information_schema.tables '
            "WHERE table_schema NOT IN ('pg_catalog', 'information_schema') "
            "ORDER BY table_schema, table_name"
        )

    def list_columns_sql(self, ph: Placeholder, table_key: str) -> str:
        return (
            'SELECT column_name AS "COLUMN_NAME", data_type AS "DATA_TYPE", '
            'is_nullable AS "IS_NULLABLE", column_default AS "COLUMN_DEFAULT", '
            'ordinal_position AS "ORDINAL_POSITION" FROM information_schema.columns '
            f"WHERE table_name = {ph(table_key)} ORDER BY ordinal_position"
        )

    def backup_sql(self, path: str) -> Optional[str]:
        """Return SQL that backs the database up to `path`, or `None`."""

        return None

    def _insert_sql(self, table: str, columns: Sequence[str], ph: Placeholder) -> str:
        column_sql = ", ".join(self.q(col) for col in columns)
        values_sql = ", ".join(ph(col) for col in columns)
        return f"INSERT INTO {self.q(table)} ({column_sql}) VALUES ({values_sql})"

    # -- execution hooks ----------------------------------------------------

    def adapt_value(self, param: BoundParameter) -> Any:
        """Convert a bound value into what the driver accepts."""

        value = param.value
        if isinstance(value, Enum):
            value = value.value
        if isinstance(value, Decimal) and param.scale is not None:
            value = quantize_decimal(value, param.scale)
        return value

    def input_sizes(self, params: Sequence[BoundParameter]) -> Optional[List[Any]]:
        """Return `cursor.setinputsizes` entries for `params`, or `None` to skip."""

        return None

    def is_closed(self, conn: Any) -> bool:
        """Whether a live connection object has been closed underneath us."""

        closed = getattr(conn, "closed", None)
        if isinstance(closed, (bool, int)):
            return bool(closed)
        is_open = getattr(conn, "open", None)
        if isinstance(is_open, bool):
            return not is_open
        return False

    def begin(self, conn: Any) -> Any:
        """Start a transaction; the return value is passed back to `finish`."""

        return None

    def finish(self, conn: Any, token: Any) -> None:
        """Undo whatever `begin` changed once the transaction is closed."""

    def session_timeout_sql(self, seconds: int) -> Optional[str]:
        """Return a session statement applying `seconds` as command timeout."""

        return None

    @contextlib.contextmanager
    def command_scope(self, conn: Any, seconds: Optional[int]) -> Iterator[None]:
        """Apply a per-command timeout around one execution."""

        yield

    def error_code(self, exc: BaseException) -> Any:
        """Extract the native error code/number from a driver exception."""

        for attr in ("sqlstate", "pgcode", "sqlite_errorcode"):
            code = getattr(exc, attr, None)
            if code is not None:
                return code
        if exc.args and isinstance(exc.args[0], (int, str)):
            return exc.args[0]
        return None

    def is_transient(self, exc: BaseException, code: Any) -> bool:
        """Whether a driver error is a timeout or lock-class failure."""

        if isinstance(exc, TimeoutError):
            return True
        return code is not None and code in self.transient_codes


class SQLiteDialect(Dialect):
    """SQLite dialect (`:name` parameters, `ON CONFLICT` upsert)."""

    name = "sqlite"
    paramstyle = "named"
    quote_char = '"'
    # SQLITE_BUSY, SQLITE_LOCKED, SQLITE_INTERRUPT (primary result codes).
    transient_codes = frozenset({5, 6, 9})
    progress_steps = 1000

    def list_tables_sql(self) -> str:
        return (
            'SELECT name AS "TABLE_NAME", type AS "TABLE_TYPE" FROM sqlite_master '
            "WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%' "
            "ORDER BY name"
        )

    def list_columns_sql(self, ph: Placeholder, table_key: str) -> str:
        return (
            'SELECT name AS "COLUMN_NAME", type AS "DATA_TYPE", '
            '"notnull" AS "NOT_NULL", dflt_value AS "COLUMN_DEFAULT", '
            'pk AS "PRIMARY_KEY", cid AS "ORDINAL_POSITION" '
            f"FROM pragma_table_info({ph(table_key)}) ORDER BY cid"
        )

    def backup_sql(self, path: str) -> Optional[str]:
        return f"VACUUM INTO {sql_literal(path)}"

    def adapt_value(self, param: BoundParameter) -> Any:
        value = super().adapt_value(param)
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, Decimal):
            return str(value)
        if isinstance(value, uuid.UUID):
            return str(value)
        if isinstance(value, datetime):
            return value.isoformat(sep=" ")
        if isinstance(value, (date, time)):
            return value.isoformat()
        if isinstance(value, (bytearray, memoryview)):
            return bytes(value)
        return value

    def is_closed(self, conn: Any) -> bool:
        try:
            conn.total_changes
        except sqlite3.ProgrammingError:
            return True
        except AttributeError:
            return super().is_closed(conn)
        return False

    def begin(self, conn: Any) -> Any:
        if not getattr(conn, "in_transaction", False):
            conn.execute("BEGIN")
        return None

    @contextlib.contextmanager
    def command_scope(self, conn: Any, seconds: Optional[int]) -> Iterator[None]:
        set_handler = getattr(conn, "set_progress_handler", None)
        if not seconds or not callable(set_handler):
            yield
            return

        deadline = _time.monotonic() + seconds

        def _past_deadline() -> int:
            return 1 if _time.monotonic() > deadline else 0

        set_handler(_past_deadline, self.progress_steps)
        try:
            yield
        finally:
            set_handler(None, self.progress_steps)

    def error_code(self, exc: BaseException) -> Any:
        code = getattr(exc, "sqlite_errorcode", None)
        if isinstance(code, int):
            return code
        return super().error_code(exc)

    def is_transient(self, exc: BaseException, code: Any) -> bool:
        if isinstance(code, int) and (code & 0xFF) in self.transient_codes:
            return True
        message = str(exc).lower()
        if "database is locked" in message or "table is locked" in message:
            return True
        if message == "interrupted":
            return True
        return super().is_transient(exc, code)


class PostgresDialect(Dialect):
    """PostgreSQL dialect (`%s` positional parameters)."""

    name = "postgres"
    paramstyle = "format"
    quote_char = '"'
    # serialization_failure, deadlock_detected, lock_not_available, query_canceled
    transient_codes = frozenset({"40001", "40P01", "55P03", "57014"})

    def procedure_sql(
        self,
        procedure: str,
        arguments: Sequence[str],
        ph: Placeholder,
        *,
        returns_rows: bool,
    ) -> str:
        args = ", ".join(ph(arg) for arg in arguments)
        if returns_rows:
            return f"SELECT * FROM {self.q(procedure)}({args})"
        return f"CALL {self.q(procedure)}({args})"

    def session_timeout_sql(self, seconds: int) -> Optional[str]:
        return f"SET statement_timeout = {int(seconds) * 1000}"


class MySQLDialect(Dialect):
    """MySQL dialect (`%s` positional parameters, `ON DUPLICATE KEY`)."""

    name = "mysql"
    paramstyle = "format"
    quote_char = "`"
    # lock wait timeout, deadlock, max_execution_time exceeded
    transient_codes = frozenset({1205, 1213, 3024})
    select_without_from = " FROM DUAL"

    def upsert_sql(
        self,
        table: str,
        key: str,
        columns: Sequence[str],
        ph: Placeholder,
    ) -> str:
        insert = self._insert_sql(table, columns, ph)
        updates = [col for col in columns if col.lower() != key.lower()] or [key]
        set_clause = ", ".join(f"{self.q(col)} = VALUES({self.q(col)})" for col in updates)
        return f"{insert} ON DUPLICATE KEY UPDATE {set_clause}"

    def procedure_sql(
        self,
        procedure: str,
        arguments: Sequence[str],
        ph: Placeholder,
        *,
        returns_rows: bool,
    ) -> str:
        args = ", ".join(ph(arg) for arg in arguments)
        return f"CALL {self.q(procedure)}({args})"

    def list_tables_sql(self) -> str:
        return (
            "SELECT table_schema AS `TABLE_SCHEMA`, table_name AS `TABLE_NAME`, "
            "table_type AS `TABLE_TYPE` FROM information_schema.tables "
            "WHERE table_schema = DATABASE() ORDER BY table_name"
        )

    def list_columns_sql(self, ph: Placeholder, table_key: str) -> str:
        return (
            "SELECT column_name AS `COLUMN_NAME`, data_type AS `DATA_TYPE`, "
            "is_nullable AS `IS_NULLABLE`, column_default AS `COLUMN_DEFAULT`, "
            "ordinal_position AS `ORDINAL_POSITION` FROM information_schema.columns "
            f"WHERE table_schema = DATABASE() AND table_name = {ph(table_key)} "
            "ORDER BY ordinal_position"
        )

    def session_timeout_sql(self, seconds: int) -> Optional[str]:
        return f"SET SESSION max_execution_time = {int(seconds) * 1000}"


class SQLServerDialect(Dialect):
    """SQL Server dialect (pyodbc `?` parameters, bracket quoting)."""

    name = "sqlserver"
    paramstyle = "qmark"
    quote_char = "["
    close_quote_char = "]"
    now_sql = "SYSDATETIME()"
    checked_upsert = True
    # ODBC timeout states and serialization failure (deadlock victim, 1205).
    transient_codes = frozenset({"HYT00", "HYT01", "40001"})
    _native_number = re.compile(r"\((-?\d+)\)")
    transient_numbers = frozenset({-2, 1205, 1222})

    def window_clause(self, ph: Placeholder, limit_key: str, offset_key: str) -> str:
        return f" OFFSET {ph(offset_key)} ROWS FETCH NEXT {ph(limit_key)} ROWS ONLY"

    def top_sql(self, body: str, count: int) -> str:
        return f"SELECT TOP ({int(count)}) {body}"

    def upsert_sql(
        self,
        table: str,
        key: str,
        columns: Sequence[str],
        ph: Placeholder,
    ) -> str:
        table_sql = self.q(table)
        where = f"{self.q(key)} = "
        exists = f"IF EXISTS (SELECT 1 FROM {table_sql} WHERE {where}{ph(key)})"
        updates = [col for col in columns if col.lower() != key.lower()]
        if updates:
            set_clause = ", ".join(f"{self.q(col)} = {ph(col)}" for col in updates)
            update = f"UPDATE {table_sql} SET {set_clause} WHERE {where}{ph(key)};"
        else:
            update = "SELECT 0 WHERE 1 = 0;"
        insert = self._insert_sql(table, columns, ph)
        return f"{exists}\n    {update}\nELSE\n    {insert};"

    def procedure_sql(
        self,
        procedure: str,
        arguments: Sequence[str],
        ph: Placeholder,
        *,
        returns_rows: bool,
    ) -> str:
        for arg in arguments:
            if not _PROC_ARG.fullmatch(arg):
                raise ContractError(f"Invalid procedure parameter name {arg!r}.")
        args = ", ".join(f"@{arg} = {ph(arg)}" for arg in arguments)
        return f"EXEC {self.q(procedure)} {args}".rstrip()

    def backup_sql(self, path: str) -> Optional[str]:
        return (
            "DECLARE @db sysname = DB_NAME(); "
            f"BACKUP DATABASE @db TO DISK = N{sql_literal(path)}"
        )

    def input_sizes(self, params: Sequence[BoundParameter]) -> Optional[List[Any]]:
        """Map each parameter's type tag and size hints onto a pyodbc input size."""

        return [odbc_input_size(param) for param in params]

    def begin(self, conn: Any) -> Any:
        if getattr(conn, "autocommit", False):
            conn.autocommit = False
            return True
        return None

    def finish(self, conn: Any, token: Any) -> None:
        if token:
            conn.autocommit = True

    @contextlib.contextmanager
    def command_scope(self, conn: Any, seconds: Optional[int]) -> Iterator[None]:
        if seconds is not None and hasattr(conn, "timeout"):
            conn.timeout = int(seconds)
        yield

    def is_transient(self, exc: BaseException, code: Any) -> bool:
        if super().is_transient(exc, code):
            return True
        for number in self._native_number.findall(str(exc)):
            if int(number) in self.transient_numbers:
                return True
        return False


def sql_literal(text: str) -> str:
    """Render `text` as a single-quoted SQL string literal."""

    return "'" + text.replace("'", "''") + "'"


def quantize_decimal(value: Decimal, scale: int) -> Decimal:
    """Round `value` to `scale` fractional digits (half-up)."""

    if not value.is_finite():
        return value
    try:
        return value.quantize(Decimal(1).scaleb(-scale), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return value


def odbc_input_size(param: BoundParameter) -> Optional[tuple[int, int, int]]:
    """Return `(sql_type, column_size, decimal_digits)` for one parameter.

    `None` leaves the parameter to the driver's own type detection.
    """

    fixed = _ODBC_FIXED_SIZES.get(param.db_type)
    if fixed is not None:
        return fixed
    value = param.value
    if param.db_type is DbType.TEXT:
        return (SQL_WVARCHAR, param.size or 0, 0)
    if param.db_type is DbType.BINARY:
        size = len(value) if isinstance(value, (bytes, bytearray, memoryview)) else 0
        return (SQL_VARBINARY, size if 0 < size <= _MAX_BINARY_SIZE else 0, 0)
    if param.db_type is DbType.DECIMAL:
        return (SQL_DECIMAL, param.precision or 18, param.scale or 0)
    if param.db_type is DbType.TIMESTAMP:
        if isinstance(value, time):
            return (SQL_SS_TIME2, 16, 7)
        if isinstance(value, date) and not isinstance(value, datetime):
            return (SQL_TYPE_DATE, 10, 0)
        return (SQL_TYPE_TIMESTAMP, 27, 7)
    return None
