"""Public data-access surface composing builder, executor, mapper and retry."""

from __future__ import annotations

import contextlib
import logging
from decimal import Decimal
from typing import Any, Callable, ContextManager, Iterable, Iterator, List, Optional, Sequence, Type, TypeVar

from .binder import PropertyBag
from .conditions import OrderBy
from .errors import ContractError, MiniDalError, UnsupportedOperationError
from .mapping import coerce_value, map_row, map_rows
from .results import OperationResult, PageResult, TableResult, TableRow
from .retry import RetryPolicy, execute_with_retry
from .statements import (
    OrderInput,
    Statement,
    StatementBuilder,
    WhereInput,
    batch_input_sizes,
    key_value,
)
from .transactions import Transaction, TransactionCoordinator

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ORDER = (OrderBy("Id"),)


class DataAccess:
    """Named data-access operations over one `Database` executor.

    Construct one instance per process and pass it to its consumers;
    `close()` disposes the connection and is safe to call repeatedly.

    Boolean mutations (`save`, `update`, `delete`, `upsert`, `soft_delete`,
    `restore`, `touch`, `clear_table`) report "affected rows > 0", so a
    missing key reads as `False` rather than raising. Best-effort admin
    helpers (`backup`, `bulk_insert`, `ping`) return an `OperationResult`
    that is falsy on failure and carries the reason.

    Usage:
        dal = DataAccess.from_url("sqlite:///app.db")
        dal.save("Users", {"Id": 1, "First_Name": "Ann"})
        dal.paginate_with_count("Users", page=2, size=10)
    """

    def __init__(self, db: Any, *, retry_policy: Optional[RetryPolicy] = None):
        self.db = db
        self.retry_policy = retry_policy or RetryPolicy()
        self.transactions = TransactionCoordinator(db)

    @classmethod
    def from_url(cls, dsn: str, **kwargs: Any) -> DataAccess:
        from ..ports.db_api.database import Database

        return cls(Database.from_url(dsn, **kwargs))

    @classmethod
    def from_settings(cls, settings: Any = None) -> DataAccess:
        from ..config import load_settings
        from ..ports.db_api.database import Database

        settings = settings or load_settings()
        return cls(Database.from_settings(settings), retry_policy=settings.retry_policy())

    @property
    def builder(self) -> StatementBuilder:
        return self.db.builder

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> DataAccess:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()

    # -- core ----------------------------------------------------------------

    def execute(self, sql: Any, params: Any = None, *, timeout: Optional[int] = None) -> int:
        """Run a command; return the affected-row count."""

        return self.db.execute(sql, params, timeout=timeout)

    def scalar(self, sql: Any, params: Any = None, *, timeout: Optional[int] = None) -> Any:
        return self.db.scalar(sql, params, timeout=timeout)

    def table_data(self, sql: Any, params: Any = None, *, timeout: Optional[int] = None) -> TableResult:
        return self.db.query(sql, params, timeout=timeout)

    def select(self, sql: Any, params: Any = None) -> ContextManager[Iterator[TableRow]]:
        """Forward-only row reader; the connection is held until the block exits."""

        return self.db.reader(sql, params)

    # -- CRUD ----------------------------------------------------------------

    def save(self, table: str, data: Any) -> bool:
        """INSERT one row from a property bag, mapping, or dataclass record."""

        return self.db.execute(self.builder.insert(table, data)) > 0

    def update(self, table: str, data: Any, key_column: str = "Id") -> bool:
        """UPDATE every column except `key_column`, matched on `key_column`."""

        return self.db.execute(self.builder.update(table, data, key_column)) > 0

    def delete(self, table: str, data: Any, key_column: str = "Id") -> bool:
        """DELETE by key; `data` is a record/bag holding the key, or the key itself."""

        statement = self.builder.delete(table, key_column, key_value(data, key_column))
        return self.db.execute(statement) > 0

    def get_by_id(self, table: str, id: Any, key_column: str = "Id") -> Optional[TableRow]:
        return self.db.query(self.builder.select_by_key(table, key_column, id)).first()

    # -- aggregates / checks -------------------------------------------------

    def max(self, table: str, column: str, where: WhereInput = None, params: Any = None) -> Any:
        return self.db.scalar(self.builder.aggregate(table, "MAX", column, where, params))

    def min(self, table: str, column: str, where: WhereInput = None, params: Any = None) -> Any:
        return self.db.scalar(self.builder.aggregate(table, "MIN", column, where, params))

    def count(self, table: str, where: WhereInput = None, params: Any = None) -> int:
        value = self.db.scalar(self.builder.aggregate(table, "COUNT", "*", where, params))
        return int(value or 0)

    def exists(self, table: str, where: WhereInput = None, params: Any = None) -> bool:
        return self.count(table, where, params) > 0

    def sum(self, table: str, column: str, where: WhereInput = None, params: Any = None) -> Decimal:
        """SUM of `column`; an empty set sums to 0."""

        value = self.db.scalar(self.builder.aggregate(table, "SUM", column, where, params))
        return Decimal(0) if value is None else coerce_value(value, Decimal)

    def average(self, table: str, column: str, where: WhereInput = None, params: Any = None) -> Decimal:
        """AVG of `column`; an empty set averages to 0."""

        value = self.db.scalar(self.builder.aggregate(table, "AVG", column, where, params))
        return Decimal(0) if value is None else coerce_value(value, Decimal)

    def get_distinct(self, table: str, column: str) -> TableResult:
        return self.db.query(self.builder.distinct(table, column))

    def search(self, table: str, columns: Sequence[str], keyword: str) -> TableResult:
        """Rows where any of `columns` contains `keyword` (store collation decides case)."""

        return self.db.query(self.builder.search(table, columns, keyword))

    # -- listing -------------------------------------------------------------

    def get_top(
        self,
        table: str,
        top: int = 10,
        order_by: OrderInput = (OrderBy("Id", desc=True),),
    ) -> TableResult:
        return self.db.query(self.builder.top(table, top, order_by))

    def paginate(
        self,
        table: str,
        page: int,
        size: int,
        order_by: OrderInput = DEFAULT_ORDER,
        where: WhereInput = None,
        params: Any = None,
    ) -> TableResult:
        """Page `page` (1-based) of `size` rows."""

        if page < 1:
            raise ContractError("Page number must be >= 1.")
        statement = self.builder.page(
            table,
            limit=size,
            offset=(page - 1) * size,
            order_by=order_by,
            where=where,
            params=params,
        )
        return self.db.query(statement)

    def paginate_with_count(
        self,
        table: str,
        page: int,
        size: int,
        where: WhereInput = None,
        order_by: OrderInput = DEFAULT_ORDER,
        params: Any = None,
    ) -> PageResult:
        """One page plus the total count of the same filter, read consistently."""

        rows_stmt, count_stmt = self.builder.page_with_count(
            table,
            page=page,
            size=size,
            order_by=order_by,
            where=where,
            params=params,
        )
        with self._atomic():
            rows = self.db.query(rows_stmt)
            total = self.db.scalar(count_stmt)
        return PageResult(rows, int(total or 0))

    def join(
        self,
        left: str,
        right: str,
        on: str,
        columns: str = "*",
        where: WhereInput = None,
        params: Any = None,
    ) -> TableResult:
        """INNER JOIN of two tables; `on` and `columns` are trusted SQL text."""

        return self.db.query(self.builder.join(left, right, on, columns, where, params))

    # -- admin ---------------------------------------------------------------

    def clear_table(self, table: str) -> bool:
        return self.db.execute(self.builder.clear(table)) > 0

    def bulk_insert(self, table: str, rows: Iterable[Any]) -> OperationResult:
        """Insert all rows atomically; failures are reported, not raised.

        Every row must have the same columns in the same order.
        """

        try:
            statements = [self.builder.insert(table, _row_shape(row)) for row in rows]
            if not statements:
                return OperationResult.success()
            sql = statements[0].sql
            if any(statement.sql != sql for statement in statements):
                raise ContractError("Bulk insert rows must share one column layout.")
            dialect = self.db.dialect
            batch = [statement.driver_params(dialect) for statement in statements]
            sizes = batch_input_sizes(statements, dialect)
            with self._atomic():
                self.db.execute_many(sql, batch, input_sizes=sizes)
        except MiniDalError as exc:
            logger.warning("Bulk insert into %s failed: %s", table, exc)
            return OperationResult.failure(exc)
        return OperationResult.success()

    def backup(self, path: str) -> OperationResult:
        """Back the database up to `path`; failures are reported, not raised."""

        try:
            statement = self.builder.backup(path)
            if statement is None:
                raise UnsupportedOperationError(
                    f"Backup is not supported by the {self.db.dialect.name} dialect."
                )
            self.db.execute(statement)
        except MiniDalError as exc:
            logger.warning("Backup to %s failed: %s", path, exc)
            return OperationResult.failure(exc)
        return OperationResult.success()

    def ping(self) -> OperationResult:
        try:
            self.db.scalar("SELECT 1")
        except MiniDalError as exc:
            logger.warning("Ping failed: %s", exc)
            return OperationResult.failure(exc)
        return OperationResult.success()

    # -- transactions --------------------------------------------------------

    def execute_transaction(self, *commands: Any, raise_transient: bool = False) -> Any:
        """Run a batch of commands, or one unit of work, in a transaction.

        `execute_transaction(cmd1, cmd2, ...)` takes `Statement`s, SQL text,
        or `(sql, params)` pairs and returns an `OperationResult`. A failed
        batch, deadlocks and timeouts included, is reported as a falsy result
        rather than raised, so `execute_with_retry` around a batch does not
        retry it unless `raise_transient=True` lets the `TransientError`
        through.
        `execute_transaction(work)` calls `work(tx)` and returns `True` when
        it committed (work returned truthy), `False` when it rolled back.
        """

        if len(commands) == 1 and callable(commands[0]) and not isinstance(commands[0], Statement):
            return self.transactions.run_work(commands[0])
        if len(commands) == 1 and isinstance(commands[0], list):
            commands = tuple(commands[0])
        return self.transactions.run_batch(commands, raise_transient=raise_transient)

    def transaction(self) -> ContextManager[Transaction]:
        return self.db.transaction()

    # -- helpers -------------------------------------------------------------

    def upsert(
        self,
        table: str,
        key_column: str,
        data: Any,
        *,
        on_conflict: bool = False,
    ) -> bool:
        """Update the row with this key if it exists, insert it otherwise.

        Runs atomically and needs no unique constraint on `key_column`.
        `on_conflict=True` uses the engine's conflict clause instead.
        """

        statements = self.builder.upsert(table, key_column, data, on_conflict=on_conflict)
        with self._atomic():
            affected = sum(self.db.execute(statement) for statement in statements)
        return affected > 0

    def soft_delete(
        self,
        table: str,
        id: Any,
        key_column: str = "Id",
        deleted_column: str = "IsDeleted",
    ) -> bool:
        return self.db.execute(
            self.builder.set_flag(table, key_column, id, deleted_column, True)
        ) > 0

    def restore(
        self,
        table: str,
        id: Any,
        key_column: str = "Id",
        deleted_column: str = "IsDeleted",
    ) -> bool:
        return self.db.execute(
            self.builder.set_flag(table, key_column, id, deleted_column, False)
        ) > 0

    def touch(self, table: str, id: Any, key_column: str = "Id", column: str = "UpdatedAt") -> bool:
        """Set `column` to the store's current timestamp."""

        return self.db.execute(self.builder.touch(table, key_column, id, column)) > 0

    # -- stored procedures ---------------------------------------------------

    def exec_stored_procedure(self, procedure: str, params: Any = None, timeout: Optional[int] = None) -> int:
        statement = self.builder.procedure(procedure, params, returns_rows=False)
        logger.debug("EXEC %s", procedure)
        return self.db.execute(statement, timeout=timeout)

    def query_stored_procedure(
        self,
        procedure: str,
        params: Any = None,
        timeout: Optional[int] = None,
    ) -> TableResult:
        statement = self.builder.procedure(procedure, params, returns_rows=True)
        logger.debug("EXEC %s", procedure)
        return self.db.query(statement, timeout=timeout)

    # -- typed ---------------------------------------------------------------

    def query_single(self, model: Type[T], sql: Any, params: Any = None) -> Optional[T]:
        """First row mapped onto dataclass `model`, or `None`."""

        row = self.db.fetchone(sql, params)
        return None if row is None else map_row(model, row)

    def query_list(self, model: Type[T], sql: Any, params: Any = None) -> List[T]:
        return map_rows(model, self.db.fetchall(sql, params))

    # -- retry ---------------------------------------------------------------

    def execute_with_retry(self, operation: Callable[[], T], policy: Optional[RetryPolicy] = None) -> T:
        """Run `operation`, retrying timeouts and lock conflicts with backoff."""

        return execute_with_retry(operation, policy or self.retry_policy)

    # -- schema --------------------------------------------------------------

    def get_schema_tables(self) -> TableResult:
        return self.db.query(self.builder.list_tables())

    def get_schema_columns(self, table: str) -> TableResult:
        return self.db.query(self.builder.list_columns(table))

    def column_exists(self, table: str, column: str) -> bool:
        wanted = column.lower()
        return any(
            str(row["COLUMN_NAME"]).lower() == wanted
            for row in self.get_schema_columns(table)
        )

    # -- internals -----------------------------------------------------------

    def _atomic(self) -> ContextManager[Any]:
        if self.db.in_transaction:
            return contextlib.nullcontext()
        return self.db.transaction()


def _row_shape(row: Any) -> Any:
    if isinstance(row, TableRow):
        return PropertyBag(row.as_dict())
    return row
