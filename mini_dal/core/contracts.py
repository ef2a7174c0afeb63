"""Core port contracts used by the statement builder, coordinator and facade."""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Any, Callable, Iterator, List, Optional, Protocol, Sequence

from .binder import BoundParameter
from .types import DriverParams, MaybeRow, Rows

Placeholder = Callable[[str], str]


class DialectPort(Protocol):
    """Dialect behavior required by statement building and execution."""

    name: str
    paramstyle: str
    now_sql: str
    checked_upsert: bool

    @property
    def uses_names(self) -> bool: ...

    def q(self, ident: str) -> str: ...

    def placeholder(self, key: str) -> str: ...

    def window_clause(self, ph: Placeholder, limit_key: str, offset_key: str) -> str: ...

    def top_sql(self, body: str, count: int) -> str: ...

    def upsert_sql(
        self,
        table: str,
        key: str,
        columns: Sequence[str],
        ph: Placeholder,
    ) -> str: ...

    def insert_missing_sql(
        self,
        table: str,
        key: str,
        columns: Sequence[str],
        ph: Placeholder,
    ) -> str: ...

    def procedure_sql(
        self,
        procedure: str,
        arguments: Sequence[str],
        ph: Placeholder,
        *,
        returns_rows: bool,
    ) -> str: ...

    def list_tables_sql(self) -> str: ...

    def list_columns_sql(self, ph: Placeholder, table_key: str) -> str: ...

    def backup_sql(self, path: str) -> Optional[str]: ...

    def adapt_value(self, param: BoundParameter) -> Any: ...

    def input_sizes(self, params: Sequence[BoundParameter]) -> Optional[List[Any]]: ...


class ExecutorPort(Protocol):
    """Command executor behavior required by the transaction coordinator and facade."""

    dialect: DialectPort

    def transaction(self) -> AbstractContextManager[Any]: ...

    def execute(self, sql: Any, params: Any = None, *, timeout: Optional[int] = None) -> int: ...

    def scalar(self, sql: Any, params: Any = None, *, timeout: Optional[int] = None) -> Any: ...

    def query(self, sql: Any, params: Any = None, *, timeout: Optional[int] = None) -> Any: ...

    def fetchone(self, sql: Any, params: Any = None) -> MaybeRow: ...

    def fetchall(self, sql: Any, params: Any = None) -> Rows: ...

    def reader(self, sql: Any, params: Any = None) -> AbstractContextManager[Iterator[Any]]: ...

    def execute_many(
        self,
        sql: str,
        rows: List[DriverParams],
        *,
        input_sizes: Optional[List[Any]] = None,
    ) -> int: ...

    def close(self) -> None: ...
