"""mini_dal: statement-per-call data access over DB-API connections."""

from .config import DatabaseSettings, load_settings
from .core import (
    BinderOptions,
    BoundParameter,
    C,
    Condition,
    ContractError,
    DataAccess,
    DbConnectionError,
    DbType,
    MappingError,
    MiniDalError,
    OperationResult,
    OrderBy,
    PageResult,
    PropertyBag,
    RetryPolicy,
    Statement,
    StatementBuilder,
    StoreError,
    TableResult,
    TableRow,
    Transaction,
    TransactionState,
    TransientError,
    UnsupportedOperationError,
    bind_parameters,
    execute_with_retry,
    infer_db_type,
    map_row,
    map_rows,
    retrying,
)
from .ports.db_api import (
    Database,
    Dialect,
    MySQLDialect,
    PostgresDialect,
    SQLiteDialect,
    SQLServerDialect,
    connect_factory,
)

__all__ = [
    "DatabaseSettings",
    "load_settings",
    "BinderOptions",
    "BoundParameter",
    "C",
    "Condition",
    "ContractError",
    "DataAccess",
    "DbConnectionError",
    "DbType",
    "MappingError",
    "MiniDalError",
    "OperationResult",
    "OrderBy",
    "PageResult",
    "PropertyBag",
    "RetryPolicy",
    "Statement",
    "StatementBuilder",
    "StoreError",
    "TableResult",
    "TableRow",
    "Transaction",
    "TransactionState",
    "TransientError",
    "UnsupportedOperationError",
    "bind_parameters",
    "execute_with_retry",
    "infer_db_type",
    "map_row",
    "map_rows",
    "retrying",
    "Database",
    "Dialect",
    "MySQLDialect",
    "PostgresDialect",
    "SQLiteDialect",
    "SQLServerDialect",
    "connect_factory",
]
