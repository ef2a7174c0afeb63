"""Public port exports for concrete adapter implementations."""

from .db_api import (
    Database,
    Dialect,
    MySQLDialect,
    PostgresDialect,
    SQLiteDialect,
    SQLServerDialect,
    connect_factory,
)

__all__ = [
    "Database",
    "Dialect",
    "SQLiteDialect",
    "PostgresDialect",
    "MySQLDialect",
    "SQLServerDialect",
    "connect_factory",
]
