"""DB-API adapter and dialect exports."""

from .connect import connect_factory
from .database import Database
from .dialects import Dialect, MySQLDialect, PostgresDialect, SQLiteDialect, SQLServerDialect

__all__ = [
    "Database",
    "Dialect",
    "MySQLDialect",
    "PostgresDialect",
    "SQLiteDialect",
    "SQLServerDialect",
    "connect_factory",
]
