"""Error hierarchy raised by the data-access layer."""

from __future__ import annotations

from typing import Any, Optional


class MiniDalError(Exception):
    """Base error for every failure raised by mini_dal.

    Attributes:
        code: Native store error code/number when one is known.
        sql: SQL text of the statement that failed, when relevant.
    """

    def __init__(
        self,
        message: str,
        *,
        code: Any = None,
        sql: Optional[str] = None,
    ):
        super().__init__(message)
        self.code = code
        self.sql = sql


class DbConnectionError(MiniDalError):
    """The store connection cannot be opened, reopened, or was disposed."""


class StoreError(MiniDalError):
    """Store failure reported by the driver (constraint, syntax, permission).

    Never retried unless it is a `TransientError`.
    """


class TransientError(StoreError):
    """Timeout or lock contention failure that may succeed when retried."""


class MappingError(MiniDalError, ValueError):
    """A result value cannot be coerced to the requested field type."""


class ContractError(MiniDalError, ValueError):
    """Caller violated a precondition of an operation."""


class UnsupportedOperationError(ContractError):
    """The active dialect has no implementation for the requested operation."""
