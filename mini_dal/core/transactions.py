"""Transaction handle, state machine and coordinator entry points."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Tuple, Union

from .contracts import ExecutorPort
from .errors import ContractError, MiniDalError, TransientError
from .results import OperationResult
from .statements import Statement

logger = logging.getLogger(__name__)

Command = Union[Statement, str, Tuple[Any, Any]]


class TransactionState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class Transaction:
    """Handle to the active transaction, handed to unit-of-work callables.

    Commands run through the handle share the transaction's connection. The
    handle is only usable while the transaction is ACTIVE.
    """

    def __init__(self, executor: ExecutorPort):
        self._executor = executor
        self.state = TransactionState.IDLE
        self.rollback_only = False

    @property
    def active(self) -> bool:
        return self.state is TransactionState.ACTIVE

    def execute(self, sql: Any, params: Any = None, *, timeout: Optional[int] = None) -> int:
        self._require_active()
        return self._executor.execute(sql, params, timeout=timeout)

    def scalar(self, sql: Any, params: Any = None, *, timeout: Optional[int] = None) -> Any:
        self._require_active()
        return self._executor.scalar(sql, params, timeout=timeout)

    def query(self, sql: Any, params: Any = None, *, timeout: Optional[int] = None) -> Any:
        self._require_active()
        return self._executor.query(sql, params, timeout=timeout)

    def set_rollback_only(self) -> None:
        """Make the owning scope roll back instead of committing."""

        self._require_active()
        self.rollback_only = True

    # -- state transitions (driven by the executor) --------------------------

    def _begin(self) -> None:
        if self.state is not TransactionState.IDLE:
            raise ContractError(f"Cannot begin a transaction in state {self.state.value}.")
        self.state = TransactionState.ACTIVE

    def _finish(self, committed: bool) -> None:
        self.state = TransactionState.COMMITTED if committed else TransactionState.ROLLED_BACK

    def _require_active(self) -> None:
        if self.state is not TransactionState.ACTIVE:
            raise ContractError(f"Transaction is {self.state.value}, not active.")

    def __repr__(self) -> str:
        return f"Transaction(state={self.state.value})"


class TransactionCoordinator:
    """Runs command batches or caller work under one transaction."""

    def __init__(self, executor: ExecutorPort):
        self.executor = executor

    def run_batch(
        self,
        commands: Iterable[Command],
        *,
        raise_transient: bool = False,
    ) -> OperationResult:
        """Run `commands` in order; commit all or none.

        Each command is a `Statement`, a SQL string, or a `(sql, params)`
        pair. A failing command rolls the batch back and is reported through
        the returned result instead of raised. With `raise_transient=True` a
        `TransientError` is re-raised after the rollback, so a retry wrapper
        can run the whole batch again. Beginning a batch inside an active
        transaction still raises `ContractError`.
        """

        pending = [_split_command(command) for command in commands]
        self._reject_nested()
        try:
            with self.executor.transaction() as tx:
                for sql, params in pending:
                    tx.execute(sql, params)
        except MiniDalError as exc:
            logger.warning("Transaction batch rolled back: %s", exc)
            if raise_transient and isinstance(exc, TransientError):
                raise
            return OperationResult.failure(exc)
        return OperationResult.success()

    def run_work(self, work: Callable[[Transaction], Any]) -> bool:
        """Run `work(tx)`; commit on a truthy result, roll back otherwise.

        Exceptions raised by `work` roll the transaction back and propagate.
        """

        self._reject_nested()
        with self.executor.transaction() as tx:
            ok = bool(work(tx))
            if not ok:
                tx.set_rollback_only()
        return ok

    def _reject_nested(self) -> None:
        if getattr(self.executor, "in_transaction", False):
            raise ContractError("Nested transactions are not supported.")


def _split_command(command: Command) -> Tuple[Any, Any]:
    if isinstance(command, (Statement, str)):
        return command, None
    if isinstance(command, tuple) and len(command) == 2:
        return command[0], command[1]
    raise ContractError(
        "Transaction commands must be Statement, SQL text, or (sql, params) pairs."
    )
