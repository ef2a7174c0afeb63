"""Public core API: binding, statement building, mapping, transactions, facade."""

from .binder import BinderOptions, BoundParameter, ParamNameGenerator, PropertyBag, bind_parameters
from .conditions import C, Condition, ConditionGroup, NotCondition, OrderBy, WhereExpression
from .errors import (
    ContractError,
    DbConnectionError,
    MappingError,
    MiniDalError,
    StoreError,
    TransientError,
    UnsupportedOperationError,
)
from .facade import DataAccess
from .mapping import map_row, map_rows
from .results import OperationResult, PageResult, TableResult, TableRow
from .retry import RetryPolicy, execute_with_retry, retrying
from .statements import Statement, StatementBuilder, WhereInput
from .transactions import Transaction, TransactionCoordinator, TransactionState
from .type_inference import DbType, infer_db_type

__all__ = [
    "BinderOptions",
    "BoundParameter",
    "ParamNameGenerator",
    "PropertyBag",
    "bind_parameters",
    "C",
    "Condition",
    "ConditionGroup",
    "NotCondition",
    "OrderBy",
    "WhereExpression",
    "WhereInput",
    "ContractError",
    "DbConnectionError",
    "MappingError",
    "MiniDalError",
    "StoreError",
    "TransientError",
    "UnsupportedOperationError",
    "DataAccess",
    "map_row",
    "map_rows",
    "OperationResult",
    "PageResult",
    "TableResult",
    "TableRow",
    "RetryPolicy",
    "execute_with_retry",
    "retrying",
    "Statement",
    "StatementBuilder",
    "Transaction",
    "TransactionCoordinator",
    "TransactionState",
    "DbType",
    "infer_db_type",
]
