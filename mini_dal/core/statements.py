"""SQL statement builders for the data-access facade.

Every builder returns an immutable `Statement`: SQL text plus its bound
parameters and the order in which placeholders occur. Identifiers always go
through `dialect.q()`. Free-text fragments (conditions, order-by, join
predicates, column lists) are embedded verbatim: they are a trusted-input
extension point. Use `Condition` expressions / `OrderBy` for untrusted input.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

from .binder import (
    BinderOptions,
    BoundParameter,
    ParamNameGenerator,
    PropertyBag,
    bind_parameters,
    bind_value,
)
from .conditions import Condition, ConditionGroup, NotCondition, OrderBy, WhereExpression
from .contracts import DialectPort
from .errors import ContractError
from .types import DriverParams

WhereInput = Union[str, WhereExpression, Sequence[WhereExpression], None]
OrderInput = Union[str, Sequence[OrderBy], None]

AGGREGATES = frozenset({"SUM", "AVG", "MIN", "MAX", "COUNT"})


@dataclass(frozen=True)
class Statement:
    """SQL text plus its bound parameters.

    Attributes:
        sql: SQL text with dialect placeholders.
        parameters: Unique bound parameters.
        order: Parameter names in placeholder-occurrence order (may repeat).
    """

    sql: str
    parameters: Tuple[BoundParameter, ...] = ()
    order: Tuple[str, ...] = field(default=())

    def driver_params(self, dialect: DialectPort) -> DriverParams:
        """Render parameters for `cursor.execute` in the dialect's style."""

        if not self.parameters:
            return None
        by_name = {param.name: param for param in self.parameters}
        if dialect.uses_names:
            return {name: dialect.adapt_value(param) for name, param in by_name.items()}
        order = self.order or tuple(by_name)
        return [dialect.adapt_value(by_name[name]) for name in order]

    def input_sizes(self, dialect: DialectPort) -> Optional[List[Any]]:
        """Driver input sizes aligned with `driver_params`, or `None`."""

        if not self.parameters:
            return None
        by_name = {param.name: param for param in self.parameters}
        if dialect.uses_names:
            return dialect.input_sizes(list(by_name.values()))
        order = self.order or tuple(by_name)
        return dialect.input_sizes([by_name[name] for name in order])

    def param(self, name: str) -> BoundParameter:
        for param in self.parameters:
            if param.name == name:
                return param
        raise KeyError(name)


class _Writer:
    """Accumulates parameters and placeholder order for one statement."""

    def __init__(self, dialect: DialectPort, options: BinderOptions):
        self.dialect = dialect
        self.options = options
        self.names = ParamNameGenerator()
        self.params: List[BoundParameter] = []
        self.order: List[str] = []

    def bind_bag(self, bag: PropertyBag) -> List[BoundParameter]:
        bound = bind_parameters(bag, self.options, self.names)
        self.params.extend(bound)
        return bound

    def bind(self, column: str, value: Any, declared: Any = None) -> str:
        """Bind one value and return its parameter name."""

        param = bind_value(column, value, self.options, self.names.next(column), declared)
        self.params.append(param)
        return param.name

    def bind_raw(self, params: Any) -> None:
        """Bind caller-named params used by a trusted free-text fragment."""

        if params is None:
            return
        bag = PropertyBag.from_shape(params)
        for entry in bag.entries:
            self.names.reserve(entry.column)
            param = bind_value(entry.column, entry.value, self.options, entry.column, entry.declared)
            self.params.append(param)
            self.order.append(param.name)

    def ph(self, name: str) -> str:
        """Render the placeholder for a bound parameter and record it."""

        self.order.append(name)
        return self.dialect.placeholder(name)

    def column_ph(self, bound: Sequence[BoundParameter]) -> Callable[[str], str]:
        """Placeholder callback keyed by column name instead of parameter name."""

        by_column = {param.column.lower(): param.name for param in bound}
        return lambda column: self.ph(by_column.get(column.lower(), column))

    def statement(self, sql: str) -> Statement:
        return Statement(sql=sql, parameters=tuple(self.params), order=tuple(self.order))


class StatementBuilder:
    """Builds parameterized statements for one dialect."""

    def __init__(self, dialect: DialectPort, options: Optional[BinderOptions] = None):
        self.d = dialect
        self.options = options or BinderOptions()

    def _writer(self) -> _Writer:
        return _Writer(self.d, self.options)

    # -- pass-through --------------------------------------------------------

    def text(self, sql: str, params: Any = None) -> Statement:
        """Wrap caller SQL; params bind by their own names in bag order."""

        if isinstance(params, Statement):
            raise ContractError("Pass a Statement directly, not as params.")
        w = self._writer()
        w.bind_raw(params)
        return w.statement(sql)

    # -- CRUD ----------------------------------------------------------------

    def insert(self, table: str, data: Any) -> Statement:
        bag = _require_bag(data, "INSERT")
        w = self._writer()
        bound = w.bind_bag(bag)
        columns = ", ".join(self.d.q(param.column) for param in bound)
        values = ", ".join(w.ph(param.name) for param in bound)
        return w.statement(f"INSERT INTO {self.d.q(table)} ({columns}) VALUES ({values})")

    def update(self, table: str, data: Any, key: str) -> Statement:
        bag = _require_bag(data, "UPDATE")
        key_entry = _require_key(bag, key)
        settable = bag.without(key)
        if not len(settable):
            raise ContractError(
                f"Cannot UPDATE {table!r}: no columns besides key {key!r}."
            )
        w = self._writer()
        bound = w.bind_bag(settable)
        key_name = w.bind(key_entry.column, key_entry.value, key_entry.declared)
        set_clause = ", ".join(
            f"{self.d.q(param.column)} = {w.ph(param.name)}" for param in bound
        )
        return w.statement(
            f"UPDATE {self.d.q(table)} SET {set_clause} "
            f"WHERE {self.d.q(key)} = {w.ph(key_name)}"
        )

    def delete(self, table: str, key: str, key_value: Any) -> Statement:
        w = self._writer()
        name = w.bind(key, key_value)
        return w.statement(f"DELETE FROM {self.d.q(table)} WHERE {self.d.q(key)} = {w.ph(name)}")

    def select_by_key(self, table: str, key: str, key_value: Any) -> Statement:
        w = self._writer()
        name = w.bind(key, key_value)
        return w.statement(f"SELECT * FROM {self.d.q(table)} WHERE {self.d.q(key)} = {w.ph(name)}")

    def upsert(
        self,
        table: str,
        key: str,
        data: Any,
        *,
        on_conflict: bool = False,
    ) -> List[Statement]:
        """Insert-or-update statements keyed by `key`, to run in one transaction.

        By default the row is updated by key and then inserted only when the
        key does not exist, so no unique constraint is needed. Dialects whose
        `upsert_sql` checks existence itself yield one statement.
        `on_conflict=True` uses the engine's conflict clause instead, which
        needs a PRIMARY KEY or UNIQUE constraint on `key`.
        """

        bag = _require_bag(data, "UPSERT")
        _require_key(bag, key)
        if on_conflict or self.d.checked_upsert:
            w = self._writer()
            bound = w.bind_bag(bag)
            return [w.statement(self.d.upsert_sql(table, key, bag.columns, w.column_ph(bound)))]
        statements = []
        if len(bag.without(key)):
            statements.append(self.update(table, bag, key))
        statements.append(self.insert_missing(table, key, bag))
        return statements

    def insert_missing(self, table: str, key: str, data: Any) -> Statement:
        """`INSERT ... SELECT ... WHERE NOT EXISTS` on the row's key value."""

        bag = _require_bag(data, "INSERT")
        _require_key(bag, key)
        w = self._writer()
        bound = w.bind_bag(bag)
        return w.statement(self.d.insert_missing_sql(table, key, bag.columns, w.column_ph(bound)))

    def set_flag(self, table: str, key: str, key_value: Any, column: str, flag: bool) -> Statement:
        """`UPDATE table SET column = flag WHERE key = value` (soft delete/restore)."""

        w = self._writer()
        flag_name = w.bind(column, bool(flag))
        key_name = w.bind(key, key_value)
        return w.statement(
            f"UPDATE {self.d.q(table)} SET {self.d.q(column)} = {w.ph(flag_name)} "
            f"WHERE {self.d.q(key)} = {w.ph(key_name)}"
        )

    def touch(self, table: str, key: str, key_value: Any, column: str) -> Statement:
        w = self._writer()
        key_name = w.bind(key, key_value)
        return w.statement(
            f"UPDATE {self.d.q(table)} SET {self.d.q(column)} = {self.d.now_sql} "
            f"WHERE {self.d.q(key)} = {w.ph(key_name)}"
        )

    def clear(self, table: str) -> Statement:
        return Statement(f"DELETE FROM {self.d.q(table)}")

    # -- reads ---------------------------------------------------------------

    def search(self, table: str, columns: Sequence[str], keyword: str) -> Statement:
        """OR-joined `LIKE` over `columns` against one shared `%keyword%` param."""

        if not columns:
            raise ContractError("Search requires at least one column.")
        w = self._writer()
        name = w.bind("keyword", f"%{keyword}%")
        predicates = " OR ".join(f"{self.d.q(col)} LIKE {w.ph(name)}" for col in columns)
        return w.statement(f"SELECT * FROM {self.d.q(table)} WHERE {predicates}")

    def aggregate(
        self,
        table: str,
        function: str,
        column: str = "*",
        where: WhereInput = None,
        params: Any = None,
    ) -> Statement:
        func = function.upper()
        if func not in AGGREGATES:
            raise ContractError(f"Unsupported aggregate {function!r}.")
        target = "*" if column == "*" else self.d.q(column)
        if target == "*" and func != "COUNT":
            raise ContractError(f"{func} requires a column.")
        w = self._writer()
        where_sql = self._where(w, where, params)
        return w.statement(f"SELECT {func}({target}) FROM {self.d.q(table)}{where_sql}")

    def distinct(self, table: str, column: str) -> Statement:
        return Statement(f"SELECT DISTINCT {self.d.q(column)} FROM {self.d.q(table)}")

    def top(
        self,
        table: str,
        count: int,
        order_by: OrderInput = None,
        where: WhereInput = None,
        params: Any = None,
    ) -> Statement:
        """First `count` rows; the count is validated and inlined as an integer."""

        if int(count) < 1:
            raise ContractError("Top count must be >= 1.")
        w = self._writer()
        where_sql = self._where(w, where, params)
        order_sql = self._order_by(order_by) if order_by else ""
        return w.statement(self.d.top_sql(f"* FROM {self.d.q(table)}{where_sql}{order_sql}", count))

    def page(
        self,
        table: str,
        *,
        limit: int,
        offset: int = 0,
        order_by: OrderInput,
        where: WhereInput = None,
        params: Any = None,
    ) -> Statement:
        """`SELECT *` with filter, `ORDER BY` and a skip/take window."""

        if limit < 1:
            raise ContractError("Page size/limit must be >= 1.")
        if offset < 0:
            raise ContractError("Offset must be >= 0.")
        w = self._writer()
        where_sql = self._where(w, where, params)
        order_sql = self._order_by(order_by)
        limit_name = w.bind("_limit", int(limit))
        offset_name = w.bind("_offset", int(offset))
        window = self.d.window_clause(w.ph, limit_name, offset_name)
        return w.statement(f"SELECT * FROM {self.d.q(table)}{where_sql}{order_sql}{window}")

    def page_with_count(
        self,
        table: str,
        *,
        page: int,
        size: int,
        order_by: OrderInput,
        where: WhereInput = None,
        params: Any = None,
    ) -> Tuple[Statement, Statement]:
        """Twin statements: the requested page and `COUNT(*)` of the same filter."""

        if page < 1:
            raise ContractError("Page number must be >= 1.")
        rows = self.page(
            table,
            limit=size,
            offset=(page - 1) * size,
            order_by=order_by,
            where=where,
            params=params,
        )
        total = self.aggregate(table, "COUNT", "*", where=where, params=params)
        return rows, total

    def join(
        self,
        left: str,
        right: str,
        on: str,
        columns: str = "*",
        where: WhereInput = None,
        params: Any = None,
    ) -> Statement:
        if not on or not on.strip():
            raise ContractError("Join requires an ON predicate.")
        w = self._writer()
        where_sql = self._where(w, where, params)
        return w.statement(
            f"SELECT {columns or '*'} FROM {self.d.q(left)} "
            f"INNER JOIN {self.d.q(right)} ON {on}{where_sql}"
        )

    # -- procedures / admin / schema -----------------------------------------

    def procedure(self, procedure: str, params: Any = None, *, returns_rows: bool) -> Statement:
        w = self._writer()
        bound = w.bind_bag(PropertyBag.from_shape(params))
        sql = self.d.procedure_sql(
            procedure,
            [param.column for param in bound],
            w.column_ph(bound),
            returns_rows=returns_rows,
        )
        return w.statement(sql)

    def list_tables(self) -> Statement:
        return Statement(self.d.list_tables_sql())

    def list_columns(self, table: str) -> Statement:
        w = self._writer()
        name = w.bind("table_name", table)
        return w.statement(self.d.list_columns_sql(w.ph, name))

    def backup(self, path: str) -> Optional[Statement]:
        sql = self.d.backup_sql(path)
        return None if sql is None else Statement(sql)

    # -- fragments -----------------------------------------------------------

    def _where(self, w: _Writer, where: WhereInput, params: Any) -> str:
        if where is None:
            if params is not None:
                raise ContractError("Parameters given without a condition.")
            return ""
        if isinstance(where, str):
            if not where.strip():
                return ""
            w.bind_raw(params)
            return f" WHERE {where}"
        if params is not None:
            raise ContractError("Condition expressions bind their own values.")
        items = [where] if isinstance(where, (Condition, ConditionGroup, NotCondition)) else list(where)
        if not items:
            return ""
        clauses = [self._compile(w, item) for item in items]
        return f" WHERE {' AND '.join(clauses)}"

    def _compile(self, w: _Writer, expr: WhereExpression) -> str:
        if isinstance(expr, ConditionGroup):
            inner = f" {expr.operator} ".join(self._compile(w, item) for item in expr.items)
            return f"({inner})"
        if isinstance(expr, NotCondition):
            return f"NOT ({self._compile(w, expr.item)})"
        return self._compile_condition(w, expr)

    def _compile_condition(self, w: _Writer, cond: Condition) -> str:
        col_sql = self.d.q(cond.col)
        if cond.is_unary:
            return f"{col_sql} {cond.op}"

        if cond.op in {"IN", "NOT IN"}:
            values = list(cond.values or [])
            if not values:
                return "1=0" if cond.op == "IN" else "1=1"
            names = [w.bind(cond.col, value) for value in values]
            return f"{col_sql} {cond.op} ({', '.join(w.ph(name) for name in names)})"

        if cond.op == "BETWEEN":
            low, high = list(cond.values or (None, None))
            low_name = w.bind(cond.col, low)
            high_name = w.bind(cond.col, high)
            return f"{col_sql} BETWEEN {w.ph(low_name)} AND {w.ph(high_name)}"

        name = w.bind(cond.col, cond.value)
        return f"{col_sql} {cond.op} {w.ph(name)}"

    def _order_by(self, order_by: OrderInput) -> str:
        if order_by is None:
            raise ContractError("Pagination requires an ORDER BY.")
        if isinstance(order_by, str):
            if not order_by.strip():
                raise ContractError("Pagination requires an ORDER BY.")
            return f" ORDER BY {order_by}"
        items = list(order_by)
        if not items:
            raise ContractError("Pagination requires an ORDER BY.")
        cols = ", ".join(
            f"{self.d.q(item.col)} {'DESC' if item.desc else 'ASC'}" for item in items
        )
        return f" ORDER BY {cols}"


def _require_bag(data: Any, verb: str) -> PropertyBag:
    bag = PropertyBag.from_shape(data)
    if not len(bag):
        raise ContractError(f"Cannot build {verb} from an empty property bag.")
    return bag


def _require_key(bag: PropertyBag, key: str):
    entry = bag.find(key)
    if entry is None:
        raise ContractError(f"Property bag has no value for key column {key!r}.")
    return entry


def key_value(data: Any, key: str) -> Any:
    """Return the key value from a bag-like shape, or `data` itself if scalar."""

    if isinstance(data, (PropertyBag, Mapping)) or _is_record(data):
        return _require_key(PropertyBag.from_shape(data), key).value
    return data


def _is_record(data: Any) -> bool:
    return hasattr(data, "__dataclass_fields__") and not isinstance(data, type)


def batch_input_sizes(
    statements: Sequence[Statement],
    dialect: DialectPort,
) -> Optional[List[Any]]:
    """Widen per-position input sizes across the statements of one batch.

    Entries are `(sql_type, size, digits)` tuples; a size of 0 means
    unbounded and wins over any other size.
    """

    merged: Optional[List[Any]] = None
    for statement in statements:
        sizes = statement.input_sizes(dialect)
        if sizes is None:
            continue
        if merged is None:
            merged = list(sizes)
            continue
        for position, entry in enumerate(sizes):
            current = merged[position]
            if current is None:
                merged[position] = entry
            elif entry is not None and entry[0] == current[0]:
                size = 0 if 0 in (entry[1], current[1]) else max(entry[1], current[1])
                merged[position] = (current[0], size, max(entry[2], current[2]))
    return merged
