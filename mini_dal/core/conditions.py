"""Safe filter expressions compiled with quoted columns and bound values.

These are the hardened alternative to free-text WHERE fragments: columns go
through identifier quoting and every value becomes a bound parameter.
"""

from __future__ import annotations

from collections.abc import Sequence as SequenceABC
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from .errors import ContractError


@dataclass(frozen=True)
class Condition:
    """One column predicate.

    Attributes:
        col: Raw column name (quoted at compile time).
        op: SQL operator (`=`, `<>`, `LIKE`, `IN`, `IS NULL`, ...).
        value: Scalar operand for binary operators.
        values: Operands for `IN` / `NOT IN` / `BETWEEN`.
        is_unary: Whether the operator takes no operand.
    """

    col: str
    op: str
    value: Any = None
    values: Optional[Sequence[Any]] = None
    is_unary: bool = False


@dataclass(frozen=True)
class ConditionGroup:
    """`AND` / `OR` group of expressions."""

    operator: str
    items: tuple["WhereExpression", ...]


@dataclass(frozen=True)
class NotCondition:
    """Negated expression."""

    item: "WhereExpression"


WhereExpression = Condition | ConditionGroup | NotCondition


class C:
    """Condition factory methods."""

    @staticmethod
    def eq(col: str, val: Any) -> Condition:
        return Condition(col=col, op="=", value=val)

    @staticmethod
    def ne(col: str, val: Any) -> Condition:
        return Condition(col=col, op="<>", value=val)

    @staticmethod
    def lt(col: str, val: Any) -> Condition:
        return Condition(col=col, op="<", value=val)

    @staticmethod
    def le(col: str, val: Any) -> Condition:
        return Condition(col=col, op="<=", value=val)

    @staticmethod
    def gt(col: str, val: Any) -> Condition:
        return Condition(col=col, op=">", value=val)

    @staticmethod
    def ge(col: str, val: Any) -> Condition:
        return Condition(col=col, op=">=", value=val)

    @staticmethod
    def like(col: str, pattern: str) -> Condition:
        """Build `col LIKE pattern`; the caller supplies the wildcards."""

        return Condition(col=col, op="LIKE", value=pattern)

    @staticmethod
    def contains(col: str, keyword: str) -> Condition:
        """Build `col LIKE %keyword%`."""

        return Condition(col=col, op="LIKE", value=f"%{keyword}%")

    @staticmethod
    def between(col: str, low: Any, high: Any) -> Condition:
        return Condition(col=col, op="BETWEEN", values=(low, high))

    @staticmethod
    def is_null(col: str) -> Condition:
        return Condition(col=col, op="IS NULL", is_unary=True)

    @staticmethod
    def is_not_null(col: str) -> Condition:
        return Condition(col=col, op="IS NOT NULL", is_unary=True)

    @staticmethod
    def in_(col: str, values: Sequence[Any]) -> Condition:
        return Condition(col=col, op="IN", values=tuple(values))

    @staticmethod
    def not_in(col: str, values: Sequence[Any]) -> Condition:
        return Condition(col=col, op="NOT IN", values=tuple(values))

    @staticmethod
    def and_(*items: WhereExpression | Sequence[WhereExpression]) -> ConditionGroup:
        return ConditionGroup(operator="AND", items=C._normalize_group_items(items))

    @staticmethod
    def or_(*items: WhereExpression | Sequence[WhereExpression]) -> ConditionGroup:
        return ConditionGroup(operator="OR", items=C._normalize_group_items(items))

    @staticmethod
    def not_(item: WhereExpression) -> NotCondition:
        C._ensure_expr(item)
        return NotCondition(item=item)

    @staticmethod
    def _normalize_group_items(
        items: Sequence[WhereExpression | Sequence[WhereExpression]],
    ) -> tuple[WhereExpression, ...]:
        normalized_input: Sequence[Any]
        if (
            len(items) == 1
            and isinstance(items[0], SequenceABC)
            and not isinstance(items[0], (str, bytes))
        ):
            normalized_input = items[0]
        else:
            normalized_input = items

        normalized: list[WhereExpression] = []
        for item in normalized_input:
            C._ensure_expr(item)
            normalized.append(item)

        if not normalized:
            raise ContractError("Grouped condition must contain at least one expression.")
        return tuple(normalized)

    @staticmethod
    def _ensure_expr(item: Any) -> None:
        if not isinstance(item, (Condition, ConditionGroup, NotCondition)):
            raise TypeError(
                "Expression must be Condition, ConditionGroup, or NotCondition."
            )


@dataclass(frozen=True)
class OrderBy:
    """One ordering column, quoted at compile time."""

    col: str
    desc: bool = False
