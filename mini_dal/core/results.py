"""Tabular result containers returned by the executor and facade."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Sequence, Tuple, Union


class TableRow:
    """One row aligned to its result's column list.

    Values are reachable by position or by case-insensitive column name.
    """

    __slots__ = ("_columns", "_index", "_values")

    def __init__(self, columns: Tuple[str, ...], index: Dict[str, int], values: Tuple[Any, ...]):
        self._columns = columns
        self._index = index
        self._values = values

    def __getitem__(self, key: Union[int, str]) -> Any:
        if isinstance(key, int):
            return self._values[key]
        position = self._index.get(key.lower())
        if position is None:
            raise KeyError(key)
        return self._values[position]

    def get(self, column: str, default: Any = None) -> Any:
        position = self._index.get(column.lower())
        return default if position is None else self._values[position]

    @property
    def values(self) -> Tuple[Any, ...]:
        return self._values

    def as_dict(self) -> Dict[str, Any]:
        return dict(zip(self._columns, self._values))

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, TableRow):
            return self._columns == other._columns and self._values == other._values
        return NotImplemented

    def __repr__(self) -> str:
        return f"TableRow({self.as_dict()!r})"


def column_index(columns: Sequence[str]) -> Dict[str, int]:
    """Case-insensitive name -> position; the first duplicate wins."""

    index: Dict[str, int] = {}
    for position, name in enumerate(columns):
        index.setdefault(name.lower(), position)
    return index


class TableResult:
    """Ordered column names plus ordered rows, in the store's projection order.

    Usage:
        result = db.query("SELECT id, name FROM users")
        result.columns        # ("id", "name")
        result[0]["NAME"]     # case-insensitive lookup
        result.column("id")   # every value of one column
    """

    def __init__(self, columns: Sequence[str], rows: Sequence[Sequence[Any]] = ()):
        self.columns: Tuple[str, ...] = tuple(columns)
        self._index = column_index(self.columns)
        self.rows: List[TableRow] = [
            TableRow(self.columns, self._index, tuple(values)) for values in rows
        ]

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[TableRow]:
        return iter(self.rows)

    def __getitem__(self, position: int) -> TableRow:
        return self.rows[position]

    def __bool__(self) -> bool:
        return bool(self.rows)

    def has_column(self, name: str) -> bool:
        return name.lower() in self._index

    def column(self, name: str) -> List[Any]:
        position = self._index.get(name.lower())
        if position is None:
            raise KeyError(name)
        return [row.values[position] for row in self.rows]

    def first(self) -> Optional[TableRow]:
        return self.rows[0] if self.rows else None

    def as_dicts(self) -> List[Dict[str, Any]]:
        return [row.as_dict() for row in self.rows]

    def __repr__(self) -> str:
        return f"TableResult(columns={self.columns!r}, rows={len(self.rows)})"


class PageResult(NamedTuple):
    """One page of rows plus the total row count of the same filter."""

    rows: TableResult
    total_count: int


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a best-effort operation.

    Falsy on failure; `error` then carries the reason.
    """

    ok: bool
    error: Optional[BaseException] = None

    def __bool__(self) -> bool:
        return self.ok

    @property
    def reason(self) -> Optional[str]:
        return None if self.error is None else str(self.error)

    @classmethod
    def success(cls) -> OperationResult:
        return cls(True)

    @classmethod
    def failure(cls, error: BaseException) -> OperationResult:
        return cls(False, error)
