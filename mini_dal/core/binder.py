"""Property bags and their conversion to named, typed bound parameters."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, fields, is_dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Any, NamedTuple, Optional, Type, get_type_hints

from .errors import ContractError
from .type_inference import DbType, infer_db_type


class BagEntry(NamedTuple):
    """One column of a property bag."""

    column: str
    value: Any
    declared: Any = None


class PropertyBag:
    """Ordered column -> value mapping describing one row's writable data.

    Columns are unique case-insensitively. Entries may carry a declared type,
    used to type null values when binding.

    Usage:
        PropertyBag({"First_Name": "Ann"}).with_column("Age", None, declared=int)
    """

    def __init__(
        self,
        data: Mapping[str, Any] | Iterable[tuple[str, Any]] | None = None,
        /,
        **columns: Any,
    ):
        self._entries: list[BagEntry] = []
        self._index: dict[str, int] = {}
        if data is not None:
            items = data.items() if isinstance(data, Mapping) else data
            for column, value in items:
                self.with_column(column, value)
        for column, value in columns.items():
            self.with_column(column, value)

    @classmethod
    def from_shape(cls, shape: Any) -> PropertyBag:
        """Normalize a bag, mapping, or dataclass instance into a `PropertyBag`."""

        if isinstance(shape, PropertyBag):
            return shape
        if shape is None:
            return cls()
        if isinstance(shape, Mapping):
            return cls(shape)
        if is_dataclass(shape) and not isinstance(shape, type):
            bag = cls()
            hints = _record_type_hints(type(shape))
            for f in fields(shape):
                if f.name.startswith("_"):
                    continue
                bag.with_column(
                    f.name,
                    getattr(shape, f.name),
                    declared=hints.get(f.name, f.type),
                )
            return bag
        raise ContractError(
            "Expected PropertyBag, mapping, or dataclass instance, got "
            f"{type(shape).__name__}."
        )

    def with_column(self, column: str, value: Any, *, declared: Any = None) -> PropertyBag:
        """Append one column and return the bag for chaining."""

        if not isinstance(column, str) or not column:
            raise ContractError("Column name must be a non-empty string.")
        key = column.lower()
        if key in self._index:
            raise ContractError(f"Duplicate column {column!r} in property bag.")
        self._index[key] = len(self._entries)
        self._entries.append(BagEntry(column, value, declared))
        return self

    def without(self, column: str) -> PropertyBag:
        """Return a new bag lacking `column` (case-insensitive)."""

        key = column.lower()
        bag = PropertyBag()
        for entry in self._entries:
            if entry.column.lower() != key:
                bag.with_column(entry.column, entry.value, declared=entry.declared)
        return bag

    def find(self, column: str) -> Optional[BagEntry]:
        """Return the entry for `column` (case-insensitive) or `None`."""

        position = self._index.get(column.lower())
        return None if position is None else self._entries[position]

    def get(self, column: str, default: Any = None) -> Any:
        entry = self.find(column)
        return default if entry is None else entry.value

    @property
    def columns(self) -> list[str]:
        return [entry.column for entry in self._entries]

    @property
    def entries(self) -> tuple[BagEntry, ...]:
        return tuple(self._entries)

    def items(self) -> list[tuple[str, Any]]:
        return [(entry.column, entry.value) for entry in self._entries]

    def __contains__(self, column: object) -> bool:
        return isinstance(column, str) and column.lower() in self._index

    def __iter__(self) -> Iterator[str]:
        return iter(self.columns)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"PropertyBag({dict(self.items())!r})"


@dataclass(frozen=True)
class BinderOptions:
    """Binding hints applied to text and decimal parameters.

    Attributes:
        max_text_size: Longest text that still gets an explicit size hint.
        decimal_precision: Default precision for decimal parameters.
        decimal_scale: Default scale; dialects quantize decimals to it.
        infer_decimal_precision: Read precision/scale from each value instead.
    """

    max_text_size: int = 4000
    decimal_precision: int = 18
    decimal_scale: int = 6
    infer_decimal_precision: bool = False


@dataclass(frozen=True)
class BoundParameter:
    """One named, typed parameter of a statement."""

    name: str
    column: str
    db_type: DbType
    value: Any
    size: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None


class ParamNameGenerator:
    """Generates safe, unique parameter names within one statement."""

    def __init__(self) -> None:
        self._taken: set[str] = set()

    def next(self, base: str) -> str:
        """Return `base` sanitized, suffixed with `_N` when already taken."""

        safe = "".join(ch if ch.isalnum() or ch == "_" else "_" for ch in base)
        if not safe or safe[0].isdigit():
            safe = f"p_{safe}"
        candidate = safe
        counter = 1
        while candidate.lower() in self._taken:
            counter += 1
            candidate = f"{safe}_{counter}"
        self._taken.add(candidate.lower())
        return candidate

    def reserve(self, name: str) -> None:
        """Mark a caller-chosen name as used; duplicates are a contract error."""

        if name.lower() in self._taken:
            raise ContractError(f"Duplicate parameter name {name!r}.")
        self._taken.add(name.lower())


def bind_parameters(
    shape: Any,
    options: BinderOptions | None = None,
    names: ParamNameGenerator | None = None,
) -> list[BoundParameter]:
    """Convert a property bag (or mapping/dataclass) into bound parameters.

    Args:
        shape: `PropertyBag`, mapping, dataclass instance, or `None`.
        options: Text/decimal hint options.
        names: Shared name generator when binding into a larger statement.

    Returns:
        Parameters in bag order, one per column.
    """

    opts = options or BinderOptions()
    generator = names or ParamNameGenerator()
    bag = PropertyBag.from_shape(shape)
    return [
        bind_value(entry.column, entry.value, opts, generator.next(entry.column), entry.declared)
        for entry in bag.entries
    ]


def bind_value(
    column: str,
    value: Any,
    options: BinderOptions,
    name: str,
    declared: Any = None,
) -> BoundParameter:
    """Build one `BoundParameter` with its inferred type and size hints."""

    db_type = infer_db_type(value, declared)
    size = precision = scale = None

    if db_type is DbType.TEXT and isinstance(value, str):
        if len(value) <= options.max_text_size:
            size = max(1, len(value))
    elif db_type is DbType.DECIMAL:
        precision, scale = options.decimal_precision, options.decimal_scale
        if options.infer_decimal_precision and isinstance(value, Decimal):
            precision, scale = _decimal_shape(value, precision, scale)

    return BoundParameter(
        name=name,
        column=column,
        db_type=db_type,
        value=value,
        size=size,
        precision=precision,
        scale=scale,
    )


def _decimal_shape(value: Decimal, precision: int, scale: int) -> tuple[int, int]:
    _, digits, exponent = value.as_tuple()
    if not isinstance(exponent, int):
        return precision, scale
    if exponent >= 0:
        return max(1, len(digits) + exponent), 0
    value_scale = -exponent
    return max(len(digits), value_scale, 1), value_scale


@lru_cache(maxsize=None)
def _record_type_hints(cls: Type[Any]) -> dict[str, Any]:
    try:
        return dict(get_type_hints(cls, include_extras=True))
    except Exception:
        return {}
