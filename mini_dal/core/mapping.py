"""Typed result mapping: store rows -> dataclass records.

Columns are matched to fields case-insensitively; columns without a field
are skipped. Null values become the field default (or the type's zero
value) and everything else is coerced to the declared field type.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import MISSING, Field, fields, is_dataclass
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, List, Optional, Type, TypeVar, get_origin, get_type_hints

from .errors import ContractError, MappingError
from .results import TableRow
from .type_inference import unwrap_annotation, unwrap_optional

T = TypeVar("T")

_TRUE_TEXT = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSE_TEXT = frozenset({"0", "false", "f", "no", "n", "off"})

_ZERO_VALUES: Dict[type, Any] = {
    bool: False,
    int: 0,
    float: 0.0,
    Decimal: Decimal(0),
    str: "",
    bytes: b"",
}


def map_row(model: Type[T], row: Any) -> T:
    """Build one `model` instance from a row mapping or `TableRow`."""

    by_name = _field_index(model)
    hints = _model_type_hints(model)
    values: Dict[str, Any] = {}

    for column, value in _row_items(row):
        field = by_name.get(column.lower())
        if field is None or field.name in values:
            continue
        annotation = hints.get(field.name, field.type)
        if value is None:
            if not _has_default(field):
                values[field.name] = zero_value(annotation)
            continue
        values[field.name] = coerce_value(value, annotation, field=field)

    for field in by_name.values():
        if field.name not in values and not _has_default(field):
            values[field.name] = zero_value(hints.get(field.name, field.type))

    return model(**values)


def map_rows(model: Type[T], rows: Iterable[Any]) -> List[T]:
    """Map every row; the first coercion failure raises `MappingError`."""

    return [map_row(model, row) for row in rows]


def coerce_value(value: Any, annotation: Any, *, field: Optional[Field[Any]] = None) -> Any:
    """Coerce one non-null store value to `annotation`.

    Raises:
        MappingError: The value cannot be represented as the declared type.
    """

    name = field.name if field is not None else "<value>"
    codec = _field_codec(field) if field is not None else None
    base = unwrap_annotation(annotation)
    try:
        if codec == "json" or _is_json_type(base):
            return _to_json(value)
        if not isinstance(base, type) or get_origin(base) is not None or base is object:
            return value
        if issubclass(base, Enum):
            return _to_enum(value, base)
        converter = _CONVERTERS.get(base)
        return value if converter is None else converter(value)
    except (ValueError, TypeError, ArithmeticError, KeyError) as exc:
        raise MappingError(
            f"Cannot map value {value!r} to field {name!r} "
            f"({getattr(base, '__name__', base)})."
        ) from exc


def zero_value(annotation: Any) -> Any:
    """Return the absent value used for null columns of `annotation`."""

    if unwrap_optional(annotation) is not annotation:
        return None
    base = unwrap_annotation(annotation)
    return _ZERO_VALUES.get(base) if isinstance(base, type) else None


# -- converters ---------------------------------------------------------------


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return value != 0
    if isinstance(value, (bytes, bytearray)) and len(value) == 1:
        return value[0] != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_TEXT:
            return True
        if text in _FALSE_TEXT:
            return False
    raise ValueError(f"not a boolean: {value!r}")


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"not an integer: {value!r}")
        return int(value)
    if isinstance(value, Decimal):
        if value != value.to_integral_value():
            raise ValueError(f"not an integer: {value!r}")
        return int(value)
    if isinstance(value, str):
        return int(value.strip())
    raise TypeError(f"unsupported integer source {type(value).__name__}")


def _to_float(value: Any) -> float:
    if isinstance(value, (str, int, float, Decimal)):
        return float(value)
    raise TypeError(f"unsupported float source {type(value).__name__}")


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (bool, int)):
        return Decimal(int(value))
    if isinstance(value, str):
        return Decimal(value.strip())
    if isinstance(value, float):
        return Decimal(repr(value))
    raise TypeError(f"unsupported decimal source {type(value).__name__}")


def _to_str(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8")
    return str(value)


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise TypeError(f"unsupported bytes source {type(value).__name__}")


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        return datetime.fromisoformat(_iso_text(value))
    raise TypeError(f"unsupported datetime source {type(value).__name__}")


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = _iso_text(value)
        try:
            return date.fromisoformat(text)
        except ValueError:
            return datetime.fromisoformat(text).date()
    raise TypeError(f"unsupported date source {type(value).__name__}")


def _to_time(value: Any) -> time:
    if isinstance(value, datetime):
        return value.time()
    if isinstance(value, time):
        return value
    if isinstance(value, str):
        return time.fromisoformat(value.strip())
    raise TypeError(f"unsupported time source {type(value).__name__}")


def _to_uuid(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    if isinstance(value, (bytes, bytearray)) and len(value) == 16:
        return uuid.UUID(bytes=bytes(value))
    if isinstance(value, str):
        return uuid.UUID(value.strip())
    raise TypeError(f"unsupported UUID source {type(value).__name__}")


def _to_enum(value: Any, enum_type: Type[Enum]) -> Enum:
    if isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError:
        if isinstance(value, str):
            return enum_type[value]
        raise


def _to_json(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        value = bytes(value).decode("utf-8")
    if isinstance(value, str):
        return json.loads(value)
    return value


_CONVERTERS = {
    bool: _to_bool,
    int: _to_int,
    float: _to_float,
    Decimal: _to_decimal,
    str: _to_str,
    bytes: _to_bytes,
    datetime: _to_datetime,
    date: _to_date,
    time: _to_time,
    uuid.UUID: _to_uuid,
}


# -- model introspection ------------------------------------------------------


def _row_items(row: Any) -> Iterable[tuple[str, Any]]:
    if isinstance(row, TableRow):
        return row.as_dict().items()
    if isinstance(row, Mapping):
        return row.items()
    raise ContractError(f"Cannot map row of type {type(row).__name__}.")


@lru_cache(maxsize=None)
def _field_index(model: Type[Any]) -> Dict[str, Field[Any]]:
    if not (is_dataclass(model) and isinstance(model, type)):
        raise ContractError(f"{getattr(model, '__name__', model)!r} must be a dataclass type.")
    index: Dict[str, Field[Any]] = {}
    for field in fields(model):
        if field.init:
            index.setdefault(field.name.lower(), field)
    return index


@lru_cache(maxsize=None)
def _model_type_hints(model: Type[Any]) -> Dict[str, Any]:
    try:
        return dict(get_type_hints(model, include_extras=True))
    except Exception:
        return {}


def _has_default(field: Field[Any]) -> bool:
    return field.default is not MISSING or field.default_factory is not MISSING


def _field_codec(field: Field[Any]) -> Optional[str]:
    codec = field.metadata.get("codec")
    if codec is None:
        return None
    normalized = str(codec).strip().lower()
    if normalized != "json":
        raise ContractError(
            f"Unsupported codec {codec!r} on field {field.name!r}. Supported codecs: 'json'."
        )
    return normalized


def _is_json_type(base: Any) -> bool:
    if base in {dict, list}:
        return True
    return get_origin(base) in {dict, list}


def _iso_text(value: str) -> str:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return text
