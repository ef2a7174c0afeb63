"""Runtime value -> store parameter type tag inference."""

from __future__ import annotations

import types
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional, Union, get_args, get_origin

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1


class DbType(str, Enum):
    """Store-level parameter type tags."""

    TEXT = "text"
    INT32 = "int32"
    INT64 = "int64"
    INT16 = "int16"
    BYTE = "byte"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    DECIMAL = "decimal"
    DOUBLE = "double"
    SINGLE = "single"
    BINARY = "binary"
    GUID = "guid"
    VARIANT = "variant"


_CLASS_TYPES: tuple[tuple[type, DbType], ...] = (
    # bool must precede int: bool is an int subclass.
    (bool, DbType.BOOLEAN),
    (int, DbType.INT32),
    (float, DbType.DOUBLE),
    (Decimal, DbType.DECIMAL),
    (str, DbType.TEXT),
    (datetime, DbType.TIMESTAMP),
    (date, DbType.TIMESTAMP),
    (time, DbType.TIMESTAMP),
    (bytes, DbType.BINARY),
    (bytearray, DbType.BINARY),
    (memoryview, DbType.BINARY),
    (uuid.UUID, DbType.GUID),
)


def infer_db_type(value: Any, declared: Any = None) -> DbType:
    """Return the parameter type tag for a value.

    Null values carry no type information, so the declared annotation is
    used instead. Unmapped types fall back to `DbType.VARIANT`.

    Args:
        value: Runtime value to inspect.
        declared: Optional declared type/annotation of the column.
    """

    if value is None:
        return declared_db_type(declared)

    if isinstance(value, Enum):
        return infer_db_type(value.value)

    if isinstance(value, bool):
        return DbType.BOOLEAN
    if isinstance(value, int):
        if INT32_MIN <= value <= INT32_MAX:
            return DbType.INT32
        return DbType.INT64

    return _class_db_type(type(value))


def declared_db_type(annotation: Any) -> DbType:
    """Map a declared annotation (possibly `Optional`/`Annotated`) to a tag."""

    if annotation is None or annotation is type(None):
        return DbType.VARIANT

    tag = annotated_db_type(annotation)
    if tag is not None:
        return tag

    base = unwrap_annotation(annotation)
    if not isinstance(base, type) or get_origin(base) is not None:
        return DbType.VARIANT
    if issubclass(base, Enum):
        members = list(base)
        return infer_db_type(members[0].value) if members else DbType.VARIANT
    return _class_db_type(base)


def annotated_db_type(annotation: Any) -> Optional[DbType]:
    """Return an explicit `DbType` carried by `Annotated[...]` metadata."""

    base = unwrap_optional(annotation)
    if get_origin(base) is not Annotated:
        return None
    for extra in base.__metadata__:
        if isinstance(extra, DbType):
            return extra
    return None


def unwrap_annotation(annotation: Any) -> Any:
    """Strip `Optional[...]` and `Annotated[...]` wrappers from an annotation."""

    base = unwrap_optional(annotation)
    if get_origin(base) is Annotated:
        base = get_args(base)[0]
        base = unwrap_optional(base)
    return base


def unwrap_optional(annotation: Any) -> Any:
    """Return `X` for `Optional[X]` / `X | None`, else the annotation itself."""

    origin = get_origin(annotation)
    if origin is None:
        return annotation

    if origin not in {Union, types.UnionType}:
        return annotation

    all_args = get_args(annotation)
    args = [arg for arg in all_args if arg is not type(None)]
    if len(args) == 1 and len(all_args) == 2:
        return args[0]
    return annotation


def _class_db_type(cls: type) -> DbType:
    for known, tag in _CLASS_TYPES:
        if issubclass(cls, known):
            return tag
    return DbType.VARIANT
