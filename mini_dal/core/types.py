"""Shared core type aliases used across contracts, builder, and ports."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional, Union

NamedParams = Dict[str, Any]
PositionalParams = List[Any]
DriverParams = Union[NamedParams, PositionalParams, None]

RowMapping = Mapping[str, Any]
Rows = List[RowMapping]
MaybeRow = Optional[RowMapping]

SqlLogger = Callable[[str], None]
