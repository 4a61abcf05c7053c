"""Helpers for reasoning about runtime classes and ``typing`` hints.

Mapping destinations are described by type hints, so everything here accepts
both plain classes (``int``, ``UserDto``) and typing forms (``Optional[int]``,
``list[UserDto]``, ``tuple[int, ...]``, ``Annotated[str, ...]``).
"""

from __future__ import annotations

import types
from collections import abc
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import (
    Annotated,
    Any,
    Literal,
    NamedTuple,
    Optional,
    Tuple,
    TypeVar,
    Union,
    get_args,
    get_origin,
)
from uuid import UUID


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()

NoneType = type(None)

SIMPLE_TYPES: Tuple[type, ...] = (
    bool,
    int,
    float,
    complex,
    Decimal,
    str,
    bytes,
    UUID,
    datetime,
    date,
    time,
    timedelta,
    Enum,
)

NUMERIC_TYPES: Tuple[type, ...] = (int, float, complex, Decimal)

_ZERO_VALUES = {
    bool: False,
    int: 0,
    float: 0.0,
    complex: 0j,
    Decimal: Decimal(0),
    timedelta: timedelta(0),
    UUID: UUID(int=0),
    datetime: datetime.min,
    date: date.min,
    time: time(),
}

# Abstract shapes that are satisfied by a freshly built list.
_LIST_SHAPES = (
    abc.Iterable,
    abc.Collection,
    abc.Reversible,
    abc.Sequence,
    abc.MutableSequence,
)


class SequenceShape(NamedTuple):
    container: type
    element: Any


def strip_annotated(tp: Any) -> Any:
    while get_origin(tp) is Annotated:
        tp = get_args(tp)[0]
    return tp


def is_union(tp: Any) -> bool:
    return get_origin(tp) in (Union, types.UnionType)


def unwrap_optional(tp: Any) -> Tuple[bool, Any]:
    """Split ``Optional[X]`` into ``(True, X)``; anything else gives ``(False, tp)``.

    Unions with more than one non-``None`` arm keep the remaining arms as a
    union.
    """
    tp = strip_annotated(tp)
    if tp is None:
        return True, NoneType
    if not is_union(tp):
        return False, tp
    arms = get_args(tp)
    remaining = tuple(arm for arm in arms if arm is not NoneType)
    nullable = len(remaining) != len(arms)
    if len(remaining) == 1:
        return nullable, strip_annotated(remaining[0])
    return nullable, Union[remaining]


def zero_value(tp: Any) -> Any:
    """The value an unset destination of type ``tp`` holds.

    Value-like scalars get their zero (``0``, ``False``, ``Decimal(0)``...),
    nullable and reference-like destinations get ``None``.
    """
    nullable, tp = unwrap_optional(tp)
    if nullable or is_union(tp):
        return None
    try:
        return _ZERO_VALUES.get(tp)
    except TypeError:
        # unhashable typing construct
        return None


def is_simple_type(tp: Any) -> bool:
    _, tp = unwrap_optional(tp)
    if is_union(tp):
        return all(is_simple_type(arm) for arm in get_args(tp))
    return isinstance(tp, type) and issubclass(tp, SIMPLE_TYPES)


def is_enum_type(tp: Any) -> bool:
    return isinstance(tp, type) and issubclass(tp, Enum)


def type_name(tp: Any) -> str:
    return getattr(tp, "__name__", None) or repr(tp)


def is_assignable(value: Any, tp: Any) -> bool:
    """Whether ``value`` can be stored in a destination hinted as ``tp`` unchanged."""
    tp = strip_annotated(tp)
    if tp is Any or tp is object or isinstance(tp, TypeVar):
        return True
    if tp is None or tp is NoneType:
        return value is None
    if is_union(tp):
        return any(is_assignable(value, arm) for arm in get_args(tp))

    origin = get_origin(tp)
    if origin is None:
        if not isinstance(tp, type):
            return False
        if isinstance(value, bool) and tp in NUMERIC_TYPES:
            return False
        try:
            return isinstance(value, tp)
        except TypeError:
            # e.g. non runtime-checkable protocols
            return False

    if origin is Literal:
        return value in get_args(tp)
    if not isinstance(origin, type):
        return False
    try:
        if not isinstance(value, origin):
            return False
    except TypeError:
        return False
    return _elements_assignable(value, origin, get_args(tp))


def _elements_assignable(value: Any, origin: type, args: Tuple[Any, ...]) -> bool:
    if not args:
        return True
    if issubclass(origin, abc.Mapping) and len(args) == 2:
        key_type, value_type = args
        return all(
            is_assignable(k, key_type) and is_assignable(v, value_type)
            for k, v in value.items()
        )
    if issubclass(origin, tuple):
        if len(args) == 2 and args[1] is Ellipsis:
            return all(is_assignable(item, args[0]) for item in value)
        if args == ((),):
            return len(value) == 0
        return len(value) == len(args) and all(
            is_assignable(item, arg) for item, arg in zip(value, args)
        )
    if issubclass(origin, abc.Collection) and len(args) == 1:
        return all(is_assignable(item, args[0]) for item in value)
    # iterators and other generics can't be checked without consuming them
    return True


def sequence_shape(tp: Any) -> Optional[SequenceShape]:
    """Describe ``tp`` as a single-element-type sequence, or ``None``.

    Strings, bytes, mappings, sets and fixed-shape tuples are not sequences
    for mapping purposes.
    """
    _, tp = unwrap_optional(tp)
    origin = get_origin(tp) or tp
    if not isinstance(origin, type):
        return None
    if issubclass(origin, (str, bytes, bytearray, abc.Mapping, abc.Set)):
        return None
    args = get_args(tp)

    if issubclass(origin, tuple):
        if hasattr(origin, "_fields"):
            return None
        if not args:
            return SequenceShape(tuple, Any)
        if len(args) == 2 and args[1] is Ellipsis:
            return SequenceShape(tuple, args[0])
        return None

    if origin in _LIST_SHAPES or issubclass(origin, abc.MutableSequence):
        element = args[0] if len(args) == 1 else Any
        return SequenceShape(origin, element)
    return None
