"""Coercion of single values between scalar types.

``try_convert`` never raises for an unconvertible value, it answers
``(False, None)`` so that callers can apply their own failure policy.
"""

from __future__ import annotations

import logging
import numbers
import re
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple, get_args
from uuid import UUID

from pydantic import TypeAdapter, ValidationError

from .options import MappingOptions
from .typeinfo import (
    NUMERIC_TYPES,
    is_assignable,
    is_union,
    unwrap_optional,
    zero_value,
)

logger = logging.getLogger(__name__)

Conversion = Tuple[bool, Any]

FAILED: Conversion = (False, None)

# optional sign, digits with "," group separators, optional "." fraction
_INVARIANT_NUMBER = re.compile(r"^([+-]?)(\d[\d,]*)?(?:\.(\d*))?$")

_TEMPORAL_ADAPTERS: Dict[type, TypeAdapter] = {
    datetime: TypeAdapter(datetime),
    date: TypeAdapter(date),
    time: TypeAdapter(time),
    timedelta: TypeAdapter(timedelta),
}


def try_convert(value: Any, destination_type: Any, options: MappingOptions) -> Conversion:
    if value is None:
        return True, zero_value(destination_type)
    if is_assignable(value, destination_type):
        return True, value

    _, target = unwrap_optional(destination_type)
    if is_union(target):
        for arm in get_args(target):
            converted = try_convert(value, arm, options)
            if converted[0]:
                return converted
        return FAILED
    if not isinstance(target, type):
        return FAILED

    try:
        return _convert(value, target, options)
    except (TypeError, ValueError, ArithmeticError) as e:
        logger.debug(
            "Could not convert %s to %s: %s", type(value).__name__, target.__name__, e
        )
        return FAILED


def parse_invariant_number(text: str) -> Optional[Decimal]:
    """Parse ``"-1,234.50"`` style numbers; ``None`` when ``text`` isn't one."""
    match = _INVARIANT_NUMBER.match(text.strip())
    if match is None:
        return None
    sign, whole, fraction = match.groups()
    if not whole and not fraction:
        return None
    whole = (whole or "0").replace(",", "")
    return Decimal(f"{sign}{whole}.{fraction or '0'}")


def to_invariant_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="backslashreplace")
    return str(value)


def _convert(value: Any, target: type, options: MappingOptions) -> Conversion:
    # order matters: enums and bools are also ints/strs
    if issubclass(target, Enum):
        return _to_enum(value, target)
    if issubclass(target, bool):
        return _to_bool(value)
    if issubclass(target, UUID):
        return _to_uuid(value)
    if issubclass(target, (date, time, timedelta)):
        return _to_temporal(value, target, options)
    if issubclass(target, str):
        text = to_invariant_string(value)
        return True, text if target is str else target(text)
    if issubclass(target, NUMERIC_TYPES):
        return _to_number(value, target)
    if issubclass(target, bytes) and isinstance(value, (str, bytearray, memoryview)):
        if isinstance(value, str):
            return True, value.encode("utf-8")
        return True, bytes(value)
    return FAILED


def _to_enum(value: Any, enum_type: type) -> Conversion:
    if isinstance(value, str):
        wanted = value.strip().casefold()
        for name, member in enum_type.__members__.items():
            if name.casefold() == wanted:
                return True, member
        number = parse_invariant_number(value)
        if number is not None and issubclass(enum_type, int):
            return _to_enum(number, enum_type)
        return FAILED
    if isinstance(value, Enum):
        value = value.value
    if issubclass(enum_type, int):
        ok, number = _to_number(value, int)
        if not ok:
            return FAILED
        value = number
    return True, enum_type(value)


def _to_bool(value: Any) -> Conversion:
    if isinstance(value, str):
        text = value.strip()
        lowered = text.lower()
        if lowered == "true" or text == "1":
            return True, True
        if lowered == "false" or text == "0":
            return True, False
        return FAILED
    if isinstance(value, (numbers.Number, Decimal)):
        return True, bool(value)
    return FAILED


def _to_uuid(value: Any) -> Conversion:
    if not isinstance(value, str):
        return FAILED
    return True, UUID(value.strip())


def _to_temporal(value: Any, target: type, options: MappingOptions) -> Conversion:
    if isinstance(value, str):
        text = value.strip()
        if not issubclass(target, timedelta):
            for fmt in options.effective_datetime_formats:
                try:
                    parsed = datetime.strptime(text, fmt)
                except ValueError:
                    continue
                return True, _narrow(parsed, target)
        return _parse_iso(text, target)
    if issubclass(target, datetime) and isinstance(value, date):
        # a plain date becomes midnight of that day
        return True, datetime.combine(value, time())
    return FAILED


def _narrow(parsed: datetime, target: type) -> Any:
    if issubclass(target, datetime):
        return parsed
    if issubclass(target, date):
        return parsed.date()
    return parsed.timetz()


def _parse_iso(text: str, target: type) -> Conversion:
    for base, adapter in _TEMPORAL_ADAPTERS.items():
        if issubclass(target, base):
            try:
                return True, adapter.validate_python(text)
            except ValidationError:
                return FAILED
    return FAILED


def _to_number(value: Any, target: type) -> Conversion:
    if isinstance(value, str):
        parsed = parse_invariant_number(value)
        if parsed is None:
            return FAILED
        return _from_decimal(parsed, target)
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool):
        value = int(value)
    if isinstance(value, complex):
        if issubclass(target, complex):
            return True, target(value)
        return FAILED
    if not isinstance(value, (numbers.Real, Decimal)):
        return FAILED
    if issubclass(target, int):
        # half-to-even, like round()
        return True, target(round(value))
    if issubclass(target, Decimal):
        return True, target(str(value)) if isinstance(value, float) else target(value)
    return True, target(value)


def _from_decimal(number: Decimal, target: type) -> Conversion:
    if issubclass(target, int):
        if number != number.to_integral_value():
            return FAILED
        return True, target(int(number))
    if issubclass(target, Decimal):
        return True, target(number)
    if issubclass(target, complex):
        return True, target(float(number))
    return True, target(number)
