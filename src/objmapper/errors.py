from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class MappingError:
    """A single failure captured while mapping one destination member.

    ``member`` is ``None`` when the failing value is the mapped value itself
    rather than one of its members, and ``"[i]"`` for the i-th element of a
    mapped sequence.
    """

    source_type: Any
    destination_type: Any
    member: Optional[str]
    exception: BaseException

    def __str__(self) -> str:
        target = _type_name(self.destination_type)
        if self.member is not None:
            target = f"{target}.{self.member}"
        return (
            f"Mapping {_type_name(self.source_type)} -> {target} failed: "
            f"{type(self.exception).__name__}: {self.exception}"
        )


class MapperException(Exception):
    pass


class ConstructionError(MapperException, TypeError):
    """Raised when no destination instance can be created."""


class ConversionError(MapperException, ValueError):
    """Raised when a scalar value cannot be coerced and the policy is ``throw``."""


def _type_name(tp: Any) -> str:
    return getattr(tp, "__name__", None) or repr(tp)
