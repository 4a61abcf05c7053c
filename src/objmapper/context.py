from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Set, Tuple, Type

from .options import MappingOptions
from .typeinfo import MISSING

_Key = Tuple[int, Type]


class ReferenceTracker:
    """Destinations already created for source objects during one mapping call.

    Entries are keyed by the identity of the source object (never by
    equality) together with the destination type, and keep the source alive
    so its ``id`` can't be reused while the call runs.
    """

    def __init__(self) -> None:
        self._entries: Dict[_Key, Tuple[Any, Any]] = {}

    def get(self, source: Any, destination_type: Type) -> Any:
        entry = self._entries.get((id(source), destination_type))
        return MISSING if entry is None else entry[1]

    def register(self, source: Any, destination_type: Type, destination: Any) -> None:
        self._entries[(id(source), destination_type)] = (source, destination)

    def __len__(self) -> int:
        return len(self._entries)


class MappingContext:
    """State of a single top-level mapping call. Never shared between calls."""

    def __init__(self, options: MappingOptions) -> None:
        self.options = options
        self.references = ReferenceTracker()
        self._constructing: Set[_Key] = set()
        self._reported: Dict[int, BaseException] = {}

    @contextmanager
    def constructing(self, source: Any, destination_type: Type) -> Iterator[None]:
        key = (id(source), destination_type)
        self._constructing.add(key)
        try:
            yield
        finally:
            self._constructing.discard(key)

    def is_constructing(self, source: Any, destination_type: Type) -> bool:
        return (id(source), destination_type) in self._constructing

    def mark_reported(self, exc: BaseException) -> bool:
        """Remember that ``exc`` reached the error handler.

        Returns ``False`` when it already had, so outer levels can let it
        propagate without reporting it twice.
        """
        if self._reported.get(id(exc)) is exc:
            return False
        self._reported[id(exc)] = exc
        return True
