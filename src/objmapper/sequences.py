from __future__ import annotations

import logging
from collections import abc
from inspect import isabstract
from typing import Any, Callable, List, Optional, Tuple

from pydantic import BaseModel

from .context import MappingContext
from .typeinfo import sequence_shape, type_name

logger = logging.getLogger(__name__)

MapItem = Callable[[Any, Any, Optional[Any], MappingContext], Any]
ItemFailed = Callable[[Exception, Any, Any, int, MappingContext], Any]


def is_sequence_value(value: Any) -> bool:
    # pydantic models iterate over their fields but are single objects
    return isinstance(value, abc.Iterable) and not isinstance(
        value, (str, bytes, bytearray, abc.Mapping, BaseModel)
    )


class SequenceAdapter:
    """Reshapes one sequence into another, mapping every element.

    Elements are mapped by the ``map_item`` callback, in source order, to the
    destination's element type. Tuples are always rebuilt; an existing
    mutable sequence is refilled in place; anything else gets a new container.

    An element that fails to map is handed to ``item_failed`` together with
    its index; it either raises or returns the value stored in its place.
    """

    def __init__(self, map_item: MapItem, item_failed: Optional[ItemFailed] = None) -> None:
        self._map_item = map_item
        self._item_failed = item_failed

    def try_map(
        self,
        source: Any,
        destination_type: Any,
        existing: Optional[Any],
        context: MappingContext,
    ) -> Tuple[bool, Any]:
        shape = sequence_shape(destination_type)
        if shape is None or not is_sequence_value(source):
            return False, None

        items = [
            self._map_element(index, item, shape.element, context)
            for index, item in enumerate(list(source))
        ]

        if issubclass(shape.container, tuple):
            return True, tuple(items)
        if isinstance(existing, abc.MutableSequence) and isinstance(
            existing, shape.container
        ):
            self._refill(existing, items)
            return True, existing
        return True, self._new_container(shape.container, items)

    def _map_element(
        self, index: int, item: Any, element_type: Any, context: MappingContext
    ) -> Any:
        try:
            return self._map_item(item, element_type, None, context)
        except Exception as e:
            if self._item_failed is None:
                raise
            return self._item_failed(e, item, element_type, index, context)

    @staticmethod
    def _refill(existing: abc.MutableSequence, items: List[Any]) -> None:
        try:
            existing.clear()
        except (AttributeError, TypeError, NotImplementedError) as e:
            logger.debug(
                "%s can't be cleared, appending to its current items: %s",
                type_name(type(existing)),
                e,
            )
        existing.extend(items)

    @staticmethod
    def _new_container(container: type, items: List[Any]) -> abc.MutableSequence:
        if container is list or isabstract(container):
            return items
        result = container()
        result.extend(items)
        return result
