from __future__ import annotations

from typing import Any, Callable, Dict, Iterator, Tuple

ConverterFunction = Callable[[Any], Any]
ConverterKey = Tuple[type, Any]


class ConverterRegistry:
    """User supplied conversions keyed by ``(source type, destination type)``.

    Resolution prefers an exact match on the value's runtime type. Otherwise
    entries are scanned in registration order and the first one whose
    destination equals the requested type and whose source type is a base of
    the value's type wins.
    """

    def __init__(self) -> None:
        # dicts keep insertion order, and re-registering keeps the position
        self._converters: Dict[ConverterKey, ConverterFunction] = {}

    def register(
        self, source_type: type, destination_type: Any, converter: ConverterFunction
    ) -> None:
        if not isinstance(source_type, type):
            raise TypeError(
                f"Converter source type must be a class, got {source_type!r}"
            )
        if not callable(converter):
            raise TypeError(
                f"Converter for {source_type.__name__} must be callable, "
                f"got {type(converter).__name__}"
            )
        self._converters[(source_type, destination_type)] = converter

    def try_resolve(self, value: Any, destination_type: Any) -> Tuple[bool, Any]:
        if not self._converters:
            return False, None
        converter = self.find(type(value), destination_type)
        if converter is None:
            return False, None
        return True, converter(value)

    def find(self, source_type: type, destination_type: Any) -> Any:
        try:
            exact = self._converters.get((source_type, destination_type))
        except TypeError:
            # unhashable destination hint, nothing can be registered for it
            return None
        if exact is not None:
            return exact
        for (registered_source, registered_destination), converter in self:
            if registered_destination == destination_type and issubclass(
                source_type, registered_source
            ):
                return converter
        return None

    def __iter__(self) -> Iterator[Tuple[ConverterKey, ConverterFunction]]:
        return iter(self._converters.items())

    def __len__(self) -> int:
        return len(self._converters)
