from __future__ import annotations

from enum import Enum
from typing import Any, Callable, FrozenSet, List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, ConfigDict, PrivateAttr, field_validator

from .converters import ConverterFunction, ConverterRegistry
from .errors import MappingError

# strptime formats tried, in order, before falling back to ISO 8601 parsing
DEFAULT_DATETIME_FORMATS: Tuple[str, ...] = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d/%m/%Y",
)

ErrorHandler = Callable[[MappingError], Any]


class ConversionFailure(str, Enum):
    """What happens when a scalar value can't be coerced to its destination."""

    SET_DEFAULT = "set_default"
    SKIP = "skip"
    THROW = "throw"


class MappingOptions(BaseModel):
    """Configuration shared by mapping calls.

    Build it once, chain ``ignore`` / ``add_converter`` calls, then reuse it
    for as many ``map`` calls as needed. Mapping never mutates the options.

    Example::

        options = (
            MappingOptions(conversion_failure="skip")
            .ignore("password")
            .add_converter(str, Money, Money.parse)
        )
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, validate_assignment=True)

    case_sensitive: bool = False
    ignore_null_values: bool = False
    strict_mode: bool = False
    conversion_failure: ConversionFailure = ConversionFailure.SET_DEFAULT
    datetime_formats: Optional[List[str]] = None
    error_handler: Optional[ErrorHandler] = None

    _ignored: Set[str] = PrivateAttr(default_factory=set)
    _converters: ConverterRegistry = PrivateAttr(default_factory=ConverterRegistry)

    @field_validator("datetime_formats")
    @classmethod
    def _formats_not_blank(cls, formats: Optional[List[str]]) -> Optional[List[str]]:
        if formats is not None and any(not fmt.strip() for fmt in formats):
            raise ValueError("Date/time formats cannot be blank.")
        return formats

    @property
    def effective_datetime_formats(self) -> Sequence[str]:
        if self.datetime_formats is None:
            return DEFAULT_DATETIME_FORMATS
        return self.datetime_formats

    @property
    def converters(self) -> ConverterRegistry:
        return self._converters

    @property
    def ignored(self) -> FrozenSet[str]:
        return frozenset(self._ignored)

    def ignore(self, member_name: str) -> MappingOptions:
        """Never write destination members called ``member_name`` (any case)."""
        if not isinstance(member_name, str) or not member_name.strip():
            raise ValueError("Member name cannot be empty.")
        self._ignored.add(member_name.casefold())
        return self

    def is_ignored(self, member_name: str) -> bool:
        return member_name.casefold() in self._ignored

    def add_converter(
        self,
        source_type: type,
        destination_type: Any,
        converter: ConverterFunction,
    ) -> MappingOptions:
        self._converters.register(source_type, destination_type, converter)
        return self
