import logging

from .converters import ConverterRegistry
from .errors import ConstructionError, ConversionError, MapperException, MappingError
from .introspection import TypeMapCache
from .mapper import Mapper, adapt, adapt_into
from .options import DEFAULT_DATETIME_FORMATS, ConversionFailure, MappingOptions

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "DEFAULT_DATETIME_FORMATS",
    "ConstructionError",
    "ConversionError",
    "ConversionFailure",
    "ConverterRegistry",
    "Mapper",
    "MapperException",
    "MappingError",
    "MappingOptions",
    "TypeMapCache",
    "adapt",
    "adapt_into",
]
