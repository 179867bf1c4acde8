"""Schema format conversion: codecs, converter and orchestration."""

from schemagrid.conversion.converter import SchemaConverter
from schemagrid.conversion.formats import ConversionIssue, ConversionResult, SchemaFormat
from schemagrid.conversion.service import SchemaConversionService

__all__ = [
    "ConversionIssue",
    "ConversionResult",
    "SchemaConversionService",
    "SchemaConverter",
    "SchemaFormat",
]
