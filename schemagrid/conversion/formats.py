"""Supported schema formats and conversion result types."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from schemagrid.grid.models import CamelModel


class SchemaFormat(str, Enum):
    """Textual schema formats."""
    XML = "xml"
    JSON = "json"
    YAML = "yaml"
    XSD = "xsd"
    WSDL = "wsdl"

    @property
    def is_markup(self) -> bool:
        return self in MARKUP_FORMATS

    @classmethod
    def parse(cls, value: Any) -> "SchemaFormat":
        """Parse a format key case-insensitively."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            supported = ", ".join(f.value for f in cls)
            raise ValueError(f"Unsupported format: {value} (supported: {supported})")


MARKUP_FORMATS = frozenset({SchemaFormat.XML, SchemaFormat.XSD, SchemaFormat.WSDL})

# Keyed outputs cannot hold the same field name twice
KEYED_FORMATS = frozenset({SchemaFormat.JSON, SchemaFormat.YAML})

# Detection order: most specific first, YAML last since it accepts JSON
DETECTION_ORDER = [
    SchemaFormat.JSON,
    SchemaFormat.WSDL,
    SchemaFormat.XSD,
    SchemaFormat.XML,
    SchemaFormat.YAML,
]


class ConversionIssue(CamelModel):
    """Error or warning raised while converting."""

    message: str
    code: str
    source_format: Optional[SchemaFormat] = None
    target_format: Optional[SchemaFormat] = None
    field: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    details: Any = None


class ConversionResult(CamelModel):
    """Emitted texts keyed by target format, plus findings.

    An empty ``errors`` list means every emitted text is usable.
    """

    outputs: Dict[SchemaFormat, str] = Field(default_factory=dict)
    errors: List[ConversionIssue] = Field(default_factory=list)
    warnings: List[ConversionIssue] = Field(default_factory=list)

    @property
    def is_successful(self) -> bool:
        return not self.errors

    def get(self, schema_format: SchemaFormat) -> Optional[str]:
        return self.outputs.get(SchemaFormat.parse(schema_format))

    def errors_for(self, schema_format: SchemaFormat) -> List[ConversionIssue]:
        schema_format = SchemaFormat.parse(schema_format)
        return [e for e in self.errors if e.target_format == schema_format]

    def merge(self, other: "ConversionResult") -> "ConversionResult":
        self.outputs.update(other.outputs)
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        return self
