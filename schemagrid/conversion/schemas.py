"""Conversion API schemas."""

from typing import Any, Dict, List, Optional

from pydantic import Field

from schemagrid.conversion.formats import SchemaFormat
from schemagrid.grid.models import CamelModel, GridCell, ValidationIssue


class ConvertRequest(CamelModel):
    """Grid rows to convert to one or more formats."""
    grid_data: List[Any] = Field(..., description="Rows of cells, or a flat list of cells")
    formats: List[SchemaFormat] = Field(
        default_factory=lambda: list(SchemaFormat), description="Target formats"
    )


class SchemaContentRequest(CamelModel):
    """Schema text in a declared format."""
    format: SchemaFormat = Field(..., description="Format of the content")
    content: str = Field(..., description="Schema text")


class DetectRequest(CamelModel):
    content: str = Field(..., description="Schema text of unknown format")


class TransformRequest(CamelModel):
    """Convert schema text from one format to another."""
    content: str = Field(..., description="Schema text")
    source_format: SchemaFormat
    target_format: SchemaFormat


class GridStatsRequest(CamelModel):
    grid_data: List[Any] = Field(..., description="Rows of cells, or a flat list of cells")


class GridDataResponse(CamelModel):
    """Grid rows read from schema text."""
    format: SchemaFormat
    grid_data: List[List[GridCell]]
    row_count: int


class SchemaValidationResponse(CamelModel):
    format: SchemaFormat
    is_valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)


class DetectResponse(CamelModel):
    format: Optional[SchemaFormat] = None
    detected: bool = False


class SupportedFormat(CamelModel):
    format: SchemaFormat
    description: str


class SupportedFormatsResponse(CamelModel):
    formats: List[SupportedFormat]


class SchemaStatsResponse(CamelModel):
    """Field counts of a grid."""
    total_fields: int
    required_fields: int
    optional_fields: int
    field_types: Dict[str, int]
    fields_with_constraints: int
    fields_with_defaults: int
