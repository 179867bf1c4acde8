"""Conversion orchestration across formats."""

from typing import Any, Dict, List, Optional, Sequence

import structlog

from schemagrid.conversion.converter import SchemaConverter
from schemagrid.conversion.constraints import canonical_type
from schemagrid.conversion.formats import (
    DETECTION_ORDER,
    ConversionIssue,
    ConversionResult,
    SchemaFormat,
)
from schemagrid.exceptions import FormatError
from schemagrid.grid.models import Grid, ValidationResult, iter_cells

logger = structlog.get_logger()

FORMAT_DESCRIPTIONS = {
    SchemaFormat.XML: "Generic XML field list",
    SchemaFormat.JSON: "JSON Schema (draft-07)",
    SchemaFormat.YAML: "JSON Schema tree in YAML",
    SchemaFormat.XSD: "W3C XML Schema",
    SchemaFormat.WSDL: "WSDL 1.1 with embedded XML Schema types",
}


class SchemaConversionService:
    """Runs the converter for one or many formats and isolates failures."""

    def __init__(self, converter: Optional[SchemaConverter] = None):
        self.converter = converter or SchemaConverter()
        self.logger = logger.bind(component="schema_conversion")

    async def convert_from_grid(self, grid: Grid, formats: Sequence[Any]) -> ConversionResult:
        """Convert grid rows to every requested format.

        A failure in one format is recorded against that format only; the
        others are still produced.
        """
        merged = ConversionResult()
        for requested in formats:
            try:
                schema_format = SchemaFormat.parse(requested)
            except ValueError as e:
                merged.errors.append(ConversionIssue(message=str(e), code="UNSUPPORTED_FORMAT"))
                continue

            try:
                merged.merge(self.converter.from_grid(grid, schema_format))
            except Exception as e:
                self.logger.error(
                    "Format conversion failed",
                    target_format=schema_format.value,
                    error=str(e),
                )
                merged.errors.append(ConversionIssue(
                    message=f"Conversion to {schema_format.value} failed: {e}",
                    code="CONVERSION_ERROR",
                    target_format=schema_format,
                ))

        self.logger.info(
            "Converted grid",
            formats=[f.value for f in merged.outputs],
            errors=len(merged.errors),
            warnings=len(merged.warnings),
        )
        return merged

    async def convert_to_grid(self, text: str, source_format: Any) -> Grid:
        """Validate then convert schema text to grid rows.

        Invalid input is logged and still converted (yielding blank rows).
        """
        schema_format = SchemaFormat.parse(source_format)
        validation = self.converter.validate(text, schema_format)
        if not validation.is_valid:
            self.logger.warning(
                "Schema failed validation before conversion",
                source_format=schema_format.value,
                errors=[e.message for e in validation.errors],
            )
        return self.converter.to_grid(text, schema_format)

    async def convert_between_formats(self, text: str, source_format: Any,
                                      target_format: Any) -> ConversionResult:
        """Convert schema text to another format through the grid."""
        source = SchemaFormat.parse(source_format)
        target = SchemaFormat.parse(target_format)
        try:
            grid = self.converter.to_grid(text, source, strict=True)
        except FormatError as e:
            self.logger.warning(
                "Format conversion failed",
                source_format=source.value,
                target_format=target.value,
                error=e.message,
            )
            result = ConversionResult()
            result.errors.append(ConversionIssue(
                message=e.message,
                code="FORMAT_CONVERSION_ERROR",
                source_format=source,
                target_format=target,
            ))
            return result

        result = self.converter.from_grid(grid, target)
        for finding in result.errors + result.warnings:
            finding.source_format = source
        return result

    async def detect_schema_format(self, text: str) -> Optional[SchemaFormat]:
        """First format, in priority order, whose validation passes."""
        if text is None or not str(text).strip():
            return None
        for schema_format in DETECTION_ORDER:
            try:
                if self.converter.validate(text, schema_format).is_valid:
                    return schema_format
            except Exception as e:
                self.logger.debug("Format probe failed", probe=schema_format.value, error=str(e))
        return None

    async def validate_schema(self, text: str, schema_format: Any) -> ValidationResult:
        return self.converter.validate(text, schema_format)

    def get_supported_formats(self) -> List[Dict[str, str]]:
        return [
            {"format": f.value, "description": FORMAT_DESCRIPTIONS[f]}
            for f in SchemaFormat
        ]

    def generate_schema_stats(self, grid: Grid) -> Dict[str, Any]:
        """Field counts of a grid; blank rows are ignored."""
        stats: Dict[str, Any] = {
            "total_fields": 0,
            "required_fields": 0,
            "optional_fields": 0,
            "field_types": {},
            "fields_with_constraints": 0,
            "fields_with_defaults": 0,
        }
        for _, _, cell in iter_cells(grid):
            if cell.is_blank():
                continue
            stats["total_fields"] += 1
            if cell.required:
                stats["required_fields"] += 1
            else:
                stats["optional_fields"] += 1
            data_type = canonical_type(cell.data_type)
            stats["field_types"][data_type] = stats["field_types"].get(data_type, 0) + 1
            if cell.constraints.strip():
                stats["fields_with_constraints"] += 1
            if cell.default_value not in (None, ""):
                stats["fields_with_defaults"] += 1
        return stats
