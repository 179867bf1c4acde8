"""Grid <-> schema text conversion.

``SchemaConverter`` prepares grid rows (blank-row skipping, name checks,
constraint parsing, cell validation) and hands the resulting field specs to
the codec of the target format. Field-level problems travel in the returned
``ConversionResult``; only security rejections are raised.
"""

from typing import Any, Dict, List, Optional, Tuple

import structlog

from schemagrid.config import settings
from schemagrid.conversion.codecs import FieldSpec, get_codec
from schemagrid.conversion.constraints import ConstraintParseError, parse_constraints
from schemagrid.conversion.formats import (
    KEYED_FORMATS,
    ConversionIssue,
    ConversionResult,
    SchemaFormat,
)
from schemagrid.exceptions import FormatError, SecurityError
from schemagrid.grid.models import (
    Grid,
    GridCell,
    ValidationResult,
    blank_rows,
    default_columns,
    iter_cells,
    pad_grid,
)
from schemagrid.grid.validation import validate_cell

logger = structlog.get_logger()


class SchemaConverter:
    """Converts between grid rows and the supported schema formats."""

    def __init__(self, min_rows: Optional[int] = None):
        self.min_rows = min_rows if min_rows is not None else settings.grid_min_rows
        self.columns = default_columns()
        self.logger = logger.bind(component="schema_converter")

    @staticmethod
    def _issue_factory(schema_format: SchemaFormat):
        def issue(message: str, code: str, field: Optional[str] = None, **kwargs: Any) -> ConversionIssue:
            return ConversionIssue(
                message=message, code=code, field=field,
                target_format=schema_format, **kwargs,
            )
        return issue

    def from_grid(self, grid: Grid, target_format: Any) -> ConversionResult:
        """Generate schema text in ``target_format`` from grid rows."""
        schema_format = SchemaFormat.parse(target_format)
        result = ConversionResult()
        issue = self._issue_factory(schema_format)

        def warn(message: str, code: str, field: Optional[str] = None) -> None:
            result.warnings.append(issue(message, code, field))

        try:
            fields = self._prepare_fields(grid, schema_format, result, issue)
            if result.errors:
                return result
            result.outputs[schema_format] = get_codec(schema_format).encode(fields, warn)
        except Exception as e:
            self.logger.error(
                "Schema generation failed",
                target_format=schema_format.value,
                error=str(e),
                exc_info=True,
            )
            result.errors.append(issue(f"Conversion to {schema_format.value} failed: {e}", "CONVERSION_ERROR"))

        return result

    def prepare_fields(self, grid: Grid, target_format: Any) -> Tuple[List[FieldSpec], ConversionResult]:
        """Field specs for the populated rows of a grid, with the findings met on the way."""
        schema_format = SchemaFormat.parse(target_format)
        result = ConversionResult()
        issue = self._issue_factory(schema_format)
        return self._prepare_fields(grid, schema_format, result, issue), result

    def _prepare_fields(self, grid: Grid, schema_format: SchemaFormat,
                        result: ConversionResult, issue) -> List[FieldSpec]:
        fields: List[FieldSpec] = []
        seen: Dict[str, int] = {}

        for row_index, col_index, cell in iter_cells(grid):
            if cell.is_blank():
                continue
            line, column = row_index + 1, col_index + 1

            if not cell.has_name():
                result.errors.append(issue(
                    "Field name is required", "REQUIRED_FIELD", line=line, column=column,
                ))
                continue

            name = cell.field_name.strip()
            for finding in self._cell_findings(cell, row_index):
                result.warnings.append(issue(
                    finding.message, finding.code, name, line=line, column=finding.column,
                ))

            if name in seen:
                message = f"Duplicate field name: {name} (first defined on row {seen[name]})"
                if schema_format in KEYED_FORMATS:
                    result.errors.append(issue(message, "DUPLICATE_FIELD_NAME", name, line=line, column=column))
                    continue
                result.warnings.append(issue(message, "DUPLICATE_FIELD_NAME", name, line=line, column=column))
            else:
                seen[name] = line

            data_type = cell.data_type.strip()
            if not data_type:
                result.warnings.append(issue(
                    f"Field {name} has no data type; emitted as text",
                    "MISSING_DATA_TYPE", name, line=line, column=column,
                ))
                data_type = "text"

            fields.append(FieldSpec(
                name=name,
                data_type=data_type,
                required=cell.required,
                description=cell.description.strip(),
                default_value=cell.default_value,
                constraints=self._parse_cell_constraints(cell, name, line, result, issue),
            ))

        return fields

    def _cell_findings(self, cell: GridCell, row_index: int):
        for col_index, column in enumerate(self.columns):
            # Missing names and types have dedicated conversion codes
            if column.id in ("field_name", "data_type") and not getattr(cell, column.id).strip():
                continue
            checked = validate_cell(getattr(cell, column.id, None), column, row_index, col_index)
            yield from checked.errors
            yield from checked.warnings

    def _parse_cell_constraints(self, cell: GridCell, name: str, line: int,
                                result: ConversionResult, issue) -> Dict[str, Any]:
        try:
            constraints, unsupported = parse_constraints(cell.constraints)
        except ConstraintParseError as e:
            result.warnings.append(issue(
                f"Constraints of {name} ignored: {e}", "INVALID_CONSTRAINTS", name,
                line=line, details=cell.constraints,
            ))
            return {}

        for key in unsupported:
            result.warnings.append(issue(
                f"Unsupported constraint '{key}' on {name} was dropped",
                "UNSUPPORTED_CONSTRAINT", name, line=line,
            ))
        return constraints

    def to_grid(self, text: Optional[str], source_format: Any, strict: bool = False) -> Grid:
        """Read schema text into grid rows, padded to the minimum row count.

        Unreadable input yields blank rows unless ``strict`` is set, in which
        case FormatError is raised. SecurityError is always raised.
        """
        schema_format = SchemaFormat.parse(source_format)
        if text is None or not str(text).strip():
            if strict:
                raise FormatError(f"Empty {schema_format.value} schema")
            return blank_rows(self.min_rows)

        try:
            cells = get_codec(schema_format).decode(text)
        except SecurityError:
            raise
        except FormatError as e:
            if strict:
                raise
            self.logger.warning(
                "Unreadable schema, returning blank grid",
                source_format=schema_format.value,
                error=e.message,
            )
            return blank_rows(self.min_rows)
        except Exception as e:
            if strict:
                raise FormatError(f"Could not read {schema_format.value} schema: {e}")
            self.logger.warning(
                "Schema could not be converted, returning blank grid",
                source_format=schema_format.value,
                error=str(e),
            )
            return blank_rows(self.min_rows)

        return pad_grid([[cell] for cell in cells], self.min_rows)

    def validate(self, text: str, schema_format: Any) -> ValidationResult:
        """Check syntax and structure of schema text."""
        schema_format = SchemaFormat.parse(schema_format)
        if text is None or not str(text).strip():
            result = ValidationResult()
            result.add_error("schema", "Schema content is empty", "EMPTY_SCHEMA")
            return result
        return get_codec(schema_format).validate(text)
