"""Grid cell validation.

Pure functions that check a cell value against a column's declared type and
rule set, plus whole-grid checks (duplicate field names). Findings from
``required`` rules and type mismatches are errors; every other rule yields
warnings so that the grid stays editable while a value is incomplete.
"""

import math
import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import structlog

from schemagrid.grid.models import (
    DataType,
    Grid,
    GridColumn,
    ValidationIssue,
    ValidationResult,
    ValidationRule,
    default_columns,
)

logger = structlog.get_logger()

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
BOOLEAN_STRINGS = {"true", "false", "1", "0"}


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def is_valid_number(value: Any) -> bool:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return not math.isnan(number)


def is_valid_boolean(value: Any) -> bool:
    return isinstance(value, bool) or str(value).strip().lower() in BOOLEAN_STRINGS


def is_valid_date(value: Any) -> bool:
    if isinstance(value, (date, datetime)):
        return True
    try:
        datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


def is_valid_email(value: Any) -> bool:
    return bool(EMAIL_RE.match(str(value)))


def is_valid_url(value: Any) -> bool:
    parsed = urlparse(str(value))
    return bool(parsed.scheme and parsed.netloc)


def _check_type(value: Any, column: GridColumn, line: int, col: int) -> List[ValidationIssue]:
    """Check ``value`` against the column type. Empty values always pass."""
    if _is_empty(value):
        return []

    checks = {
        DataType.TEXT: lambda v: isinstance(v, (str, int, float, bool)),
        DataType.NUMBER: is_valid_number,
        DataType.BOOLEAN: is_valid_boolean,
        DataType.DATE: is_valid_date,
        DataType.EMAIL: is_valid_email,
        DataType.URL: is_valid_url,
    }
    check = checks.get(column.type)
    if check is None or check(value):
        return []

    return [
        ValidationIssue(
            field=column.id,
            message=f"Value must be of type {column.type.value}.",
            code="TYPE_MISMATCH",
            line=line,
            column=col,
            value=value,
        )
    ]


def validate_rule(value: Any, rule: ValidationRule, field: str,
                  line: Optional[int] = None, col: Optional[int] = None) -> Optional[ValidationIssue]:
    """Apply one rule; return the finding or None."""
    def issue(code: str, default_message: str) -> ValidationIssue:
        return ValidationIssue(
            field=field,
            message=rule.message or default_message,
            code=code,
            line=line,
            column=col,
            value=value,
        )

    if rule.type == "required":
        if _is_empty(value):
            return issue("REQUIRED", "This value is required.")
        return None

    # Remaining rules only judge values that are present
    if _is_empty(value):
        return None

    if rule.type == "minLength":
        if len(str(value)) < int(rule.value):
            return issue("MIN_LENGTH", f"Enter at least {rule.value} characters.")
    elif rule.type == "maxLength":
        if len(str(value)) > int(rule.value):
            return issue("MAX_LENGTH", f"Enter at most {rule.value} characters.")
    elif rule.type == "pattern":
        if not re.search(str(rule.value), str(value)):
            return issue("PATTERN_MISMATCH", "Value does not match the expected pattern.")
    elif rule.type == "range":
        if is_valid_number(value):
            low, high = rule.value
            number = float(value)
            if number < low or number > high:
                return issue("RANGE_VIOLATION", f"Value must be between {low} and {high}.")
    elif rule.type == "custom":
        if rule.validator is not None and not rule.validator(value):
            return issue("CUSTOM_VALIDATION", "Value does not satisfy the custom rule.")
    return None


def validate_cell(value: Any, column: GridColumn, row: int = 0, col: int = 0) -> ValidationResult:
    """Validate a single cell value against a column."""
    result = ValidationResult()
    line, column_number = row + 1, col + 1

    try:
        result.errors.extend(_check_type(value, column, line, column_number))

        if column.type == DataType.DROPDOWN and column.source and not _is_empty(value):
            if str(value) not in column.source:
                result.add_warning(
                    column.id,
                    f"'{value}' is not one of the listed options.",
                    "INVALID_OPTION",
                    line=line, column=column_number, value=value,
                )

        for rule in column.validation:
            finding = validate_rule(value, rule, column.id, line, column_number)
            if finding is None:
                continue
            if rule.type == "required":
                result.errors.append(finding)
            else:
                result.warnings.append(finding)
    except (TypeError, ValueError, re.error) as e:
        logger.error("Cell validation failed", row=row, col=col, column=column.id, error=str(e))
        result.add_error(
            column.id, f"Cell could not be validated: {e}", "VALIDATION_ERROR",
            line=line, column=column_number, value=value,
        )

    result.is_valid = not result.errors
    return result


def validate_grid(grid: Grid, columns: Optional[List[GridColumn]] = None) -> ValidationResult:
    """Validate every populated row of a grid plus grid-wide constraints."""
    columns = columns or default_columns()
    result = ValidationResult()
    seen: Dict[str, int] = {}

    for row_index, row in enumerate(grid or []):
        for cell in row or []:
            if cell.is_blank():
                continue
            for col_index, column in enumerate(columns):
                value = getattr(cell, column.id, None)
                result.merge(validate_cell(value, column, row_index, col_index))

            if cell.has_name():
                name = cell.field_name.strip()
                if name in seen:
                    result.add_error(
                        "field_name",
                        f"Duplicate field name: {name} (first defined on row {seen[name] + 1})",
                        "DUPLICATE_FIELD_NAME",
                        line=row_index + 1, column=1, value=name,
                    )
                else:
                    seen[name] = row_index

    result.is_valid = not result.errors
    return result


def format_validation_message(issue: ValidationIssue) -> str:
    """Render an issue with its position for display."""
    if issue.line is None:
        return issue.message
    return f"Row {issue.line}, column {issue.column}: {issue.message}"


def get_validation_stats(result: ValidationResult) -> Dict[str, Any]:
    errors_by_code: Dict[str, int] = {}
    warnings_by_code: Dict[str, int] = {}
    for error in result.errors:
        errors_by_code[error.code] = errors_by_code.get(error.code, 0) + 1
    for warning in result.warnings:
        warnings_by_code[warning.code] = warnings_by_code.get(warning.code, 0) + 1

    return {
        "total_errors": len(result.errors),
        "total_warnings": len(result.warnings),
        "errors_by_code": errors_by_code,
        "warnings_by_code": warnings_by_code,
    }
