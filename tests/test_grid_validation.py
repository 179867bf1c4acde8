"""Test grid cell validation."""

import pytest

from schemagrid.grid.models import (
    DataType,
    GridCell,
    GridColumn,
    ValidationIssue,
    ValidationResult,
    ValidationRule,
    coerce_grid,
    default_columns,
    pad_grid,
)
from schemagrid.grid.validation import (
    format_validation_message,
    get_validation_stats,
    validate_cell,
    validate_grid,
    validate_rule,
)


def column(type_=DataType.TEXT, rules=None, source=None):
    return GridColumn(id="value", title="Value", type=type_, validation=rules or [], source=source)


@pytest.mark.unit
class TestGridCell:
    """Test GridCell model."""

    def test_blank_cell(self):
        assert GridCell().is_blank()
        assert not GridCell(description="only a note").is_blank()

    def test_camel_case_wire_form(self):
        cell = GridCell.model_validate({"fieldName": "id", "dataType": "number", "required": "true"})
        assert cell.field_name == "id"
        assert cell.required is True
        wire = cell.to_wire()
        assert wire["fieldName"] == "id"
        assert wire["defaultValue"] is None

    def test_coerce_grid_accepts_flat_cells(self):
        grid = coerce_grid([{"fieldName": "a"}, [{"fieldName": "b"}, {"fieldName": "c"}]])
        assert [len(row) for row in grid] == [1, 2]
        assert grid[1][1].field_name == "c"

    def test_pad_grid(self):
        assert len(pad_grid([], 10)) == 10
        grid = [[GridCell(field_name=f"f{i}")] for i in range(12)]
        assert len(pad_grid(grid, 10)) == 12


@pytest.mark.unit
class TestValidateCell:
    """Test single-cell validation."""

    def test_required_is_error(self):
        result = validate_cell("", column(rules=[ValidationRule(type="required")]))
        assert not result.is_valid
        assert result.errors[0].code == "REQUIRED"

    def test_empty_value_skips_other_rules(self):
        result = validate_cell(None, column(DataType.NUMBER, [ValidationRule(type="minLength", value=3)]))
        assert result.is_valid
        assert result.warnings == []

    def test_type_mismatch(self):
        result = validate_cell("abc", column(DataType.NUMBER))
        assert result.errors[0].code == "TYPE_MISMATCH"
        assert result.errors[0].line == 1

    @pytest.mark.parametrize("type_, value", [
        (DataType.NUMBER, "12.5"),
        (DataType.BOOLEAN, "false"),
        (DataType.DATE, "2024-02-29"),
        (DataType.EMAIL, "a@example.com"),
        (DataType.URL, "https://example.com/x"),
    ])
    def test_valid_types(self, type_, value):
        assert validate_cell(value, column(type_)).is_valid

    def test_length_and_pattern_rules_warn(self):
        rules = [
            ValidationRule(type="maxLength", value=3),
            ValidationRule(type="pattern", value=r"^[a-z]+$"),
        ]
        result = validate_cell("ABCDE", column(rules=rules))
        assert result.is_valid
        assert {w.code for w in result.warnings} == {"MAX_LENGTH", "PATTERN_MISMATCH"}

    def test_range_rule(self):
        rule = ValidationRule(type="range", value=[0, 10])
        assert validate_rule("11", rule, "value").code == "RANGE_VIOLATION"
        assert validate_rule("5", rule, "value") is None

    def test_custom_rule(self):
        rule = ValidationRule(type="custom", validator=lambda v: v.startswith("x"))
        assert validate_rule("yes", rule, "value").code == "CUSTOM_VALIDATION"
        assert validate_rule("xyz", rule, "value") is None

    def test_dropdown_option_warning(self):
        result = validate_cell("purple", column(DataType.DROPDOWN, source=["red", "green"]))
        assert result.warnings[0].code == "INVALID_OPTION"

    def test_custom_message_used(self):
        rule = ValidationRule(type="required", message="Name please.")
        assert validate_rule("", rule, "value").message == "Name please."


@pytest.mark.unit
class TestValidateGrid:
    """Test whole-grid validation."""

    def test_blank_rows_ignored(self):
        assert validate_grid([[GridCell()], [GridCell()]]).is_valid

    def test_duplicate_names(self):
        grid = [
            [GridCell(field_name="id", data_type="number")],
            [GridCell(field_name="id", data_type="text")],
        ]
        result = validate_grid(grid)
        assert not result.is_valid
        duplicate = [e for e in result.errors if e.code == "DUPLICATE_FIELD_NAME"]
        assert duplicate[0].line == 2

    def test_missing_type_is_error(self):
        result = validate_grid([[GridCell(field_name="id")]])
        assert [e.field for e in result.errors] == ["data_type"]

    def test_invalid_field_name_pattern_warns(self):
        result = validate_grid([[GridCell(field_name="1bad", data_type="text")]])
        assert result.is_valid
        assert result.warnings[0].code == "PATTERN_MISMATCH"

    def test_default_columns(self):
        ids = [c.id for c in default_columns()]
        assert ids == ["field_name", "data_type", "required", "description", "default_value", "constraints"]


@pytest.mark.unit
def test_validation_helpers():
    result = ValidationResult()
    result.add_error("field_name", "Missing", "REQUIRED", line=3, column=1)
    result.add_warning("description", "Long", "MAX_LENGTH")
    result.add_warning("description", "Longer", "MAX_LENGTH")

    assert format_validation_message(result.errors[0]) == "Row 3, column 1: Missing"
    assert format_validation_message(ValidationIssue(field="x", message="plain", code="X")) == "plain"

    stats = get_validation_stats(result)
    assert stats["total_errors"] == 1
    assert stats["warnings_by_code"] == {"MAX_LENGTH": 2}
