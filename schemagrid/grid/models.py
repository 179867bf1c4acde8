"""Grid data model shared by the converter, grid manager and collaboration engine."""

from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from pydantic.json_schema import SkipJsonSchema


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> Dict[str, Any]:
        """Dump with camelCase keys, JSON-compatible values."""
        return self.model_dump(mode="json", by_alias=True)


class DataType(str, Enum):
    """Column/cell data types understood by the grid."""
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    EMAIL = "email"
    URL = "url"
    DROPDOWN = "dropdown"


class GridCell(CamelModel):
    """One field of a schema as edited in the grid."""

    field_name: str = Field(default="", description="Field identifier")
    data_type: str = Field(default="", description="Data type or format-native type token")
    required: bool = Field(default=False, description="Whether the field is required")
    description: str = Field(default="", description="Free-form description")
    default_value: Any = Field(default=None, description="Default scalar value")
    constraints: str = Field(default="", description="Serialised key: value constraint set")

    @field_validator("field_name", "data_type", "description", "constraints", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("required", mode="before")
    @classmethod
    def _coerce_required(cls, value: Any) -> Any:
        if value is None or value == "":
            return False
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes")
        return value

    def has_name(self) -> bool:
        """Check if the cell carries a non-blank field name."""
        return bool(self.field_name and self.field_name.strip())

    def is_blank(self) -> bool:
        """Check if no attribute of the cell is populated."""
        return (
            not self.has_name()
            and not self.data_type.strip()
            and not self.required
            and not self.description.strip()
            and self.default_value in (None, "")
            and not self.constraints.strip()
        )


Grid = List[List[GridCell]]


def blank_rows(count: int) -> Grid:
    """Create ``count`` placeholder rows."""
    return [[GridCell()] for _ in range(max(count, 0))]


def pad_grid(grid: Grid, min_rows: int = 10) -> Grid:
    """Pad a grid with blank rows up to ``min_rows``."""
    if len(grid) < min_rows:
        grid = grid + blank_rows(min_rows - len(grid))
    return grid


def iter_cells(grid: Grid):
    """Yield ``(row_index, col_index, cell)`` in row-major order."""
    for row_index, row in enumerate(grid or []):
        for col_index, cell in enumerate(row or []):
            yield row_index, col_index, cell


def coerce_grid(raw: Any) -> Grid:
    """Build a grid from wire data (rows of cells, or a flat list of cells)."""
    grid: Grid = []
    for row in raw or []:
        if isinstance(row, GridCell):
            grid.append([row])
        elif isinstance(row, dict):
            grid.append([GridCell.model_validate(row)])
        else:
            grid.append([
                cell if isinstance(cell, GridCell) else GridCell.model_validate(cell or {})
                for cell in row
            ])
    return grid


class ValidationRule(CamelModel):
    """Validation rule attached to a grid column."""

    type: Literal["required", "minLength", "maxLength", "pattern", "range", "custom"]
    value: Any = None
    message: str = ""
    validator: SkipJsonSchema[Optional[Callable[[Any], bool]]] = Field(default=None, exclude=True)


class GridColumn(CamelModel):
    """Column definition; ``id`` names the GridCell attribute it projects."""

    id: str
    title: str
    type: DataType = DataType.TEXT
    validation: List[ValidationRule] = Field(default_factory=list)
    source: Optional[List[str]] = None
    default_value: Any = None
    width: Optional[int] = None
    read_only: bool = False


class ValidationIssue(CamelModel):
    """A single validation finding."""

    field: str
    message: str
    code: str
    line: Optional[int] = None
    column: Optional[int] = None
    value: Any = None


class ValidationResult(CamelModel):
    """Outcome of a validation pass."""

    is_valid: bool = True
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)

    def add_error(self, field: str, message: str, code: str, **kwargs: Any) -> None:
        self.errors.append(ValidationIssue(field=field, message=message, code=code, **kwargs))
        self.is_valid = False

    def add_warning(self, field: str, message: str, code: str, **kwargs: Any) -> None:
        self.warnings.append(ValidationIssue(field=field, message=message, code=code, **kwargs))

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        self.is_valid = not self.errors
        return self


SCHEMA_TYPE_OPTIONS = [
    "text", "number", "integer", "boolean", "date", "datetime", "time",
    "email", "url", "dropdown", "array", "object",
]


def default_columns() -> List[GridColumn]:
    """Default column set of a schema grid."""
    return [
        GridColumn(
            id="field_name",
            title="Field Name",
            type=DataType.TEXT,
            width=150,
            validation=[
                ValidationRule(type="required", message="Field name is required."),
                ValidationRule(
                    type="pattern",
                    value=r"^[a-zA-Z_][a-zA-Z0-9_.\-]*$",
                    message="Field name must start with a letter or underscore "
                            "and contain only letters, digits, '_', '.' or '-'.",
                ),
            ],
        ),
        GridColumn(
            id="data_type",
            title="Data Type",
            type=DataType.DROPDOWN,
            width=120,
            source=list(SCHEMA_TYPE_OPTIONS),
            validation=[ValidationRule(type="required", message="Data type is required.")],
        ),
        GridColumn(
            id="required",
            title="Required",
            type=DataType.BOOLEAN,
            width=80,
            default_value=False,
        ),
        GridColumn(
            id="description",
            title="Description",
            type=DataType.TEXT,
            width=200,
            validation=[
                ValidationRule(
                    type="maxLength", value=500,
                    message="Description cannot exceed 500 characters.",
                )
            ],
        ),
        GridColumn(id="default_value", title="Default Value", type=DataType.TEXT, width=120),
        GridColumn(
            id="constraints",
            title="Constraints",
            type=DataType.TEXT,
            width=150,
            validation=[
                ValidationRule(
                    type="maxLength", value=200,
                    message="Constraints cannot exceed 200 characters.",
                )
            ],
        ),
    ]


# Edit vocabulary

ChangeType = Literal[
    "cell-update", "row-insert", "row-delete",
    "column-insert", "column-delete", "structure-change",
]


class CursorPosition(CamelModel):
    """Cell coordinates."""

    row: int = Field(..., ge=0)
    col: int = Field(..., ge=0)

    def key(self) -> str:
        return f"{self.row}:{self.col}"


class SelectionRange(CamelModel):
    """Rectangular cell selection."""

    start_row: int
    start_col: int
    end_row: int
    end_col: int


class GridChange(CamelModel):
    """Atomic edit made by one participant."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    type: ChangeType = "cell-update"
    position: CursorPosition
    old_value: Any = None
    new_value: Any = None
    user_id: str
    timestamp: int = Field(..., description="Client-local milliseconds, monotonic per client")
    session_id: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
