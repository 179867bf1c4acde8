"""Grid API schemas."""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import Field

from schemagrid.conversion.formats import SchemaFormat
from schemagrid.grid.models import CamelModel, GridCell, GridColumn


class GridCreate(CamelModel):
    """Create a grid from rows or from schema text."""
    grid_id: str = Field(..., min_length=1, description="Grid id")
    grid_data: Optional[List[Any]] = Field(default=None, description="Initial rows")
    content: Optional[str] = Field(default=None, description="Schema text to read the rows from")
    format: Optional[SchemaFormat] = Field(default=None, description="Format of content")
    read_only: bool = False


class GridSummary(CamelModel):
    id: str
    row_count: int
    field_count: int
    read_only: bool
    created_at: datetime
    updated_at: datetime


class GridResponse(GridSummary):
    """Grid with its rows and columns."""
    grid_data: List[List[GridCell]]
    columns: List[GridColumn]


class GridListResponse(CamelModel):
    grids: List[GridSummary]
    total: int


class GridStatsResponse(CamelModel):
    total_grids: int
    active_grids: int
    total_cells: int
    validation_errors: int
    validation_warnings: int
