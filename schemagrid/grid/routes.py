"""Grid REST API routes."""

from fastapi import APIRouter, Depends, Query, Response, status

from schemagrid.dependencies import ensure_content_size, get_grid_manager
from schemagrid.exceptions import ValidationError
from schemagrid.grid.manager import EXPORT_FORMATS, GridInstance, GridManager
from schemagrid.grid.models import ValidationResult
from schemagrid.grid.schemas import (
    GridCreate,
    GridListResponse,
    GridResponse,
    GridStatsResponse,
    GridSummary,
)

router = APIRouter(prefix="/grids", tags=["grids"])

EXPORT_MEDIA_TYPES = {
    "csv": "text/csv",
    "json": "application/json",
    "xml": "application/xml",
}


def _grid_response(instance: GridInstance) -> GridResponse:
    return GridResponse(
        **instance.summary(),
        grid_data=instance.get_data(),
        columns=instance.columns,
    )


@router.post("", response_model=GridResponse, status_code=status.HTTP_201_CREATED)
async def create_grid(request: GridCreate, manager: GridManager = Depends(get_grid_manager)):
    """Create a grid, optionally reading its rows from schema text."""
    if request.content is not None:
        if request.format is None:
            raise ValidationError("format is required when content is given")
        ensure_content_size(request.content)
        instance = await manager.create_grid_from_schema(
            request.grid_id, request.content, request.format, read_only=request.read_only
        )
    else:
        instance = manager.create_grid(request.grid_id, request.grid_data, read_only=request.read_only)
    return _grid_response(instance)


@router.get("", response_model=GridListResponse)
async def list_grids(manager: GridManager = Depends(get_grid_manager)):
    grids = [GridSummary(**g.summary()) for g in manager.list_grids()]
    return GridListResponse(grids=grids, total=len(grids))


@router.get("/stats", response_model=GridStatsResponse)
async def grid_stats(manager: GridManager = Depends(get_grid_manager)):
    """Aggregate counts over all grids."""
    return GridStatsResponse(**manager.get_grid_stats())


@router.get("/{grid_id}", response_model=GridResponse)
async def get_grid(grid_id: str, manager: GridManager = Depends(get_grid_manager)):
    return _grid_response(manager.require_grid(grid_id))


@router.delete("/{grid_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_grid(grid_id: str, manager: GridManager = Depends(get_grid_manager)):
    manager.require_grid(grid_id)
    manager.destroy_grid(grid_id)


@router.post("/{grid_id}/validate", response_model=ValidationResult)
async def validate_grid(grid_id: str, manager: GridManager = Depends(get_grid_manager)):
    """Validate every populated row of a grid."""
    return manager.require_grid(grid_id).validate_all()


@router.get("/{grid_id}/export")
async def export_grid(
    grid_id: str,
    format: str = Query("json", description=f"One of: {', '.join(EXPORT_FORMATS)}"),
    manager: GridManager = Depends(get_grid_manager),
):
    """Export a grid's rows as csv, json or xml."""
    body = manager.export_grid_data(grid_id, format)
    return Response(
        content=body,
        media_type=EXPORT_MEDIA_TYPES[format.lower()],
        headers={"Content-Disposition": f'attachment; filename="{grid_id}.{format.lower()}"'},
    )
