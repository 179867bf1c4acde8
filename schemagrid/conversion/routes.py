"""Schema conversion REST API routes."""

from fastapi import APIRouter, Depends

from schemagrid.conversion.formats import ConversionResult
from schemagrid.conversion.schemas import (
    ConvertRequest,
    DetectRequest,
    DetectResponse,
    GridDataResponse,
    GridStatsRequest,
    SchemaContentRequest,
    SchemaStatsResponse,
    SchemaValidationResponse,
    SupportedFormat,
    SupportedFormatsResponse,
    TransformRequest,
)
from schemagrid.conversion.service import SchemaConversionService
from schemagrid.dependencies import ensure_content_size, get_conversion_service
from schemagrid.grid.models import coerce_grid

router = APIRouter(prefix="/schemas", tags=["schemas"])


@router.get("/formats", response_model=SupportedFormatsResponse)
async def list_formats(service: SchemaConversionService = Depends(get_conversion_service)):
    """List supported schema formats."""
    return SupportedFormatsResponse(
        formats=[SupportedFormat(**f) for f in service.get_supported_formats()]
    )


@router.post("/convert", response_model=ConversionResult)
async def convert_grid(
    request: ConvertRequest,
    service: SchemaConversionService = Depends(get_conversion_service),
):
    """Convert grid rows to the requested formats."""
    return await service.convert_from_grid(coerce_grid(request.grid_data), request.formats)


@router.post("/to-grid", response_model=GridDataResponse)
async def schema_to_grid(
    request: SchemaContentRequest,
    service: SchemaConversionService = Depends(get_conversion_service),
):
    """Read schema text into grid rows."""
    ensure_content_size(request.content)
    grid = await service.convert_to_grid(request.content, request.format)
    return GridDataResponse(format=request.format, grid_data=grid, row_count=len(grid))


@router.post("/validate", response_model=SchemaValidationResponse)
async def validate_schema(
    request: SchemaContentRequest,
    service: SchemaConversionService = Depends(get_conversion_service),
):
    """Check schema text for syntax and structure."""
    ensure_content_size(request.content)
    result = await service.validate_schema(request.content, request.format)
    return SchemaValidationResponse(
        format=request.format,
        is_valid=result.is_valid,
        errors=result.errors,
        warnings=result.warnings,
    )


@router.post("/detect", response_model=DetectResponse)
async def detect_format(
    request: DetectRequest,
    service: SchemaConversionService = Depends(get_conversion_service),
):
    ensure_content_size(request.content)
    detected = await service.detect_schema_format(request.content)
    return DetectResponse(format=detected, detected=detected is not None)


@router.post("/transform", response_model=ConversionResult)
async def transform_schema(
    request: TransformRequest,
    service: SchemaConversionService = Depends(get_conversion_service),
):
    """Convert schema text between formats."""
    ensure_content_size(request.content)
    return await service.convert_between_formats(
        request.content, request.source_format, request.target_format
    )


@router.post("/stats", response_model=SchemaStatsResponse)
async def schema_stats(
    request: GridStatsRequest,
    service: SchemaConversionService = Depends(get_conversion_service),
):
    return SchemaStatsResponse(**service.generate_schema_stats(coerce_grid(request.grid_data)))
