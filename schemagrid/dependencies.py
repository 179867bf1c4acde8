"""FastAPI dependencies resolving the engines held on ``app.state``."""

from fastapi import HTTPException, Request, status

from schemagrid.config import settings


def get_conversion_service(request: Request):
    """Get the application's SchemaConversionService."""
    return request.app.state.conversion_service


def get_grid_manager(request: Request):
    """Get the application's GridManager."""
    return request.app.state.grid_manager


def get_collaboration_engine(request: Request):
    """Get the application's CollaborationEngine."""
    return request.app.state.collaboration_engine


def ensure_content_size(content: str) -> str:
    """Reject schema text larger than ``max_schema_size`` bytes."""
    if content is not None and len(content.encode("utf-8")) > settings.max_schema_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Schema content exceeds {settings.max_schema_size} bytes",
        )
    return content
