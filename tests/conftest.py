"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient

from schemagrid.collaboration.realtime import CollaborationEngine
from schemagrid.conversion.converter import SchemaConverter
from schemagrid.conversion.service import SchemaConversionService
from schemagrid.grid.manager import GridManager
from schemagrid.grid.models import GridCell
from schemagrid.main import create_app


@pytest.fixture
def app():
    """Fresh application with its own engines."""
    return create_app()


@pytest.fixture
def client(app):
    """Create test client; runs the app lifespan."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def converter():
    return SchemaConverter()


@pytest.fixture
def conversion_service():
    return SchemaConversionService()


@pytest.fixture
def grid_manager(conversion_service):
    return GridManager(conversion_service)


@pytest.fixture
def engine():
    return CollaborationEngine()


@pytest.fixture
def sample_grid():
    """Three populated rows covering types, defaults and constraints."""
    return [
        [GridCell(field_name="id", data_type="number", required=True, description="Identifier")],
        [GridCell(
            field_name="name",
            data_type="text",
            required=True,
            description="Display name",
            constraints="minLength: 2, maxLength: 50",
        )],
        [GridCell(
            field_name="status",
            data_type="dropdown",
            default_value="active",
            constraints="enum: [active, inactive]",
        )],
    ]
