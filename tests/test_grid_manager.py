"""Test grid instances and the grid manager."""

import csv
import io
import json
import xml.etree.ElementTree as ET

import pytest

from schemagrid.exceptions import GridNotFoundError, ValidationError
from schemagrid.grid.manager import GridInstance, GridManager
from schemagrid.grid.models import CursorPosition, GridCell, GridChange


def change(change_type="cell-update", row=0, col=0, new_value=None, **kwargs):
    return GridChange(
        type=change_type,
        position=CursorPosition(row=row, col=col),
        new_value=new_value,
        user_id=kwargs.pop("user_id", "alice"),
        timestamp=kwargs.pop("timestamp", 100),
        session_id=kwargs.pop("session_id", "grid-1"),
        **kwargs,
    )


@pytest.mark.unit
class TestGridInstance:
    """Test a single grid."""

    def test_defaults_to_blank_rows(self):
        instance = GridInstance("g")
        assert len(instance.data) == 10
        assert instance.summary()["field_count"] == 0

    def test_get_data_returns_copies(self, sample_grid):
        instance = GridInstance("g", sample_grid)
        data = instance.get_data()
        data[0][0].field_name = "changed"
        assert instance.data[0][0].field_name == "id"

    def test_set_cell_grows_grid(self):
        instance = GridInstance("g", [])
        instance.set_cell(2, 0, {"fieldName": "late", "dataType": "text"})
        assert len(instance.data) == 3
        assert instance.data[2][0].field_name == "late"

    def test_apply_whole_cell_update(self):
        instance = GridInstance("g")
        assert instance.apply_change(change(new_value={"fieldName": "id", "dataType": "number"}))
        assert instance.data[0][0].data_type == "number"

    def test_apply_single_attribute_update(self, sample_grid):
        instance = GridInstance("g", sample_grid)
        instance.apply_change(change(row=1, new_value="Full name", metadata={"field": "description"}))
        assert instance.data[1][0].description == "Full name"
        assert instance.data[1][0].field_name == "name"

    def test_unknown_attribute_rejected(self):
        with pytest.raises(ValidationError):
            GridInstance("g").apply_change(change(new_value="x", metadata={"field": "colour"}))

    def test_row_insert_and_delete(self, sample_grid):
        instance = GridInstance("g", sample_grid)
        instance.apply_change(change("row-insert", row=1))
        assert [row[0].field_name for row in instance.data] == ["id", "", "name", "status"]

        instance.apply_change(change("row-delete", row=0))
        assert [row[0].field_name for row in instance.data] == ["", "name", "status"]
        assert instance.apply_change(change("row-delete", row=99)) is False

    def test_listeners_notified(self):
        seen = []
        instance = GridInstance("g")
        instance.add_listener(lambda grid_id, c: seen.append((grid_id, c.type)))
        instance.apply_change(change("row-insert"))
        assert seen == [("g", "row-insert")]

    def test_read_only_rejects_edits(self):
        instance = GridInstance("g", read_only=True)
        with pytest.raises(ValidationError):
            instance.set_cell(0, 0, {"fieldName": "x"})

    def test_destroyed_rejects_edits(self):
        instance = GridInstance("g")
        instance.add_listener(lambda *args: None)
        instance.destroy()
        assert instance.data == []
        assert instance.listeners == []
        with pytest.raises(ValidationError):
            instance.apply_change(change(new_value={"fieldName": "x"}))

    def test_validate_all_stores_results(self):
        instance = GridInstance("g", [[GridCell(field_name="a")], [GridCell(field_name="a", data_type="text")]])
        result = instance.validate_all()
        assert not result.is_valid
        assert instance.get_validation_results() == [result]


@pytest.mark.unit
class TestGridManager:
    """Test the keyed grid collection."""

    def test_create_and_get(self, grid_manager, sample_grid):
        instance = grid_manager.create_grid("g", sample_grid)
        assert grid_manager.get_grid("g") is instance
        assert len(instance.data) == 10

    def test_replacing_destroys_previous(self, grid_manager):
        first = grid_manager.create_grid("g")
        second = grid_manager.create_grid("g")
        assert first.destroyed
        assert grid_manager.get_grid("g") is second
        assert len(grid_manager.list_grids()) == 1

    def test_require_grid(self, grid_manager):
        with pytest.raises(GridNotFoundError):
            grid_manager.require_grid("nope")

    def test_destroy(self, grid_manager):
        grid_manager.create_grid("a")
        grid_manager.create_grid("b")
        assert grid_manager.destroy_grid("a") is True
        assert grid_manager.destroy_grid("a") is False
        grid_manager.destroy_all_grids()
        assert grid_manager.list_grids() == []

    @pytest.mark.asyncio
    async def test_create_from_schema(self, grid_manager):
        text = json.dumps({"properties": {"sku": {"type": "string"}}, "required": ["sku"]})
        instance = await grid_manager.create_grid_from_schema("g", text, "json")
        assert instance.data[0][0].field_name == "sku"
        assert instance.data[0][0].required is True

    @pytest.mark.asyncio
    async def test_create_from_schema_needs_service(self):
        with pytest.raises(ValidationError):
            await GridManager().create_grid_from_schema("g", "{}", "json")

    def test_apply_collaboration_change(self, grid_manager):
        grid_manager.create_grid("grid-1")
        applied = grid_manager.apply_collaboration_change(
            change(new_value="email", metadata={"field": "data_type"})
        )
        assert applied is True
        assert grid_manager.get_grid("grid-1").data[0][0].data_type == "email"

    def test_collaboration_change_for_unknown_grid(self, grid_manager):
        assert grid_manager.apply_collaboration_change(change(session_id="other")) is False

    def test_collaboration_change_not_applicable(self, grid_manager):
        grid_manager.create_grid("grid-1")
        assert grid_manager.apply_collaboration_change(change(new_value="plain")) is False

    def test_schema_dict_round_trip(self, grid_manager, sample_grid):
        schema = grid_manager.convert_grid_data_to_schema(sample_grid, "json")
        assert schema["required"] == ["id", "name"]
        assert schema["properties"]["name"]["maxLength"] == 50

        grid = grid_manager.convert_schema_to_grid_data(schema)
        assert len(grid) == 10
        assert grid[2][0].constraints == "enum: [active, inactive]"

    def test_element_list_round_trip(self, grid_manager, sample_grid):
        schema = grid_manager.convert_grid_data_to_schema(sample_grid, "xsd")
        first = schema["elements"][0]
        assert first == {
            "name": "id",
            "type": "xs:decimal",
            "minOccurs": "1",
            "annotation": {"documentation": "Identifier"},
        }

        grid = grid_manager.convert_schema_to_grid_data(schema)
        assert grid[1][0].constraints == "minLength: 2, maxLength: 50"
        assert grid[2][0].required is False

    def test_unrecognised_schema_dict(self, grid_manager):
        grid = grid_manager.convert_schema_to_grid_data({"title": "nothing"})
        assert len(grid) == 10
        assert all(row[0].is_blank() for row in grid)

    def test_validate_all_and_stats(self, grid_manager, sample_grid):
        grid_manager.create_grid("good", sample_grid)
        grid_manager.create_grid("bad", [[GridCell(field_name="x")]])

        results = grid_manager.validate_all_grids()
        assert results["good"].is_valid
        assert not results["bad"].is_valid

        stats = grid_manager.get_grid_stats()
        assert stats["total_grids"] == 2
        assert stats["active_grids"] == 2
        assert stats["total_cells"] == 20
        assert stats["validation_errors"] == 1


@pytest.mark.unit
class TestExport:
    """Test in-memory export."""

    def test_csv(self, grid_manager, sample_grid):
        grid_manager.create_grid("g", sample_grid)
        rows = list(csv.reader(io.StringIO(grid_manager.export_grid_data("g", "csv"))))
        assert rows[0] == ["Field Name", "Data Type", "Required", "Description", "Default Value", "Constraints"]
        assert rows[1] == ["id", "number", "true", "Identifier", "", ""]
        assert len(rows) == 11

    def test_json(self, grid_manager, sample_grid):
        grid_manager.create_grid("g", sample_grid)
        records = json.loads(grid_manager.export_grid_data("g", "JSON"))
        assert records[2]["fieldName"] == "status"
        assert records[2]["defaultValue"] == "active"

    def test_xml_skips_blank_rows(self, grid_manager, sample_grid):
        grid_manager.create_grid("g", sample_grid)
        root = ET.fromstring(grid_manager.export_grid_data("g", "xml"))
        fields = root.findall("field")
        assert len(fields) == 3
        assert fields[1].findtext("constraints") == "minLength: 2, maxLength: 50"

    def test_unsupported(self, grid_manager):
        grid_manager.create_grid("g")
        with pytest.raises(ValidationError):
            grid_manager.export_grid_data("g", "pdf")
