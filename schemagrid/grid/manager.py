"""In-memory grid instances and their manager.

A ``GridInstance`` holds the rows of one editable grid together with its
columns and the results of its last validation pass. ``GridManager`` keys
instances by id, builds them from schema text, exports their contents and
mirrors collaborative edits into them.
"""

import csv
import io
import json
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog

from schemagrid.config import settings
from schemagrid.conversion.codecs import JsonCodec
from schemagrid.conversion.constraints import normalize_constraints, xsd_type_for
from schemagrid.conversion.formats import SchemaFormat
from schemagrid.exceptions import GridNotFoundError, ValidationError
from schemagrid.grid.models import (
    Grid,
    GridCell,
    GridChange,
    GridColumn,
    ValidationResult,
    blank_rows,
    coerce_grid,
    default_columns,
    iter_cells,
    pad_grid,
)
from schemagrid.grid.validation import validate_grid

logger = structlog.get_logger()

EXPORT_FORMATS = ("csv", "json", "xml")

GridListener = Callable[[str, GridChange], None]


class GridInstance:
    """One editable grid."""

    def __init__(self, grid_id: str, data: Optional[Grid] = None,
                 columns: Optional[List[GridColumn]] = None, read_only: bool = False):
        self.id = grid_id
        self.data: Grid = data if data is not None else blank_rows(settings.grid_min_rows)
        self.columns = columns or default_columns()
        self.read_only = read_only
        self.created_at = datetime.now(timezone.utc)
        self.updated_at = self.created_at
        self.validation_results: List[ValidationResult] = []
        self.listeners: List[GridListener] = []
        self.destroyed = False
        self.logger = logger.bind(component="grid_instance", grid_id=grid_id)

    def _ensure_editable(self) -> None:
        if self.destroyed:
            raise ValidationError(f"Grid {self.id} has been destroyed")
        if self.read_only:
            raise ValidationError(f"Grid {self.id} is read-only")

    def _touch(self, change: Optional[GridChange] = None) -> None:
        self.updated_at = datetime.now(timezone.utc)
        if change is None:
            return
        for listener in list(self.listeners):
            listener(self.id, change)

    def get_data(self) -> Grid:
        """Copy of the current rows."""
        return [[cell.model_copy() for cell in row] for row in self.data]

    def set_cell(self, row: int, col: int, cell: Any) -> None:
        """Replace one cell, growing the grid when the row is past the end."""
        self._ensure_editable()
        if not isinstance(cell, GridCell):
            cell = GridCell.model_validate(cell or {})
        while len(self.data) <= row:
            self.data.append([GridCell()])
        cells = self.data[row]
        while len(cells) <= col:
            cells.append(GridCell())
        cells[col] = cell
        self._touch()

    def apply_change(self, change: GridChange) -> bool:
        """Apply a collaborative edit; returns whether the grid changed.

        A ``cell-update`` carries either a whole cell or, with
        ``metadata["field"]``, a single attribute value.
        """
        self._ensure_editable()
        row, col = change.position.row, change.position.col

        if change.type == "cell-update":
            attribute = change.metadata.get("field")
            if attribute:
                if attribute not in GridCell.model_fields:
                    raise ValidationError(f"Unknown cell attribute: {attribute}")
                current = self.data[row][col] if row < len(self.data) and col < len(self.data[row]) else GridCell()
                cell = current.model_copy(update={attribute: change.new_value})
                cell = GridCell.model_validate(cell.model_dump())
            elif isinstance(change.new_value, (dict, GridCell)):
                cell = change.new_value
            else:
                raise ValidationError("cell-update needs a cell or metadata.field")
            self.set_cell(row, col, cell)
        elif change.type == "row-insert":
            self.data.insert(min(row, len(self.data)), [GridCell()])
        elif change.type == "row-delete":
            if row >= len(self.data):
                return False
            del self.data[row]
        else:
            self.logger.debug("Change type not applied to grid data", change_type=change.type)
            return False

        self._touch(change)
        return True

    def add_listener(self, listener: GridListener) -> None:
        self.listeners.append(listener)

    def validate_all(self) -> ValidationResult:
        result = validate_grid(self.data, self.columns)
        self.validation_results = [result]
        return result

    def get_validation_results(self) -> List[ValidationResult]:
        return list(self.validation_results)

    def cell_count(self) -> int:
        return sum(len(row) for row in self.data)

    def destroy(self) -> None:
        """Release rows and listeners; further edits are rejected."""
        self.data = []
        self.listeners.clear()
        self.validation_results = []
        self.destroyed = True

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "row_count": len(self.data),
            "field_count": sum(1 for _, _, cell in iter_cells(self.data) if not cell.is_blank()),
            "read_only": self.read_only,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class GridManager:
    """Keyed collection of grid instances."""

    def __init__(self, conversion_service=None):
        self.conversion_service = conversion_service
        self.grids: Dict[str, GridInstance] = {}
        self.logger = logger.bind(component="grid_manager")

    def create_grid(self, grid_id: str, data: Any = None,
                    columns: Optional[List[GridColumn]] = None,
                    read_only: bool = False) -> GridInstance:
        """Create a grid, replacing (and destroying) any grid with the same id."""
        if grid_id in self.grids:
            self.destroy_grid(grid_id)

        grid = None
        if data is not None:
            grid = pad_grid(coerce_grid(data), settings.grid_min_rows)
        instance = GridInstance(grid_id, grid, columns, read_only)
        self.grids[grid_id] = instance
        self.logger.info("Grid created", grid_id=grid_id, rows=len(instance.data))
        return instance

    async def create_grid_from_schema(self, grid_id: str, text: str, schema_format: Any,
                                      read_only: bool = False) -> GridInstance:
        """Create a grid whose initial rows are read from schema text."""
        if self.conversion_service is None:
            raise ValidationError("No conversion service configured")
        data = await self.conversion_service.convert_to_grid(text, schema_format)
        return self.create_grid(grid_id, data, read_only=read_only)

    def get_grid(self, grid_id: str) -> Optional[GridInstance]:
        return self.grids.get(grid_id)

    def require_grid(self, grid_id: str) -> GridInstance:
        instance = self.grids.get(grid_id)
        if instance is None:
            raise GridNotFoundError(f"Grid not found: {grid_id}")
        return instance

    def destroy_grid(self, grid_id: str) -> bool:
        instance = self.grids.pop(grid_id, None)
        if instance is None:
            return False
        instance.destroy()
        self.logger.info("Grid destroyed", grid_id=grid_id)
        return True

    def destroy_all_grids(self) -> None:
        for grid_id in list(self.grids):
            self.destroy_grid(grid_id)

    def list_grids(self) -> List[GridInstance]:
        return list(self.grids.values())

    def apply_collaboration_change(self, change: GridChange) -> bool:
        """Mirror a session's change into the grid with the session's id."""
        instance = self.grids.get(change.session_id)
        if instance is None or instance.read_only:
            return False
        try:
            return instance.apply_change(change)
        except ValidationError as e:
            self.logger.warning(
                "Collaborative change not applied",
                grid_id=change.session_id,
                change_id=change.id,
                error=e.message,
            )
            return False

    def convert_schema_to_grid_data(self, schema: Any) -> Grid:
        """Rows from an already-parsed schema.

        Accepts a JSON-Schema-like mapping (``properties``/``required``) or a
        mapping with an ``elements`` list of element declarations.
        """
        rows: Grid = []
        try:
            if isinstance(schema, dict) and isinstance(schema.get("properties"), dict):
                codec = JsonCodec()
                required = set(schema.get("required") or [])
                for name, prop in schema["properties"].items():
                    rows.append([codec.cell_from_property(
                        name, prop if isinstance(prop, dict) else {}, name in required
                    )])
            elif isinstance(schema, dict) and isinstance(schema.get("elements"), list):
                for element in schema["elements"]:
                    rows.append([self._cell_from_element(element)])
        except (TypeError, ValueError, AttributeError) as e:
            self.logger.error("Schema could not be converted to grid data", error=str(e))
            return blank_rows(settings.grid_min_rows)
        return pad_grid(rows, settings.grid_min_rows)

    @staticmethod
    def _cell_from_element(element: Dict[str, Any]) -> GridCell:
        annotation = element.get("annotation") or {}
        return GridCell(
            field_name=element.get("name", ""),
            data_type=element.get("type") or "text",
            required=str(element.get("minOccurs", "1")) != "0",
            description=annotation.get("documentation", "") if isinstance(annotation, dict) else "",
            default_value=element.get("default"),
            constraints=normalize_constraints({
                key: element[key]
                for key in ("minLength", "maxLength", "minimum", "maximum", "pattern", "enum")
                if key in element
            }),
        )

    def convert_grid_data_to_schema(self, grid: Grid, schema_format: Any) -> Dict[str, Any]:
        """Parsed-schema form of grid rows (the inverse of convert_schema_to_grid_data)."""
        schema_format = SchemaFormat.parse(schema_format)
        if self.conversion_service is None:
            raise ValidationError("No conversion service configured")
        fields, _ = self.conversion_service.converter.prepare_fields(coerce_grid(grid), schema_format)

        if schema_format in (SchemaFormat.JSON, SchemaFormat.YAML):
            return JsonCodec().build_tree(fields)

        elements = []
        for spec in fields:
            element: Dict[str, Any] = {
                "name": spec.name,
                "type": spec.data_type if schema_format == SchemaFormat.XML else f"xs:{xsd_type_for(spec.data_type)}",
                "minOccurs": "1" if spec.required else "0",
            }
            if spec.description:
                element["annotation"] = {"documentation": spec.description}
            if spec.has_default:
                element["default"] = spec.default_value
            element.update(spec.constraints)
            elements.append(element)
        return {"elements": elements}

    def validate_all_grids(self) -> Dict[str, ValidationResult]:
        return {grid_id: instance.validate_all() for grid_id, instance in self.grids.items()}

    def get_grid_stats(self) -> Dict[str, int]:
        stats = {
            "total_grids": len(self.grids),
            "active_grids": sum(1 for g in self.grids.values() if not g.destroyed),
            "total_cells": 0,
            "validation_errors": 0,
            "validation_warnings": 0,
        }
        for instance in self.grids.values():
            stats["total_cells"] += instance.cell_count()
            for result in instance.get_validation_results():
                stats["validation_errors"] += len(result.errors)
                stats["validation_warnings"] += len(result.warnings)
        return stats

    def export_grid_data(self, grid_id: str, export_format: str) -> str:
        """Render a grid's in-memory rows as csv, json or xml."""
        instance = self.require_grid(grid_id)
        export_format = (export_format or "").lower()
        if export_format == "csv":
            return self._to_csv(instance)
        if export_format == "json":
            return json.dumps(
                [cell.to_wire() for _, _, cell in iter_cells(instance.data)],
                indent=2, ensure_ascii=False,
            )
        if export_format == "xml":
            return self._to_xml(instance)
        raise ValidationError(
            f"Unsupported export format: {export_format} (supported: {', '.join(EXPORT_FORMATS)})"
        )

    @staticmethod
    def _export_value(value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    def _to_csv(self, instance: GridInstance) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow([column.title for column in instance.columns])
        for _, _, cell in iter_cells(instance.data):
            writer.writerow([
                self._export_value(getattr(cell, column.id, None)) for column in instance.columns
            ])
        return buffer.getvalue()

    def _to_xml(self, instance: GridInstance) -> str:
        root = ET.Element("schema")
        for index, (_, _, cell) in enumerate(iter_cells(instance.data)):
            if cell.is_blank():
                continue
            field = ET.SubElement(root, "field", {"id": str(index)})
            for column in instance.columns:
                ET.SubElement(field, column.id).text = self._export_value(getattr(cell, column.id, None))
        ET.indent(root, space="  ")
        return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="unicode")
