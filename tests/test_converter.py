"""Test grid <-> schema conversion."""

import json
import xml.etree.ElementTree as ET
from unittest.mock import patch

import pytest
import yaml

from schemagrid.conversion.codecs import GRID_TYPE_ATTR, XS_NS
from schemagrid.conversion.converter import SchemaConverter
from schemagrid.conversion.formats import SchemaFormat
from schemagrid.exceptions import FormatError, SecurityError
from schemagrid.grid.models import GridCell

XXE_DOCUMENTS = [
    '<?xml version="1.0"?><!DOCTYPE r [<!ENTITY e "boom">]><r>&e;</r>',
    '<!DOCTYPE r SYSTEM "http://example.com/evil.dtd"><r/>',
    '<!DOCTYPE r PUBLIC "-//X//EN" "http://example.com/x.dtd"><r/>',
]


def cells(grid):
    return [cell for row in grid for cell in row if not cell.is_blank()]


def signature(cell):
    return (
        cell.field_name,
        cell.data_type,
        cell.required,
        cell.description,
        cell.default_value,
        cell.constraints,
    )


def codes(issues):
    return [issue.code for issue in issues]


@pytest.mark.unit
class TestRoundTrip:
    """Grid -> text -> grid keeps every populated row."""

    @pytest.mark.parametrize("schema_format", list(SchemaFormat))
    def test_round_trip(self, converter, sample_grid, schema_format):
        result = converter.from_grid(sample_grid, schema_format)
        assert result.is_successful, result.errors

        grid = converter.to_grid(result.get(schema_format), schema_format)
        assert len(grid) == 10
        assert [signature(c) for c in cells(grid)] == [signature(c) for c in cells(sample_grid)]

    @pytest.mark.parametrize("schema_format", [SchemaFormat.XSD, SchemaFormat.WSDL, SchemaFormat.JSON])
    def test_types_without_native_form_survive(self, converter, schema_format):
        grid = [
            [GridCell(field_name="contact", data_type="email")],
            [GridCell(field_name="born", data_type="date")],
            [GridCell(field_name="tags", data_type="array")],
        ]
        result = converter.from_grid(grid, schema_format)
        back = converter.to_grid(result.get(schema_format), schema_format)
        assert [c.data_type for c in cells(back)] == ["email", "date", "array"]

    @pytest.mark.parametrize("schema_format", [
        SchemaFormat.JSON, SchemaFormat.YAML, SchemaFormat.XSD, SchemaFormat.WSDL,
    ])
    @pytest.mark.parametrize("token", ["xsd:int", "string", "float"])
    def test_alias_type_tokens_survive(self, converter, schema_format, token):
        grid = [[GridCell(field_name="n", data_type=token)]]
        text = converter.from_grid(grid, schema_format).get(schema_format)
        assert cells(converter.to_grid(text, schema_format))[0].data_type == token

    def test_yaml_date_default_stays_text(self, converter):
        text = "type: object\nproperties:\n  born:\n    type: string\n    format: date\n    default: 2024-01-01\n"
        grid = converter.to_grid(text, SchemaFormat.YAML)
        assert cells(grid)[0].default_value == "2024-01-01"

    def test_field_order_preserved(self, converter):
        names = ["zeta", "alpha", "mid", "beta"]
        grid = [[GridCell(field_name=n, data_type="text")] for n in names]
        for schema_format in SchemaFormat:
            text = converter.from_grid(grid, schema_format).get(schema_format)
            assert [c.field_name for c in cells(converter.to_grid(text, schema_format))] == names


@pytest.mark.unit
class TestFromGrid:
    """Test schema generation."""

    def test_required_number_field_in_json(self, converter):
        grid = [[GridCell(field_name="id", data_type="number", required=True)]]
        result = converter.from_grid(grid, "json")
        tree = json.loads(result.get("json"))

        assert "id" in tree["required"]
        assert tree["properties"]["id"]["type"] in ("number", "integer")
        assert tree["type"] == "object"

    def test_yaml_is_same_tree_as_json(self, converter, sample_grid):
        as_json = json.loads(converter.from_grid(sample_grid, "json").get("json"))
        as_yaml = yaml.safe_load(converter.from_grid(sample_grid, "yaml").get("yaml"))
        assert as_yaml == as_json

    def test_xsd_layout(self, converter, sample_grid):
        text = converter.from_grid(sample_grid, "xsd").get("xsd")
        root = ET.fromstring(text)
        xs = f"{{{XS_NS}}}"

        assert root.tag == f"{xs}schema"
        fields = root.findall(f"{xs}element/{xs}complexType/{xs}sequence/{xs}element")
        assert [f.get("name") for f in fields] == ["id", "name", "status"]
        assert fields[0].get("type") == "xs:decimal"
        assert fields[0].get("minOccurs") is None
        assert fields[2].get("minOccurs") == "0"
        assert fields[2].get("default") == "active"
        facets = fields[1].findall(f"{xs}simpleType/{xs}restriction/*")
        assert [(f.tag.split('}')[1], f.get("value")) for f in facets] == [
            ("minLength", "2"), ("maxLength", "50"),
        ]

    def test_xsd_marks_email(self, converter):
        grid = [[GridCell(field_name="contact", data_type="email")]]
        root = ET.fromstring(converter.from_grid(grid, "xsd").get("xsd"))
        element = root.find(f".//{{{XS_NS}}}sequence/{{{XS_NS}}}element")
        assert element.get(GRID_TYPE_ATTR) == "email"

    def test_wsdl_embeds_schema(self, converter, sample_grid):
        text = converter.from_grid(sample_grid, "wsdl").get("wsdl")
        assert "wsdl:definitions" in text
        assert "wsdl:types" in text
        assert 'element="tns:root"' in text

    def test_xml_layout(self, converter, sample_grid):
        root = ET.fromstring(converter.from_grid(sample_grid, "xml").get("xml"))
        fields = root.findall("fields/field")
        assert [f.get("name") for f in fields] == ["id", "name", "status"]
        assert fields[0].get("required") == "true"
        assert fields[1].find("constraints").attrib == {"minLength": "2", "maxLength": "50"}
        assert fields[2].findtext("defaultValue") == "active"

    def test_blank_rows_skipped(self, converter):
        grid = [[GridCell()], [GridCell(field_name="a", data_type="text")], [GridCell()]]
        result = converter.from_grid(grid, "json")
        assert list(json.loads(result.get("json"))["properties"]) == ["a"]
        assert result.errors == []

    def test_row_without_name_is_blocking(self, converter):
        grid = [
            [GridCell(field_name="a", data_type="text")],
            [GridCell(description="orphan")],
        ]
        result = converter.from_grid(grid, "xml")
        assert codes(result.errors) == ["REQUIRED_FIELD"]
        assert result.errors[0].line == 2
        assert result.errors[0].column == 1
        assert result.get("xml") is None

    def test_missing_type_warns(self, converter):
        result = converter.from_grid([[GridCell(field_name="a")]], "json")
        assert "MISSING_DATA_TYPE" in codes(result.warnings)
        assert json.loads(result.get("json"))["properties"]["a"]["type"] == "string"

    def test_duplicate_names_block_keyed_formats(self, converter):
        grid = [
            [GridCell(field_name="a", data_type="text")],
            [GridCell(field_name="a", data_type="number")],
        ]
        for schema_format in ("json", "yaml"):
            result = converter.from_grid(grid, schema_format)
            assert codes(result.errors) == ["DUPLICATE_FIELD_NAME"]
            assert result.get(schema_format) is None

    def test_duplicate_names_warn_for_markup(self, converter):
        grid = [
            [GridCell(field_name="a", data_type="text")],
            [GridCell(field_name="a", data_type="number")],
        ]
        result = converter.from_grid(grid, "xml")
        assert result.is_successful
        assert "DUPLICATE_FIELD_NAME" in codes(result.warnings)
        assert len(ET.fromstring(result.get("xml")).findall("fields/field")) == 2

    def test_invalid_constraints_warn_and_continue(self, converter):
        grid = [[GridCell(field_name="a", data_type="text", constraints="minLength: abc")]]
        result = converter.from_grid(grid, "json")
        assert result.is_successful
        assert "INVALID_CONSTRAINTS" in codes(result.warnings)
        assert "minLength" not in json.loads(result.get("json"))["properties"]["a"]

    def test_unknown_constraint_key_dropped(self, converter):
        grid = [[GridCell(field_name="a", data_type="number", constraints="minimum: 1, step: 2")]]
        result = converter.from_grid(grid, "json")
        prop = json.loads(result.get("json"))["properties"]["a"]
        assert prop["minimum"] == 1
        assert "step" not in prop
        assert "UNSUPPORTED_CONSTRAINT" in codes(result.warnings)

    def test_format_constraint_has_no_xsd_facet(self, converter):
        grid = [[GridCell(field_name="a", data_type="text", constraints="format: hostname")]]
        result = converter.from_grid(grid, "xsd")
        assert result.is_successful
        warning = [w for w in result.warnings if w.code == "UNSUPPORTED_CONSTRAINT"][0]
        assert warning.field == "a"
        assert warning.target_format == SchemaFormat.XSD

    def test_format_constraint_conflicting_with_type(self, converter):
        grid = [[GridCell(field_name="a", data_type="email", constraints="format: uri")]]
        result = converter.from_grid(grid, "json")
        assert "CONSTRAINT_CONFLICT" in codes(result.warnings)
        assert json.loads(result.get("json"))["properties"]["a"]["format"] == "email"

    def test_cell_validator_findings_become_warnings(self, converter):
        result = converter.from_grid([[GridCell(field_name="1st", data_type="text")]], "json")
        assert result.is_successful
        assert "PATTERN_MISMATCH" in codes(result.warnings)

    def test_unexpected_failure_becomes_conversion_error(self, converter, sample_grid):
        with patch("schemagrid.conversion.converter.get_codec", side_effect=RuntimeError("boom")):
            result = converter.from_grid(sample_grid, "json")
        assert codes(result.errors) == ["CONVERSION_ERROR"]
        assert result.errors[0].target_format == SchemaFormat.JSON

    def test_unknown_format_rejected(self, converter, sample_grid):
        with pytest.raises(ValueError):
            converter.from_grid(sample_grid, "csv")


@pytest.mark.unit
class TestToGrid:
    """Test schema reading."""

    @pytest.mark.parametrize("schema_format", list(SchemaFormat))
    @pytest.mark.parametrize("text", ["", None, "   "])
    def test_empty_input_pads(self, converter, schema_format, text):
        grid = converter.to_grid(text, schema_format)
        assert len(grid) == 10
        assert all(cell.is_blank() for row in grid for cell in row)

    @pytest.mark.parametrize("schema_format, text", [
        ("json", "{not json"),
        ("yaml", "a: [unclosed"),
        ("xml", "<schema><fields>"),
        ("xsd", "<schema/>"),
        ("wsdl", "<definitions/>"),
        ("json", '{"title": "no properties"}'),
    ])
    def test_unreadable_input_pads(self, converter, schema_format, text):
        assert len(converter.to_grid(text, schema_format)) == 10

    def test_strict_raises_format_error(self, converter):
        with pytest.raises(FormatError):
            converter.to_grid("{not json", "json", strict=True)
        with pytest.raises(FormatError):
            converter.to_grid("", "json", strict=True)

    @pytest.mark.parametrize("schema_format", ["xml", "xsd", "wsdl"])
    @pytest.mark.parametrize("text", XXE_DOCUMENTS)
    def test_security_rejection(self, converter, schema_format, text):
        with pytest.raises(SecurityError):
            converter.to_grid(text, schema_format)
        with pytest.raises(SecurityError):
            converter.to_grid(text, schema_format, strict=True)

    def test_large_schema_not_padded(self, converter):
        grid = [[GridCell(field_name=f"f{i}", data_type="text")] for i in range(15)]
        text = converter.from_grid(grid, "json").get("json")
        assert len(converter.to_grid(text, "json")) == 15

    def test_hand_written_json_schema(self, converter):
        text = json.dumps({
            "type": "object",
            "properties": {
                "email": {"type": "string", "format": "email", "maxLength": 120},
                "age": {"type": "integer", "minimum": 0, "default": 18},
                "color": {"type": "string", "enum": ["red", "green"]},
            },
            "required": ["email"],
        })
        email, age, color = cells(converter.to_grid(text, "json"))[:3]

        assert (email.data_type, email.required, email.constraints) == ("email", True, "maxLength: 120")
        assert (age.data_type, age.default_value, age.constraints) == ("integer", 18, "minimum: 0")
        assert (color.data_type, color.constraints) == ("dropdown", "enum: [red, green]")

    def test_hand_written_xsd(self, converter):
        text = """<?xml version="1.0"?>
<xs:schema xmlns:xs="http://www.w3.org/2001/XMLSchema">
  <xs:element name="order">
    <xs:complexType>
      <xs:sequence>
        <xs:element name="orderId" type="xs:int"/>
        <xs:element name="note" type="xs:string" minOccurs="0">
          <xs:annotation><xs:documentation>Free text</xs:documentation></xs:annotation>
        </xs:element>
        <xs:element name="qty" default="1">
          <xs:simpleType>
            <xs:restriction base="xs:int">
              <xs:minInclusive value="1"/>
              <xs:maxInclusive value="99"/>
            </xs:restriction>
          </xs:simpleType>
        </xs:element>
      </xs:sequence>
    </xs:complexType>
  </xs:element>
</xs:schema>"""
        order_id, note, qty = cells(converter.to_grid(text, "xsd"))

        assert (order_id.field_name, order_id.data_type, order_id.required) == ("orderId", "integer", True)
        assert (note.required, note.description) == (False, "Free text")
        assert (qty.default_value, qty.constraints) == (1, "minimum: 1, maximum: 99")


@pytest.mark.unit
class TestValidate:
    """Test syntax and structure checks."""

    def test_empty(self, converter):
        result = converter.validate("", "json")
        assert codes(result.errors) == ["EMPTY_SCHEMA"]

    @pytest.mark.parametrize("schema_format, text, code", [
        ("json", "[1, 2", "PARSE_ERROR"),
        ("json", '{"a": 1}', "INVALID_STRUCTURE"),
        ("json", '{"properties": {}, "required": [1]}', "INVALID_STRUCTURE"),
        ("yaml", "properties: [a, b]", "INVALID_STRUCTURE"),
        ("xml", "<a>", "PARSE_ERROR"),
        ("xml", "<a/>", "INVALID_STRUCTURE"),
        ("xsd", "<schema/>", "INVALID_STRUCTURE"),
        ("wsdl", '<xs:schema xmlns:xs="http://www.w3.org/2001/XMLSchema"/>', "INVALID_STRUCTURE"),
    ])
    def test_invalid(self, converter, schema_format, text, code):
        result = converter.validate(text, schema_format)
        assert not result.is_valid
        assert codes(result.errors) == [code]

    @pytest.mark.parametrize("schema_format", list(SchemaFormat))
    def test_generated_output_is_valid(self, converter, sample_grid, schema_format):
        text = converter.from_grid(sample_grid, schema_format).get(schema_format)
        assert converter.validate(text, schema_format).is_valid

    def test_security_rejection(self, converter):
        with pytest.raises(SecurityError):
            converter.validate(XXE_DOCUMENTS[0], "xsd")

    def test_min_rows_configurable(self):
        assert len(SchemaConverter(min_rows=3).to_grid("", "json")) == 3
