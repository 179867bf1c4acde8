"""Per-format schema codecs.

Every format in ``SchemaFormat`` has exactly one codec registered in
``CODECS``. A codec turns prepared field specs into text (``encode``), text
back into grid cells (``decode``) and checks text for syntax and structure
(``validate``). Grid-level concerns (blank rows, duplicate names, padding) are
handled by the converter, not here.
"""

import json
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import yaml

from schemagrid.conversion.constraints import (
    coerce_default,
    format_value,
    grid_type_from_json,
    grid_type_from_xsd,
    json_type_for,
    normalize_constraints,
    xsd_type_for,
)
from schemagrid.conversion.formats import SchemaFormat
from schemagrid.conversion.security import ensure_safe_markup
from schemagrid.exceptions import FormatError
from schemagrid.grid.models import GridCell, ValidationResult

XS_NS = "http://www.w3.org/2001/XMLSchema"
WSDL_NS = "http://schemas.xmlsoap.org/wsdl/"
GRID_NS = "urn:schemagrid:grid"
TARGET_NS = "urn:schemagrid:schema"
JSON_SCHEMA_DRAFT = "http://json-schema.org/draft-07/schema#"

# Keyword holding a grid type that JSON Schema cannot express on its own
JSON_TYPE_MARKER = "x-gridDataType"

ET.register_namespace("xs", XS_NS)
ET.register_namespace("wsdl", WSDL_NS)
ET.register_namespace("grid", GRID_NS)


def xs(tag: str) -> str:
    return f"{{{XS_NS}}}{tag}"


def wsdl(tag: str) -> str:
    return f"{{{WSDL_NS}}}{tag}"


GRID_TYPE_ATTR = f"{{{GRID_NS}}}dataType"

# Constraint key -> XSD facet
XSD_FACETS = {
    "minLength": "minLength",
    "maxLength": "maxLength",
    "pattern": "pattern",
    "minimum": "minInclusive",
    "maximum": "maxInclusive",
}
XSD_FACETS_REVERSE = {facet: key for key, facet in XSD_FACETS.items()}

# Warning callback: (message, code, field_name)
WarnFn = Callable[[str, str, Optional[str]], None]


@dataclass
class FieldSpec:
    """A populated grid row prepared for encoding."""

    name: str
    data_type: str
    required: bool = False
    description: str = ""
    default_value: Any = None
    constraints: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_default(self) -> bool:
        return self.default_value is not None and self.default_value != ""


def _noop_warn(message: str, code: str, field_name: Optional[str] = None) -> None:
    return None


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _is_true(value: Any) -> bool:
    return str(value or "").strip().lower() in ("true", "1", "yes")


class FormatCodec(ABC):
    """Encode/decode/validate one schema format."""

    format: SchemaFormat

    @abstractmethod
    def encode(self, fields: List[FieldSpec], warn: WarnFn = _noop_warn) -> str:
        """Render field specs as schema text."""
        pass

    @abstractmethod
    def decode(self, text: str) -> List[GridCell]:
        """Read schema text into cells, in declaration order.

        Raises FormatError when the text is malformed or not a recognisable
        schema of this format.
        """
        pass

    @abstractmethod
    def validate(self, text: str) -> ValidationResult:
        """Syntax and structure check. Never mutates its input."""
        pass


# Object notation


class JsonCodec(FormatCodec):
    """JSON-Schema-shaped object: ``properties`` plus ``required``."""

    format = SchemaFormat.JSON

    def build_tree(self, fields: List[FieldSpec], warn: WarnFn = _noop_warn) -> Dict[str, Any]:
        properties: Dict[str, Any] = {}
        required: List[str] = []

        for spec in fields:
            properties[spec.name] = self._property(spec, warn)
            if spec.required:
                required.append(spec.name)

        tree: Dict[str, Any] = {
            "$schema": JSON_SCHEMA_DRAFT,
            "type": "object",
            "properties": properties,
        }
        if required:
            tree["required"] = required
        return tree

    def _property(self, spec: FieldSpec, warn: WarnFn) -> Dict[str, Any]:
        json_type, json_format = json_type_for(spec.data_type)
        prop: Dict[str, Any] = {"type": json_type}
        if json_format:
            prop["format"] = json_format
        if spec.description:
            prop["description"] = spec.description
        if spec.has_default:
            prop["default"] = coerce_default(spec.default_value, spec.data_type)

        for key, value in spec.constraints.items():
            if key == "format" and json_format and value != json_format:
                warn(
                    f"Constraint format '{value}' conflicts with type '{spec.data_type}' and was dropped",
                    "CONSTRAINT_CONFLICT",
                    spec.name,
                )
                continue
            prop[key] = value

        imported = grid_type_from_json(json_type, prop.get("format"), "enum" in prop)
        if imported != spec.data_type:
            prop[JSON_TYPE_MARKER] = spec.data_type
        return prop

    def dumps(self, tree: Dict[str, Any]) -> str:
        return json.dumps(tree, indent=2, ensure_ascii=False)

    def loads(self, text: str) -> Any:
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise FormatError(f"Invalid JSON at line {e.lineno}, column {e.colno}: {e.msg}")

    def encode(self, fields: List[FieldSpec], warn: WarnFn = _noop_warn) -> str:
        return self.dumps(self.build_tree(fields, warn))

    def decode(self, text: str) -> List[GridCell]:
        tree = self.loads(text)
        problems = self.structure_problems(tree)
        if problems:
            raise FormatError(problems[0])

        required = set(tree.get("required") or [])
        return [
            self.cell_from_property(name, prop if isinstance(prop, dict) else {}, name in required)
            for name, prop in tree["properties"].items()
        ]

    def cell_from_property(self, name: str, prop: Dict[str, Any], required: bool) -> GridCell:
        json_format = prop.get("format")
        enum = prop.get("enum")
        data_type = prop.get(JSON_TYPE_MARKER) or grid_type_from_json(
            prop.get("type"), json_format, isinstance(enum, list)
        )
        _, implied_format = json_type_for(data_type)

        raw_constraints = {
            key: prop[key]
            for key in ("minLength", "maxLength", "minimum", "maximum", "pattern")
            if key in prop
        }
        if json_format and json_format != implied_format:
            raw_constraints["format"] = json_format
        if isinstance(enum, list):
            raw_constraints["enum"] = enum

        return GridCell(
            field_name=name,
            data_type=data_type,
            required=required,
            description=prop.get("description") or "",
            default_value=prop.get("default"),
            constraints=normalize_constraints(raw_constraints),
        )

    def structure_problems(self, tree: Any) -> List[str]:
        if not isinstance(tree, dict) or not tree:
            return ["Top level must be a non-empty mapping"]
        if "properties" not in tree:
            return ["Schema has no 'properties' mapping"]
        problems = []
        if not isinstance(tree["properties"], dict):
            problems.append("'properties' must be a mapping")
        required = tree.get("required")
        if required is not None and (
            not isinstance(required, list) or not all(isinstance(r, str) for r in required)
        ):
            problems.append("'required' must be a list of strings")
        return problems

    def validate(self, text: str) -> ValidationResult:
        result = ValidationResult()
        try:
            tree = self.loads(text)
        except FormatError as e:
            result.add_error("schema", e.message, "PARSE_ERROR")
            return result
        for problem in self.structure_problems(tree):
            result.add_error("schema", problem, "INVALID_STRUCTURE")
        return result


class SchemaYamlLoader(yaml.SafeLoader):
    """Safe loader that keeps date-like scalars as strings."""


# Timestamps stay text so defaults remain JSON-serialisable
SchemaYamlLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


class YamlCodec(JsonCodec):
    """Same tree as JSON, dumped as block YAML."""

    format = SchemaFormat.YAML

    def dumps(self, tree: Dict[str, Any]) -> str:
        return yaml.safe_dump(tree, sort_keys=False, default_flow_style=False, allow_unicode=True)

    def loads(self, text: str) -> Any:
        try:
            return yaml.load(text, Loader=SchemaYamlLoader)
        except yaml.YAMLError as e:
            mark = getattr(e, "problem_mark", None)
            where = f" at line {mark.line + 1}, column {mark.column + 1}" if mark else ""
            raise FormatError(f"Invalid YAML{where}: {e}")


# Markup


class MarkupCodec(FormatCodec):
    """Shared parsing and rendering for the XML-based formats."""

    def parse(self, text: str) -> ET.Element:
        ensure_safe_markup(text, source=self.format.value)
        try:
            return ET.fromstring(text)
        except ET.ParseError as e:
            line, column = e.position
            raise FormatError(f"Invalid XML at line {line}, column {column}: {e}")

    def render(self, root: ET.Element) -> str:
        ET.indent(root, space="  ")
        body = ET.tostring(root, encoding="unicode")
        return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}\n'

    @abstractmethod
    def structure_problems(self, root: ET.Element) -> List[str]:
        pass

    def validate(self, text: str) -> ValidationResult:
        result = ValidationResult()
        try:
            root = self.parse(text)
        except FormatError as e:
            result.add_error("schema", e.message, "PARSE_ERROR")
            return result
        for problem in self.structure_problems(root):
            result.add_error("schema", problem, "INVALID_STRUCTURE")
        return result


class XmlCodec(MarkupCodec):
    """Generic markup: ``<schema><fields><field name type required>``."""

    format = SchemaFormat.XML

    def encode(self, fields: List[FieldSpec], warn: WarnFn = _noop_warn) -> str:
        root = ET.Element("schema")
        container = ET.SubElement(root, "fields")
        for spec in fields:
            element = ET.SubElement(container, "field", {
                "name": spec.name,
                "type": spec.data_type,
                "required": "true" if spec.required else "false",
            })
            if spec.description:
                ET.SubElement(element, "description").text = spec.description
            if spec.has_default:
                ET.SubElement(element, "defaultValue").text = _scalar_text(spec.default_value)
            if spec.constraints:
                ET.SubElement(element, "constraints", {
                    key: format_value(value)
                    for key, value in spec.constraints.items()
                })
        return self.render(root)

    def decode(self, text: str) -> List[GridCell]:
        root = self.parse(text)
        container = root.find("fields")
        if container is None:
            container = root
        elements = container.findall("field")
        if not elements and root.tag != "schema":
            raise FormatError(f"Unrecognised markup root <{root.tag}>")
        return [self._cell(element) for element in elements]

    def _cell(self, element: ET.Element) -> GridCell:
        data_type = element.get("type", "")
        constraints_el = element.find("constraints")
        constraints = ""
        if constraints_el is not None:
            if constraints_el.attrib:
                constraints = normalize_constraints(dict(constraints_el.attrib))
            else:
                constraints = (constraints_el.text or "").strip()

        default_el = element.find("defaultValue")
        default = default_el.text if default_el is not None else None

        return GridCell(
            field_name=element.get("name", ""),
            data_type=data_type,
            required=_is_true(element.get("required")),
            description=(element.findtext("description") or "").strip(),
            default_value=coerce_default(default, data_type),
            constraints=constraints,
        )

    def structure_problems(self, root: ET.Element) -> List[str]:
        if len(root) == 0 and not (root.text or "").strip():
            return ["Root element has no content"]
        return []


class XsdCodec(MarkupCodec):
    """W3C XML Schema with one root element holding a sequence of fields."""

    format = SchemaFormat.XSD

    def build_schema(self, parent: Optional[ET.Element], fields: List[FieldSpec],
                     warn: WarnFn = _noop_warn) -> ET.Element:
        attrs = {"targetNamespace": TARGET_NS, "elementFormDefault": "qualified"}
        if parent is None:
            schema = ET.Element(xs("schema"), attrs)
        else:
            schema = ET.SubElement(parent, xs("schema"), attrs)

        root_element = ET.SubElement(schema, xs("element"), {"name": "root"})
        sequence = ET.SubElement(ET.SubElement(root_element, xs("complexType")), xs("sequence"))
        for spec in fields:
            self._element(sequence, spec, warn)
        return schema

    def _element(self, sequence: ET.Element, spec: FieldSpec, warn: WarnFn) -> None:
        native = xsd_type_for(spec.data_type)
        element = ET.SubElement(sequence, xs("element"), {"name": spec.name})
        if not spec.required:
            element.set("minOccurs", "0")
        if spec.has_default:
            element.set("default", _scalar_text(spec.default_value))

        enum = spec.constraints.get("enum")
        if self._imported_type(native, bool(enum)) != spec.data_type:
            element.set(GRID_TYPE_ATTR, spec.data_type)

        if spec.description:
            annotation = ET.SubElement(element, xs("annotation"))
            ET.SubElement(annotation, xs("documentation")).text = spec.description

        facets = []
        for key, value in spec.constraints.items():
            if key in XSD_FACETS:
                facets.append((XSD_FACETS[key], _scalar_text(value)))
            elif key == "enum":
                facets.extend(("enumeration", str(item)) for item in value)
            else:
                warn(
                    f"Constraint '{key}' has no {self.format.value.upper()} facet and was dropped",
                    "UNSUPPORTED_CONSTRAINT",
                    spec.name,
                )

        if facets:
            simple = ET.SubElement(element, xs("simpleType"))
            restriction = ET.SubElement(simple, xs("restriction"), {"base": f"xs:{native}"})
            for facet, value in facets:
                ET.SubElement(restriction, xs(facet), {"value": value})
        else:
            element.set("type", f"xs:{native}")

    @staticmethod
    def _imported_type(native: str, has_enum: bool) -> str:
        data_type = grid_type_from_xsd(native)
        if data_type == "text" and has_enum:
            return "dropdown"
        return data_type

    def encode(self, fields: List[FieldSpec], warn: WarnFn = _noop_warn) -> str:
        return self.render(self.build_schema(None, fields, warn))

    def field_elements(self, schema: ET.Element) -> List[ET.Element]:
        """Field declarations: the content of the first complex root element."""
        for top in schema.findall(xs("element")):
            group = self._content_group(top.find(xs("complexType")))
            if group is not None:
                return group.findall(xs("element"))
        for complex_type in schema.findall(xs("complexType")):
            group = self._content_group(complex_type)
            if group is not None:
                return group.findall(xs("element"))
        return schema.findall(xs("element"))

    @staticmethod
    def _content_group(complex_type: Optional[ET.Element]) -> Optional[ET.Element]:
        if complex_type is None:
            return None
        for tag in ("sequence", "all", "choice"):
            group = complex_type.find(xs(tag))
            if group is not None:
                return group
        return None

    def cell_from_element(self, element: ET.Element) -> GridCell:
        restriction = element.find(f"{xs('simpleType')}/{xs('restriction')}")
        native = element.get("type")
        if native is None and restriction is not None:
            native = restriction.get("base")
        if native is None and element.find(xs("complexType")) is not None:
            native = "anyType"

        raw_constraints: Dict[str, Any] = {}
        enum: List[str] = []
        if restriction is not None:
            for facet in restriction:
                name = facet.tag.rsplit("}", 1)[-1]
                if name == "enumeration":
                    enum.append(facet.get("value", ""))
                elif name in XSD_FACETS_REVERSE:
                    raw_constraints[XSD_FACETS_REVERSE[name]] = facet.get("value")
        if enum:
            raw_constraints["enum"] = enum

        data_type = element.get(GRID_TYPE_ATTR) or self._imported_type(native or "string", bool(enum))
        documentation = element.findtext(f"{xs('annotation')}/{xs('documentation')}") or ""
        default = element.get("default", element.get("fixed"))

        return GridCell(
            field_name=element.get("name") or element.get("ref", ""),
            data_type=data_type,
            required=element.get("minOccurs", "1") != "0",
            description=documentation.strip(),
            default_value=coerce_default(default, data_type),
            constraints=normalize_constraints(raw_constraints),
        )

    def decode(self, text: str) -> List[GridCell]:
        root = self.parse(text)
        problems = self.structure_problems(root)
        if problems:
            raise FormatError(problems[0])
        return [self.cell_from_element(e) for e in self.field_elements(root)]

    def structure_problems(self, root: ET.Element) -> List[str]:
        if root.tag != xs("schema"):
            return [f"Root element must be xs:schema, got {root.tag}"]
        return []


class WsdlCodec(XsdCodec):
    """WSDL 1.1 definitions with the field schema embedded under ``types``."""

    format = SchemaFormat.WSDL

    def encode(self, fields: List[FieldSpec], warn: WarnFn = _noop_warn) -> str:
        definitions = ET.Element(wsdl("definitions"), {
            "name": "SchemaGridService",
            "targetNamespace": TARGET_NS,
            "xmlns:tns": TARGET_NS,
        })
        types = ET.SubElement(definitions, wsdl("types"))
        self.build_schema(types, fields, warn)
        message = ET.SubElement(definitions, wsdl("message"), {"name": "rootMessage"})
        ET.SubElement(message, wsdl("part"), {"name": "parameters", "element": "tns:root"})
        return self.render(definitions)

    def decode(self, text: str) -> List[GridCell]:
        root = self.parse(text)
        problems = self.structure_problems(root)
        if problems:
            raise FormatError(problems[0])
        for schema in root.findall(f"{wsdl('types')}/{xs('schema')}"):
            elements = self.field_elements(schema)
            if elements:
                return [self.cell_from_element(e) for e in elements]
        return []

    def structure_problems(self, root: ET.Element) -> List[str]:
        if root.tag != wsdl("definitions"):
            return [f"Root element must be wsdl:definitions, got {root.tag}"]
        return []


CODECS: Dict[SchemaFormat, FormatCodec] = {
    SchemaFormat.XML: XmlCodec(),
    SchemaFormat.JSON: JsonCodec(),
    SchemaFormat.YAML: YamlCodec(),
    SchemaFormat.XSD: XsdCodec(),
    SchemaFormat.WSDL: WsdlCodec(),
}


def get_codec(schema_format: Any) -> FormatCodec:
    """Look up the codec for a format key."""
    return CODECS[SchemaFormat.parse(schema_format)]
