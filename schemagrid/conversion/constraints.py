"""Constraint strings: ``key: value[, key: value]*``.

The grid stores constraints as free text such as ``minLength: 2, maxLength: 50``
or ``enum: [red, green]``. Codecs turn the parsed mapping into their native
keywords/facets and back.
"""

import json
import re
from typing import Any, Dict, List, Tuple

SUPPORTED_CONSTRAINTS = (
    "minLength", "maxLength", "minimum", "maximum", "pattern", "format", "enum",
)
LENGTH_CONSTRAINTS = {"minLength", "maxLength"}
NUMERIC_CONSTRAINTS = {"minLength", "maxLength", "minimum", "maximum"}

# Split on commas that start a new "key:" pair, leaving commas inside values alone
SEGMENT_SPLIT_RE = re.compile(r",\s*(?=[A-Za-z_][\w\-]*\s*:)")
KEY_RE = re.compile(r"^[A-Za-z_][\w\-]*$")
INT_RE = re.compile(r"^[+-]?\d+$")


class ConstraintParseError(ValueError):
    """Raised when a constraint string cannot be parsed."""
    pass


def parse_number(raw: Any) -> Any:
    """Parse an int or float, raising ConstraintParseError otherwise."""
    if isinstance(raw, bool):
        raise ConstraintParseError(f"Not a number: {raw}")
    if isinstance(raw, (int, float)):
        return raw
    text = str(raw).strip()
    if INT_RE.match(text):
        return int(text)
    try:
        return float(text)
    except ValueError:
        raise ConstraintParseError(f"Not a number: {raw}")


def parse_enum(raw: Any) -> List[str]:
    if isinstance(raw, (list, tuple)):
        return [str(item) for item in raw]
    text = str(raw).strip()
    if not (text.startswith("[") and text.endswith("]")):
        raise ConstraintParseError(f"enum must be written as [a, b, ...]: {raw}")
    items = [item.strip().strip("'\"") for item in text[1:-1].split(",")]
    items = [item for item in items if item]
    if not items:
        raise ConstraintParseError("enum must list at least one value")
    return items


def _coerce_value(key: str, raw: Any) -> Any:
    if key in NUMERIC_CONSTRAINTS:
        number = parse_number(raw)
        if key in LENGTH_CONSTRAINTS and (not isinstance(number, int) or number < 0):
            raise ConstraintParseError(f"{key} must be a non-negative integer: {raw}")
        return number
    if key == "enum":
        return parse_enum(raw)
    if key == "pattern":
        try:
            re.compile(str(raw))
        except re.error as e:
            raise ConstraintParseError(f"Invalid pattern {raw!r}: {e}")
        return str(raw)
    return str(raw).strip()


def _split_pairs(text: str) -> List[Tuple[str, Any]]:
    if text.startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConstraintParseError(f"Invalid JSON constraints: {e}")
        if not isinstance(data, dict):
            raise ConstraintParseError("JSON constraints must be an object")
        return list(data.items())

    pairs = []
    for segment in SEGMENT_SPLIT_RE.split(text):
        key, separator, raw = segment.partition(":")
        key, raw = key.strip(), raw.strip()
        if not separator or not KEY_RE.match(key):
            raise ConstraintParseError(f"Expected 'key: value', got {segment.strip()!r}")
        if not raw:
            raise ConstraintParseError(f"Missing value for {key}")
        pairs.append((key, raw))
    return pairs


def parse_constraints(text: Any) -> Tuple[Dict[str, Any], List[str]]:
    """Parse a constraint string.

    Returns ``(constraints, unsupported_keys)``. Unsupported keys are dropped
    from the mapping; any malformed pair raises ConstraintParseError.
    """
    if text is None:
        return {}, []
    text = str(text).strip()
    if not text:
        return {}, []

    constraints: Dict[str, Any] = {}
    unsupported: List[str] = []
    for key, raw in _split_pairs(text):
        if key not in SUPPORTED_CONSTRAINTS:
            unsupported.append(key)
            continue
        constraints[key] = _coerce_value(key, raw)

    for low, high in (("minLength", "maxLength"), ("minimum", "maximum")):
        if low in constraints and high in constraints and constraints[low] > constraints[high]:
            raise ConstraintParseError(f"{low} is greater than {high}")

    return constraints, unsupported


def format_value(value: Any) -> str:
    """Render one constraint value as it appears after ``key: ``."""
    if isinstance(value, list):
        return "[" + ", ".join(str(item) for item in value) + "]"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_constraints(constraints: Dict[str, Any]) -> str:
    """Serialise a constraint mapping back to ``key: value`` text."""
    parts = []
    for key in SUPPORTED_CONSTRAINTS:
        if key in constraints and constraints[key] is not None:
            parts.append(f"{key}: {format_value(constraints[key])}")
    return ", ".join(parts)


def normalize_constraints(pairs: Dict[str, Any]) -> str:
    """Best-effort canonical text for constraints read from a source document.

    Values that do not parse are left out.
    """
    clean: Dict[str, Any] = {}
    for key, raw in pairs.items():
        if key not in SUPPORTED_CONSTRAINTS or raw is None:
            continue
        try:
            clean[key] = _coerce_value(key, raw)
        except ConstraintParseError:
            continue
    return format_constraints(clean)


# Data type mapping
#
# Grid data types are reduced to a canonical token before mapping. Codecs
# compare the token an import would yield with the cell's own data type and
# write an extension marker when they differ, so types survive a round trip.

CANONICAL_TYPES = (
    "text", "number", "integer", "boolean", "date", "datetime", "time",
    "email", "url", "dropdown", "array", "object",
)

TYPE_ALIASES = {
    "string": "text",
    "str": "text",
    "int": "integer",
    "long": "integer",
    "float": "number",
    "double": "number",
    "decimal": "number",
    "bool": "boolean",
    "date-time": "datetime",
    "datetime-local": "datetime",
    "uri": "url",
    "enum": "dropdown",
    "list": "array",
}

JSON_TYPE_MAP = {
    "text": ("string", None),
    "number": ("number", None),
    "integer": ("integer", None),
    "boolean": ("boolean", None),
    "date": ("string", "date"),
    "datetime": ("string", "date-time"),
    "time": ("string", "time"),
    "email": ("string", "email"),
    "url": ("string", "uri"),
    "dropdown": ("string", None),
    "array": ("array", None),
    "object": ("object", None),
}

# JSON "format" values that carry a grid type on their own
JSON_FORMAT_TYPES = {
    "date": "date",
    "date-time": "datetime",
    "time": "time",
    "email": "email",
    "uri": "url",
    "url": "url",
}

XSD_TYPE_MAP = {
    "text": "string",
    "number": "decimal",
    "integer": "int",
    "boolean": "boolean",
    "date": "date",
    "datetime": "dateTime",
    "time": "time",
    "email": "string",
    "url": "anyURI",
    "dropdown": "string",
    "array": "string",
    "object": "anyType",
}

XSD_REVERSE_MAP = {
    "string": "text",
    "normalizedString": "text",
    "token": "text",
    "decimal": "number",
    "float": "number",
    "double": "number",
    "int": "integer",
    "integer": "integer",
    "long": "integer",
    "short": "integer",
    "byte": "integer",
    "nonNegativeInteger": "integer",
    "positiveInteger": "integer",
    "unsignedInt": "integer",
    "boolean": "boolean",
    "date": "date",
    "dateTime": "datetime",
    "time": "time",
    "anyURI": "url",
    "anyType": "object",
}


def local_name(token: str) -> str:
    """Strip a ``prefix:`` or ``{namespace}`` qualifier."""
    if "}" in token:
        token = token.rsplit("}", 1)[1]
    return token.rsplit(":", 1)[-1]


def canonical_type(data_type: Any) -> str:
    """Reduce a grid data type (or native token) to a canonical token.

    Unknown tokens come back unchanged, lower-cased.
    """
    token = str(data_type or "").strip()
    if not token:
        return "text"
    lowered = token.lower()
    if lowered in CANONICAL_TYPES:
        return lowered
    if lowered in TYPE_ALIASES:
        return TYPE_ALIASES[lowered]
    if ":" in token or "}" in token:
        native = local_name(token)
        if native in XSD_REVERSE_MAP:
            return XSD_REVERSE_MAP[native]
        lowered = native.lower()
        return TYPE_ALIASES.get(lowered, lowered)
    return lowered


def json_type_for(data_type: Any) -> Tuple[str, Any]:
    """``(type, format)`` for a JSON Schema property; unknown types map to string."""
    return JSON_TYPE_MAP.get(canonical_type(data_type), ("string", None))


def grid_type_from_json(json_type: Any, json_format: Any = None, has_enum: bool = False) -> str:
    """Canonical grid type for a JSON Schema ``type``/``format``/``enum`` triple."""
    if isinstance(json_type, list):
        json_type = next((t for t in json_type if t != "null"), "string")
    json_type = str(json_type or "string").lower()
    if json_type == "string":
        if json_format and str(json_format) in JSON_FORMAT_TYPES:
            return JSON_FORMAT_TYPES[str(json_format)]
        if has_enum:
            return "dropdown"
        return "text"
    return canonical_type(json_type)


def xsd_type_for(data_type: Any) -> str:
    """Local XSD type name; unknown types map to ``string``."""
    return XSD_TYPE_MAP.get(canonical_type(data_type), "string")


def grid_type_from_xsd(xsd_type: Any) -> str:
    if not xsd_type:
        return "text"
    native = local_name(str(xsd_type))
    return XSD_REVERSE_MAP.get(native, canonical_type(native))


def coerce_default(value: Any, data_type: Any) -> Any:
    """Type a default value read from text according to its grid type."""
    if value is None or not isinstance(value, str):
        return value
    kind = canonical_type(data_type)
    text = value.strip()
    if kind in ("number", "integer"):
        try:
            return parse_number(text)
        except ConstraintParseError:
            return value
    if kind == "boolean" and text.lower() in ("true", "false"):
        return text.lower() == "true"
    return value
