"""Declarative request validation.

Schemas are plain immutable values: a ``Schema`` maps field names to
``FieldSpec`` descriptors tagged by ``FieldType``. ``validate`` walks a payload
against a schema and returns every problem it finds, so a client can fix all
of them in one round trip. The same schemas serve request bodies and query
strings.
"""
import re
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from fastapi import Request

from errors import SchemaValidationError

logger = logging.getLogger("sensor-ingest.validation")

INVALID_PAYLOAD = "Request payload is missing or invalid"

# Heuristics for script injection and SQL metacharacters in free-text fields.
SUSPICIOUS_PATTERNS = (
    re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"('|(--)|;|\*|/\*|\*/)"),
)


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


@dataclass(frozen=True)
class FieldSpec:
    type: FieldType
    required: bool = False
    min: Optional[float] = None
    max: Optional[float] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    integer: bool = False
    enum: Optional[Tuple[Any, ...]] = None
    pattern: Optional[str] = None
    schema: Optional["Schema"] = None
    custom: Optional[Callable[[Any], Optional[str]]] = None


@dataclass(frozen=True)
class Schema:
    fields: Mapping[str, FieldSpec] = field(default_factory=dict)
    strict: bool = False


_TYPE_LABELS = {
    FieldType.STRING: "a string",
    FieldType.NUMBER: "a number",
    FieldType.BOOLEAN: "a boolean",
    FieldType.ARRAY: "an array",
    FieldType.OBJECT: "an object",
}


def contains_suspicious_patterns(value: str) -> bool:
    return any(pattern.search(value) for pattern in SUSPICIOUS_PATTERNS)


def _type_matches(value: Any, expected: FieldType) -> bool:
    if expected is FieldType.STRING:
        return isinstance(value, str)
    if expected is FieldType.NUMBER:
        # bool is an int subclass but never a number on the wire
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected is FieldType.BOOLEAN:
        return isinstance(value, bool)
    if expected is FieldType.ARRAY:
        return isinstance(value, list)
    if expected is FieldType.OBJECT:
        return isinstance(value, dict)
    return False


def _is_integer(value: Any) -> bool:
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def _format_bound(bound: float) -> str:
    return str(int(bound)) if float(bound).is_integer() else str(bound)


def validate_field(value: Any, spec: FieldSpec, name: str) -> List[str]:
    """Validate a single value against its descriptor."""
    errors: List[str] = []

    if spec.required and (value is None or value == ""):
        return [f"{name} is required"]
    if value is None:
        return errors

    if not _type_matches(value, spec.type):
        return [f"{name} must be {_TYPE_LABELS[spec.type]}"]

    if spec.type is FieldType.STRING:
        if contains_suspicious_patterns(value):
            errors.append(f"{name} contains invalid characters")
        if spec.min_length is not None and len(value) < spec.min_length:
            errors.append(f"{name} must be at least {spec.min_length} characters")
        if spec.max_length is not None and len(value) > spec.max_length:
            errors.append(f"{name} must be at most {spec.max_length} characters")
        if spec.pattern is not None and not re.search(spec.pattern, value):
            errors.append(f"{name} format is invalid")
        if spec.enum is not None and value not in spec.enum:
            errors.append(f"{name} must be one of: {', '.join(str(v) for v in spec.enum)}")

    elif spec.type is FieldType.NUMBER:
        if spec.min is not None and value < spec.min:
            errors.append(f"{name} must be at least {_format_bound(spec.min)}")
        if spec.max is not None and value > spec.max:
            errors.append(f"{name} must be at most {_format_bound(spec.max)}")
        if spec.integer and not _is_integer(value):
            errors.append(f"{name} must be an integer")
        if spec.enum is not None and value not in spec.enum:
            errors.append(f"{name} must be one of: {', '.join(str(v) for v in spec.enum)}")

    elif spec.type is FieldType.ARRAY:
        if spec.min_length is not None and len(value) < spec.min_length:
            errors.append(f"{name} must contain at least {spec.min_length} items")
        if spec.max_length is not None and len(value) > spec.max_length:
            errors.append(f"{name} must contain at most {spec.max_length} items")

    elif spec.type is FieldType.OBJECT and spec.schema is not None:
        errors.extend(validate(value, spec.schema, prefix=name))

    if spec.custom is not None:
        message = spec.custom(value)
        if message:
            errors.append(message)

    return errors


def validate(payload: Mapping[str, Any], schema: Schema, prefix: str = "") -> List[str]:
    """Validate ``payload`` against ``schema``; an empty list means valid."""
    if not isinstance(payload, Mapping):
        return [f"{prefix} must be an object" if prefix else INVALID_PAYLOAD]

    errors: List[str] = []

    if schema.strict:
        unexpected = [key for key in payload if key not in schema.fields]
        if unexpected:
            label = "Unexpected fields" if not prefix else f"{prefix} has unexpected fields"
            errors.append(f"{label}: {', '.join(unexpected)}")

    for field_name, spec in schema.fields.items():
        full_name = f"{prefix}.{field_name}" if prefix else field_name
        errors.extend(validate_field(payload.get(field_name), spec, full_name))

    return errors


def validate_many(items: List[Any], schema: Schema) -> List[str]:
    """Validate every element of a list payload, prefixing messages with the index."""
    errors: List[str] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            errors.append(f"[{index}] must be an object")
            continue
        errors.extend(f"[{index}].{message}" for message in validate(item, schema))
    return errors


def validated_body(schema: Schema, allow_list: bool = False, max_items: Optional[int] = None):
    """Build a FastAPI dependency that parses the JSON body and validates it.

    Raises ``SchemaValidationError`` with every message when the body is not
    acceptable; otherwise returns the decoded payload.
    """

    async def dependency(request: Request) -> Any:
        try:
            raw = await request.body()
            payload = json.loads(raw) if raw else None
        except (ValueError, UnicodeDecodeError):
            raise SchemaValidationError([INVALID_PAYLOAD])

        if isinstance(payload, list) and allow_list:
            if not payload:
                raise SchemaValidationError(["At least one record is required"])
            if max_items is not None and len(payload) > max_items:
                raise SchemaValidationError([f"At most {max_items} records may be sent per request"])
            errors = validate_many(payload, schema)
        elif isinstance(payload, dict):
            errors = validate(payload, schema)
        else:
            errors = [INVALID_PAYLOAD]

        if errors:
            logger.info(f"Rejected {request.method} {request.url.path}: {len(errors)} validation error(s)")
            raise SchemaValidationError(errors)
        return payload

    return dependency


def validated_query(schema: Schema):
    """Build a FastAPI dependency that validates query parameters."""

    async def dependency(request: Request) -> Dict[str, str]:
        params = dict(request.query_params)
        errors = validate(params, schema)
        if errors:
            logger.info(f"Rejected query for {request.url.path}: {len(errors)} validation error(s)")
            raise SchemaValidationError(errors)
        return params

    return dependency
