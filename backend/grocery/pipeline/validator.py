"""Strict structured-output validation for model responses.

Model text is untrusted: it may wrap the JSON in prose, rename keys, add
keys or change types. ``validate`` accepts only an object whose key set
matches the schema and whose fields have the declared kinds. Anything else
comes back as ``Invalid`` with a reason the retry loop can feed back to the
model. Field checks raise ``SchemaViolation`` internally; ``validate`` turns it
into ``Invalid`` so it never reaches callers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from grocery.errors import SchemaViolation


class FieldKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    STRING_ARRAY = "string_array"
    STRING_MAP = "string_map"
    OBJECT_ARRAY = "object_array"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    kind: FieldKind
    required: bool = True
    non_empty: bool = False
    item_schema: ResponseSchema | None = None  # OBJECT_ARRAY only


@dataclass(frozen=True)
class ResponseSchema:
    """A closed set of named, typed fields a response must match exactly."""

    name: str
    fields: tuple[FieldSpec, ...]
    allow_extra_keys: bool = False

    def field_by_key(self) -> dict[str, FieldSpec]:
        return {f.name.casefold(): f for f in self.fields}

    def shape(self) -> dict[str, Any]:
        """Example JSON shape, embedded in prompts."""
        out: dict[str, Any] = {}
        for f in self.fields:
            if f.kind is FieldKind.STRING:
                out[f.name] = "string"
            elif f.kind is FieldKind.NUMBER:
                out[f.name] = "number"
            elif f.kind is FieldKind.STRING_ARRAY:
                out[f.name] = ["string"]
            elif f.kind is FieldKind.STRING_MAP:
                out[f.name] = {"<key>": "string"}
            elif f.item_schema is not None:
                out[f.name] = [f.item_schema.shape()]
        return out

    def describe(self) -> str:
        return json.dumps(self.shape())

    def relaxed(self) -> ResponseSchema:
        """Same schema, but undeclared keys are ignored instead of rejected (nested too)."""
        fields = tuple(
            replace(f, item_schema=f.item_schema.relaxed()) if f.item_schema else f
            for f in self.fields
        )
        return replace(self, fields=fields, allow_extra_keys=True)

    def with_key_policy(self, strict: bool) -> ResponseSchema:
        return self if strict else self.relaxed()


@dataclass(frozen=True)
class Valid:
    value: dict[str, Any]


@dataclass(frozen=True)
class Invalid:
    reason: str


ValidationOutcome = Valid | Invalid


def extract_json_candidate(raw_text: str) -> str:
    """Return the first balanced ``{...}`` substring, or the text unchanged.

    Braces inside string literals do not count toward the nesting depth.
    """
    start = raw_text.find("{")
    if start == -1:
        return raw_text

    depth = 0
    in_string = False
    escape_next = False
    for i in range(start, len(raw_text)):
        ch = raw_text[i]
        if escape_next:
            escape_next = False
            continue
        if in_string:
            if ch == "\\":
                escape_next = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return raw_text[start : i + 1]
    return raw_text


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_field(spec: FieldSpec, value: Any, path: str) -> Any:
    if spec.kind is FieldKind.STRING:
        if not isinstance(value, str):
            raise SchemaViolation(f"{path} must be a string")
        return value

    if spec.kind is FieldKind.NUMBER:
        if not _is_number(value):
            raise SchemaViolation(f"{path} must be a number")
        return value

    if spec.kind is FieldKind.STRING_MAP:
        if not isinstance(value, dict):
            raise SchemaViolation(f"{path} must be an object")
        if not all(isinstance(v, str) for v in value.values()):
            raise SchemaViolation(f"{path} values must be strings")
        if spec.non_empty and not value:
            raise SchemaViolation(f"{path} must not be empty")
        return dict(value)

    if not isinstance(value, list):
        raise SchemaViolation(f"{path} must be an array")
    if spec.non_empty and not value:
        raise SchemaViolation(f"{path} must not be empty")

    if spec.kind is FieldKind.STRING_ARRAY:
        if not all(isinstance(v, str) for v in value):
            raise SchemaViolation(f"{path} must be an array of strings")
        return list(value)

    assert spec.item_schema is not None, f"{spec.name}: object_array needs an item_schema"
    items = []
    for index, element in enumerate(value):
        if not isinstance(element, dict):
            raise SchemaViolation(f"{path}[{index}] must be an object")
        items.append(_check_object(spec.item_schema, element, f"{path}[{index}]"))
    return items


def _check_object(schema: ResponseSchema, obj: dict[str, Any], path: str = "") -> dict[str, Any]:
    specs = schema.field_by_key()
    present = {str(k).casefold(): k for k in obj}

    extra = set(present) - set(specs)
    missing = {k for k, s in specs.items() if s.required and k not in present}
    # "Items" and "items" in one object collapse to one key; reject as ambiguous
    duplicated = len(present) != len(obj)
    if missing or duplicated or (extra and not schema.allow_extra_keys):
        where = f" in {path}" if path else ""
        raise SchemaViolation(f"unexpected or missing keys{where}")

    result: dict[str, Any] = {}
    for key, spec in specs.items():
        if key not in present:
            continue
        field_path = f"{path}.{spec.name}" if path else spec.name
        result[spec.name] = _check_field(spec, obj[present[key]], field_path)
    return result


def validate(raw_text: str, schema: ResponseSchema) -> ValidationOutcome:
    """Validate raw model text against ``schema``.

    On success the value is keyed by the schema's field names, whatever
    casing the model used.
    """
    candidate = extract_json_candidate(raw_text or "")
    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, RecursionError):
        return Invalid("not valid JSON")

    if not isinstance(parsed, dict):
        return Invalid("root is not an object")

    try:
        return Valid(_check_object(schema, parsed))
    except SchemaViolation as exc:
        return Invalid(exc.reason)
