"""JSON Schema inference from a single sample value.

Used to describe what a transform produced so downstream nodes can map its
fields. The inference is structural and shallow-by-design on arrays:

  None          → {"type": "null"}
  bool          → {"type": "boolean"}
  int, 3.0      → {"type": "integer"}
  2.5           → {"type": "number"}
  str           → {"type": "string"} plus "format" for date-time, date,
                  email, uri, uuid
  list          → {"type": "array", "items": <schema of first element>}
                  ([] → {"type": "array"})
  dict          → {"type": "object", "properties": {...},
                   "required": [keys whose value is not None]}

Nesting deeper than max_depth yields {} (any type).
"""

from __future__ import annotations

import re
from typing import Any

DEFAULT_MAX_DEPTH = 5

_STRING_FORMATS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("date-time", re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")),
    ("date", re.compile(r"^\d{4}-\d{2}-\d{2}\Z")),
    ("email", re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+\Z")),
    ("uri", re.compile(r"^https?://")),
    (
        "uuid",
        re.compile(
            r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\Z",
            re.IGNORECASE,
        ),
    ),
)


def infer_schema_from_sample(sample: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> dict[str, Any]:
    return _infer(sample, 0, max_depth)


def _infer(value: Any, depth: int, max_depth: int) -> dict[str, Any]:
    if depth >= max_depth:
        return {}
    if value is None:
        return {"type": "null"}
    # bool is a subclass of int, so it must be checked first.
    if isinstance(value, bool):
        return {"type": "boolean"}
    if isinstance(value, int):
        return {"type": "integer"}
    if isinstance(value, float):
        return {"type": "integer"} if value.is_integer() else {"type": "number"}
    if isinstance(value, str):
        return _infer_string(value)
    if isinstance(value, (list, tuple)):
        if not value:
            return {"type": "array"}
        return {"type": "array", "items": _infer(value[0], depth + 1, max_depth)}
    if isinstance(value, dict):
        return _infer_object(value, depth, max_depth)
    return {}


def _infer_string(value: str) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "string"}
    for fmt, pattern in _STRING_FORMATS:
        if pattern.search(value):
            schema["format"] = fmt
            break
    return schema


def _infer_object(value: dict[str, Any], depth: int, max_depth: int) -> dict[str, Any]:
    properties = {str(k): _infer(v, depth + 1, max_depth) for k, v in value.items()}
    required = [str(k) for k, v in value.items() if v is not None]
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema
