"""Turn user-authored transform code into a plain function body.

Transform code arrives in one of four shapes; all of them normalize to a
statement sequence that reads `input` and ends in `return ...`:

  return { doubled: input.value * 2 };                 → unchanged
  function transform(input) { return input.items; }    → return input.items;
  const t = (input) => { return input.items; }         → return input.items;
  const t = (input) => input.items                     → return input.items

TypeScript-only syntax is stripped first so V8 can parse the result:
parameter and return type annotations, `interface` blocks, `type` aliases.
Annotations are only removed inside `function (...)` and `(...) =>` headers,
so object literals and ternaries in plain code pass through untouched.
The stripping is pattern based, not a parser; the code only has to run,
not type-check.
"""

from __future__ import annotations

import re

# Headers whose parameter lists (group "params") and return annotations
# (group "ret") may carry type syntax.
_FUNCTION_HEADER = re.compile(
    r"\bfunction(?P<name>\s+[\w$]+)?\s*\((?P<params>[^()]*)\)(?P<ret>\s*:\s*[^{};=]+?)?\s*\{"
)
_ARROW_HEADER = re.compile(r"\((?P<params>[^()]*)\)(?P<ret>\s*:\s*[^(){};=]+?)?\s*=>")
# One parameter's annotation, `<...>` generics allowed: "x?: Array<Item>[]"
_PARAM_TYPE = re.compile(r"\??\s*:\s*(?:<[^<>]*>|[^,=<>])+")
_INTERFACE_BLOCK = re.compile(r"\binterface\s+\w+\s*\{[^}]*\}")
_TYPE_ALIAS = re.compile(r"\btype\s+\w+\s*=\s*[^;]+;")

# Function shapes, tried in this order against the stripped, trimmed code.
_FUNCTION_DECL = re.compile(r"^function\s+\w*\s*\([^)]*\)\s*\{([\s\S]*)\}$")
_ARROW_BLOCK = re.compile(r"^(?:const|let|var)\s+\w+\s*=\s*\([^)]*\)\s*=>\s*\{([\s\S]*)\}$")
_ARROW_EXPR = re.compile(r"^(?:const|let|var)\s+\w+\s*=\s*\([^)]*\)\s*=>\s*(.+)$", re.DOTALL)


def _strip_params(params: str) -> str:
    # keep the whitespace the annotation swallowed before a default: "x: T = 1" → "x = 1"
    return _PARAM_TYPE.sub(lambda m: m.group(0)[len(m.group(0).rstrip()):], params)


def _function_header(match: re.Match[str]) -> str:
    params = _strip_params(match.group("params"))
    if params == match.group("params") and match.group("ret") is None:
        return match.group(0)
    return f"function{match.group('name') or ''}({params}) {{"


def _arrow_header(match: re.Match[str]) -> str:
    params = _strip_params(match.group("params"))
    if params == match.group("params") and match.group("ret") is None:
        return match.group(0)
    return f"({params}) =>"


def strip_type_syntax(code: str) -> str:
    code = _FUNCTION_HEADER.sub(_function_header, code)
    code = _ARROW_HEADER.sub(_arrow_header, code)
    code = _INTERFACE_BLOCK.sub("", code)
    return _TYPE_ALIAS.sub("", code)


def normalize_transform_code(code: str) -> str:
    """Return the executable function body for code, whatever shape it was written in."""
    js_code = strip_type_syntax(code)
    trimmed = js_code.strip()

    for pattern in (_FUNCTION_DECL, _ARROW_BLOCK):
        match = pattern.match(trimmed)
        if match:
            return match.group(1).strip()

    match = _ARROW_EXPR.match(trimmed)
    if match:
        return f"return {match.group(1)}"

    return js_code
