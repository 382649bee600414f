"""Slug and snake_case helpers shared by node slugs and trigger tool names.

  to_snake_case("Fetch Data")        → "fetch_data"
  to_snake_case("My Tool! @#$ Name") → "my_tool_name"
  generate_unique_slug("Fetch Data", {"fetch_data"}) → "fetch_data_2"
"""

from __future__ import annotations

import re
from collections.abc import Container

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

# Slug used when a name contains no usable characters at all.
_EMPTY_FALLBACK = "node"


def to_snake_case(name: str) -> str:
    """Lowercase name and collapse every run of non-alphanumerics into one "_"."""
    snake = _NON_ALNUM.sub("_", name.lower()).strip("_")
    return snake or _EMPTY_FALLBACK


def first_free(base: str, taken: Container[str]) -> str:
    """Return base if unused, else the first of base_2, base_3, ... not in taken."""
    if base not in taken:
        return base
    n = 2
    while f"{base}_{n}" in taken:
        n += 1
    return f"{base}_{n}"


def generate_unique_slug(name: str, existing: Container[str]) -> str:
    return first_free(to_snake_case(name), existing)
