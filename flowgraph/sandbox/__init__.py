"""Transform sandbox — normalize, run, and describe user transform code.

Exports (pure helpers, no V8 needed):
  normalize_transform_code  — function/arrow/body shapes → one function body
  infer_schema_from_sample  — JSON Schema from one sample value

The runner itself lives in flowgraph.sandbox.runner (TransformSandbox,
TestTransformResult). Importing it is cheap: V8 is only loaded inside
the child process each run spawns.
"""

from flowgraph.sandbox.normalize import normalize_transform_code
from flowgraph.sandbox.schema import infer_schema_from_sample

__all__ = [
    "normalize_transform_code",
    "infer_schema_from_sample",
]
