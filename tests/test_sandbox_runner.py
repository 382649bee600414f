"""Tests for TransformSandbox — real V8 isolates in spawned child processes.

Skipped entirely when py_mini_racer is not installed, since every run
loads it in the child.
"""

from __future__ import annotations

import pytest

pytest.importorskip("py_mini_racer")

from flowgraph.sandbox.runner import TransformSandbox, build_script  # noqa: E402


@pytest.fixture(scope="module")
def sandbox():
    return TransformSandbox(timeout_ms=1000, grace_ms=3000)


class TestTransformSandbox:
    def test_doubles_value(self, sandbox):
        result = sandbox.test_transform("return { doubled: input.value * 2 };", {"value": 5})
        assert result.success
        assert result.error is None
        assert result.output["doubled"] == 10
        assert result.output["_execution"]["success"] is True
        assert result.output_schema["properties"]["doubled"] == {"type": "integer"}
        assert result.execution_time_ms >= 0

    def test_function_shape(self, sandbox):
        code = "function transform(input: any): any {\n  return { n: input.items.length };\n}"
        result = sandbox.test_transform(code, {"items": [1, 2, 3]})
        assert result.success, result.error
        assert result.output["n"] == 3

    def test_arrow_expression_shape(self, sandbox):
        result = sandbox.test_transform("const t = (input) => ({ name: input.user.name })",
                                        {"user": {"name": "Ada"}})
        assert result.success, result.error
        assert result.output["name"] == "Ada"

    def test_primitive_is_wrapped(self, sandbox):
        result = sandbox.test_transform("return input.a + input.b;", {"a": 1, "b": 2})
        assert result.success
        assert result.output["_value"] == 3

    def test_undefined_becomes_null(self, sandbox):
        result = sandbox.test_transform("return undefined;", {})
        assert result.success
        assert result.output["_value"] is None

    def test_thrown_error_is_reported(self, sandbox):
        result = sandbox.test_transform("throw new Error('boom');", {})
        assert not result.success
        assert result.output is None
        assert "boom" in result.error

    def test_syntax_error_is_reported(self, sandbox):
        result = sandbox.test_transform("return {;", {})
        assert not result.success
        assert result.error

    def test_no_host_access(self, sandbox):
        result = sandbox.test_transform("return { t: typeof require, p: typeof process };", {})
        assert result.success
        assert result.output["t"] == "undefined"
        assert result.output["p"] == "undefined"

    def test_infinite_loop_times_out(self):
        fast = TransformSandbox(timeout_ms=200, grace_ms=3000)
        result = fast.test_transform("while (true) {}", {})
        assert not result.success
        assert "timed out" in result.error

    def test_unserializable_input(self, sandbox):
        result = sandbox.test_transform("return input;", {"when": object()})
        assert not result.success
        assert "JSON-serializable" in result.error

    def test_to_dict_wire_shape(self, sandbox):
        ok = sandbox.test_transform("return { a: 1 };", None).to_dict()
        assert set(ok) == {"success", "executionTimeMs", "output", "outputSchema"}
        bad = sandbox.test_transform("throw 1;", None).to_dict()
        assert set(bad) == {"success", "executionTimeMs", "error"}

    def test_repeated_runs_are_deterministic(self, sandbox):
        code = "return { total: input.items.reduce((a, b) => a + b, 0), tag: 'x' };"
        first = sandbox.test_transform(code, {"items": [1, 2, 3]})
        second = sandbox.test_transform(code, {"items": [1, 2, 3]})
        assert first.success and second.success
        assert first.output_schema == second.output_schema
        for result in (first, second):
            result.output["_execution"].pop("durationMs")
        assert first.output == second.output

    def test_runs_share_no_state(self, sandbox):
        failed = sandbox.test_transform("globalThis.leak = 1; throw new Error('first');", {})
        assert not failed.success
        result = sandbox.test_transform("return { leaked: typeof globalThis.leak };", {})
        assert result.success, result.error
        assert result.output["leaked"] == "undefined"

    def test_object_literal_body_runs(self, sandbox):
        code = "const x = input.v; return { a: x, ok: input.v > 1 ? true : false };"
        result = sandbox.test_transform(code, {"v": 2})
        assert result.success, result.error
        assert result.output["a"] == 2
        assert result.output["ok"] is True


def test_build_script_embeds_input_as_string_literal():
    script = build_script("return input;", {"quote": "it's \"x\"</script>"})
    assert "JSON.parse(" in script
    assert "return input;" in script
