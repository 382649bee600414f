"""TransformSandbox — run untrusted transform code against sample input.

Isolation is two layers deep:

  1. A V8 isolate (py_mini_racer). The snippet sees one binding, `input`,
     rebuilt from JSON. There is no filesystem, network, process, timer, or
     module access. V8 enforces the wall-clock timeout and the heap cap and
     terminates the script itself when either is exceeded.
  2. A freshly spawned child process hosting that isolate. The parent waits
     at most timeout + grace for an answer and kills the child otherwise, so
     a wedged isolate can never starve or corrupt the caller. Where the
     platform supports it the child also gets an RLIMIT_CPU backstop.

Every call is independent and stateless. Failures of any kind (syntax
error, thrown value, timeout, OOM, crashed child) come back in-band as
TestTransformResult(success=False, error=...); test_transform never raises.

    sandbox = TransformSandbox(timeout_ms=1000)
    result = sandbox.test_transform("return { doubled: input.value * 2 };", {"value": 5})
    result.output   # → {"doubled": 10, "_execution": {"success": True, "durationMs": 0}}
"""

from __future__ import annotations

import json
import logging
import math
import multiprocessing
import sys
import time
from dataclasses import dataclass
from typing import Any

from flowgraph.sandbox.normalize import normalize_transform_code
from flowgraph.sandbox.schema import infer_schema_from_sample

logger = logging.getLogger("flowgraph.sandbox.runner")

DEFAULT_TIMEOUT_MS = 1000
DEFAULT_MAX_MEMORY_MB = 64
DEFAULT_GRACE_MS = 3000

# Runs inside the isolate. The user body sees only `input`; non-null objects
# are spread at the root, anything else is wrapped as {_value: ...}.
_SCRIPT_TEMPLATE = """
(function () {
  const __input = JSON.parse(%(input_literal)s);
  const __result = (function (input) {
%(body)s
  })(__input);
  const __output = (typeof __result === 'object' && __result !== null)
    ? Object.assign({}, __result)
    : { _value: __result === undefined ? null : __result };
  return JSON.stringify(__output);
})()
"""


@dataclass
class TestTransformResult:
    """Outcome of one sandbox run.

    On success output and output_schema are set and error is None; on
    failure it is the other way round. execution_time_ms is always set.
    """

    __test__ = False  # not a pytest test class

    success: bool
    execution_time_ms: int
    output: dict[str, Any] | None = None
    output_schema: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "success": self.success,
            "executionTimeMs": self.execution_time_ms,
        }
        if self.success:
            out["output"] = self.output
            out["outputSchema"] = self.output_schema
        else:
            out["error"] = self.error
        return out


def build_script(body: str, sample_input: Any) -> str:
    """Embed body and sample_input (as a JSON string literal) in the isolate script."""
    input_literal = json.dumps(json.dumps(sample_input))
    return _SCRIPT_TEMPLATE % {"input_literal": input_literal, "body": body}


def _first_line(message: str) -> str:
    lines = [line.strip() for line in message.strip().splitlines() if line.strip()]
    return lines[0] if lines else "Unknown error during transformation"


# ---------------------------------------------------------------------------
# Child process
# ---------------------------------------------------------------------------


def _limit_cpu(cpu_seconds: int) -> None:
    if sys.platform == "win32":
        return
    import resource
    resource.setrlimit(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds + 1))


def _run_in_child(conn, script: str, timeout_ms: int, max_memory: int, cpu_seconds: int) -> None:
    """Child entry point. Sends exactly one (status, payload, duration_ms) tuple."""
    # V8 is loaded only here, so the parent process never needs py_mini_racer.
    from py_mini_racer import JSEvalException, JSOOMException, JSTimeoutException, MiniRacer

    _limit_cpu(cpu_seconds)
    started = time.perf_counter()
    try:
        ctx = MiniRacer()
        raw = ctx.eval(script, timeout_sec=timeout_ms / 1000, max_memory=max_memory)
        status, payload = "ok", raw
    except JSTimeoutException:
        status, payload = "error", f"Execution timed out after {timeout_ms}ms"
    except JSOOMException:
        status, payload = "error", "Execution exceeded the memory limit"
    except JSEvalException as exc:
        status, payload = "error", _first_line(str(exc))
    duration_ms = round((time.perf_counter() - started) * 1000)
    conn.send((status, payload, duration_ms))
    conn.close()


# ---------------------------------------------------------------------------
# Sandbox
# ---------------------------------------------------------------------------


class TransformSandbox:
    """Synchronous, stateless runner for transform snippets.

    Blocks the calling thread for up to timeout + grace; async callers
    should offload it with asyncio.to_thread.
    """

    def __init__(
        self,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_memory_mb: int = DEFAULT_MAX_MEMORY_MB,
        grace_ms: int = DEFAULT_GRACE_MS,
    ) -> None:
        self.timeout_ms = timeout_ms
        self.max_memory_mb = max_memory_mb
        self.grace_ms = grace_ms
        self._mp = multiprocessing.get_context("spawn")

    @property
    def deadline_seconds(self) -> float:
        return (self.timeout_ms + self.grace_ms) / 1000

    def test_transform(self, code: str, sample_input: Any) -> TestTransformResult:
        started = time.perf_counter()

        def _elapsed() -> int:
            return round((time.perf_counter() - started) * 1000)

        try:
            script = build_script(normalize_transform_code(code), sample_input)
        except (TypeError, ValueError) as exc:
            return TestTransformResult(
                success=False,
                execution_time_ms=_elapsed(),
                error=f"Sample input is not JSON-serializable: {exc}",
            )

        status, payload, duration_ms = self._execute(script)
        if status != "ok":
            logger.warning("Transform test failed: %s", payload)
            return TestTransformResult(success=False, execution_time_ms=_elapsed(), error=payload)

        output = json.loads(payload)
        output["_execution"] = {"success": True, "durationMs": duration_ms}
        return TestTransformResult(
            success=True,
            execution_time_ms=_elapsed(),
            output=output,
            output_schema=infer_schema_from_sample(output),
        )

    def _execute(self, script: str) -> tuple[str, str, int]:
        """Run script in a fresh child process; kill it if it overstays its deadline."""
        parent_conn, child_conn = self._mp.Pipe(duplex=False)
        cpu_seconds = math.ceil(self.deadline_seconds) + 1
        proc = self._mp.Process(
            target=_run_in_child,
            args=(
                child_conn,
                script,
                self.timeout_ms,
                self.max_memory_mb * 1024 * 1024,
                cpu_seconds,
            ),
            daemon=True,
        )
        proc.start()
        child_conn.close()
        try:
            if parent_conn.poll(self.deadline_seconds):
                try:
                    return parent_conn.recv()
                except EOFError:
                    pass
            else:
                logger.warning(
                    "Sandbox child pid=%s exceeded %.1fs deadline; killing it",
                    proc.pid, self.deadline_seconds,
                )
                proc.kill()
                return "error", f"Execution timed out after {self.timeout_ms}ms", 0
        finally:
            parent_conn.close()
            proc.join(timeout=1)
            if proc.is_alive():
                proc.kill()
                proc.join()

        logger.warning("Sandbox child pid=%s exited with code %s", proc.pid, proc.exitcode)
        return "error", f"Sandbox process exited unexpectedly (exit code {proc.exitcode})", 0
