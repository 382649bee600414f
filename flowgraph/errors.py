"""Domain exceptions raised by the flow graph core.

Two families, mapped to HTTP status codes only at the API edge (api.py):

  NotFoundError        — a flow, node, or connection does not exist     → 404
  FlowValidationError  — a mutation would break a structural invariant  → 400

Every rejection is raised before the in-memory aggregate is touched, so a
caller that catches one of these can assume nothing was changed or saved.

Sandbox failures are deliberately absent: TransformSandbox reports them
in-band on TestTransformResult and never raises.
"""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Fixed user-facing messages
# ---------------------------------------------------------------------------

MSG_SELF_CONNECTION = "Cannot connect a node to itself"
MSG_DUPLICATE_CONNECTION = "This connection already exists"
MSG_CYCLE = "This connection would create a circular reference"
MSG_LINK_SOURCE = "Link nodes can only be connected after UI nodes"
MSG_TRIGGER_TARGET = (
    "Cannot create connection to trigger node. "
    "Trigger nodes do not accept incoming connections."
)


class FlowGraphError(Exception):
    """Base class for every error the core raises on purpose."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(FlowGraphError):
    """Raised when a flow, node, or connection is absent."""


class FlowValidationError(FlowGraphError):
    """Raised when a mutation is rejected by an invariant check."""


def duplicate_name(name: str) -> FlowValidationError:
    return FlowValidationError(f'Node with name "{name}" already exists in this flow')


def duplicate_tool_name(tool_name: str) -> FlowValidationError:
    return FlowValidationError(
        f'Tool name "{tool_name}" is already used by another trigger in this app'
    )
