"""Node parameters — a closed tagged union keyed by node type.

Each node type stores its configuration in one dataclass variant:

  UserIntent                         → UserIntentParameters   (trigger)
  RegistryComponent/BlankComponent/StatCard/PostList → InterfaceParameters (interface)
  ApiCall                            → ApiCallParameters      (action)
  JavaScriptCodeTransform            → JavaScriptCodeTransformParameters (transform)
  Return                             → ReturnParameters       (return)
  CallFlow                           → CallFlowParameters     (return)
  Link                               → LinkParameters         (return)

Node types that are not in the map (legacy data, third-party catalogs) fall
back to OpaqueParameters, which keeps every key in `extra` and exposes no
template fields.

Template-capable fields are enumerated per variant (_TEMPLATE_FIELDS plus the
ApiCall header override). Reference migration and slug renames only ever
touch those fields; nothing inspects arbitrary attributes.

Wire format is the camelCase dict the HTTP layer and the store exchange
(e.g. {"toolName": "search", "isActive": true}). Keys a variant does not
declare are carried through in `extra` so a shallow merge never drops data.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar


# ---------------------------------------------------------------------------
# Base variant
# ---------------------------------------------------------------------------


@dataclass
class NodeParameters:
    """Common behaviour for all parameter variants.

    _WIRE:            attribute name → camelCase wire key, for every declared field.
    _TEMPLATE_FIELDS: attribute names of plain string fields that may contain
                      {{ slug.path }} references.
    """

    extra: dict[str, Any] = field(default_factory=dict)

    _WIRE: ClassVar[dict[str, str]] = {}
    _TEMPLATE_FIELDS: ClassVar[tuple[str, ...]] = ()

    # -- templates --------------------------------------------------------

    def template_values(self) -> list[str]:
        """Return the current string value of every template-capable field."""
        values = []
        for attr in self._TEMPLATE_FIELDS:
            value = getattr(self, attr)
            if isinstance(value, str):
                values.append(value)
        return values

    def rewrite_templates(self, fn: Callable[[str], str]) -> bool:
        """Apply fn to every template-capable field. Returns True if anything changed."""
        changed = False
        for attr in self._TEMPLATE_FIELDS:
            value = getattr(self, attr)
            if not isinstance(value, str):
                continue
            new_value = fn(value)
            if new_value != value:
                setattr(self, attr, new_value)
                changed = True
        return changed

    # -- wire conversion --------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        for attr, key in self._WIRE.items():
            out[key] = _to_wire(getattr(self, attr))
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> NodeParameters:
        data = dict(data or {})
        kwargs: dict[str, Any] = {}
        for attr, key in cls._WIRE.items():
            if key in data:
                kwargs[attr] = cls._decode(attr, data.pop(key))
        return cls(extra=data, **kwargs)

    @classmethod
    def _decode(cls, attr: str, value: Any) -> Any:
        return value

    def merged(self, updates: dict[str, Any]) -> NodeParameters:
        """Shallow merge: keys in updates overwrite, untouched keys survive."""
        return type(self).from_dict({**self.to_dict(), **updates})


def _to_wire(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, list):
        return [_to_wire(v) for v in value]
    return value


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------


@dataclass
class UserIntentParameters(NodeParameters):
    """Trigger node exposed to the assistant as a callable tool."""

    tool_name: str = ""
    tool_description: str = ""
    is_active: bool = True
    parameters: list[dict[str, Any]] = field(default_factory=list)
    when_to_use: str | None = None
    when_not_to_use: str | None = None

    _WIRE: ClassVar[dict[str, str]] = {
        "tool_name": "toolName",
        "tool_description": "toolDescription",
        "is_active": "isActive",
        "parameters": "parameters",
        "when_to_use": "whenToUse",
        "when_not_to_use": "whenNotToUse",
    }

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        # Optional free-text hints are omitted rather than sent as null.
        for key in ("whenToUse", "whenNotToUse"):
            if out.get(key) is None:
                out.pop(key, None)
        return out


@dataclass
class InterfaceParameters(NodeParameters):
    layout_template: str = ""
    mock_data: dict[str, Any] | None = None

    _WIRE: ClassVar[dict[str, str]] = {
        "layout_template": "layoutTemplate",
        "mock_data": "mockData",
    }


@dataclass
class HeaderEntry:
    key: str = ""
    value: str = ""


@dataclass
class ApiCallParameters(NodeParameters):
    """HTTP request node. `url` and every header value accept templates."""

    method: str = "GET"
    url: str = ""
    headers: list[HeaderEntry] = field(default_factory=list)
    timeout: int = 30000
    input_mappings: list[dict[str, Any]] = field(default_factory=list)
    resolved_output_schema: dict[str, Any] | None = None

    _WIRE: ClassVar[dict[str, str]] = {
        "method": "method",
        "url": "url",
        "headers": "headers",
        "timeout": "timeout",
        "input_mappings": "inputMappings",
        "resolved_output_schema": "resolvedOutputSchema",
    }
    _TEMPLATE_FIELDS: ClassVar[tuple[str, ...]] = ("url",)

    @classmethod
    def _decode(cls, attr: str, value: Any) -> Any:
        if attr == "headers":
            # null or malformed header lists decode to no headers
            if not isinstance(value, list):
                return []
            return [
                HeaderEntry(key=h.get("key") or "", value=h.get("value") or "")
                for h in value
                if isinstance(h, dict)
            ]
        return value

    def template_values(self) -> list[str]:
        values = super().template_values()
        values.extend(h.value for h in self.headers if isinstance(h.value, str))
        return values

    def rewrite_templates(self, fn: Callable[[str], str]) -> bool:
        changed = super().rewrite_templates(fn)
        for header in self.headers:
            if not isinstance(header.value, str):
                continue
            new_value = fn(header.value)
            if new_value != header.value:
                header.value = new_value
                changed = True
        return changed


@dataclass
class JavaScriptCodeTransformParameters(NodeParameters):
    code: str = "return input;"
    resolved_output_schema: dict[str, Any] | None = None

    _WIRE: ClassVar[dict[str, str]] = {
        "code": "code",
        "resolved_output_schema": "resolvedOutputSchema",
    }


@dataclass
class ReturnParameters(NodeParameters):
    text: str = ""

    _WIRE: ClassVar[dict[str, str]] = {"text": "text"}
    _TEMPLATE_FIELDS: ClassVar[tuple[str, ...]] = ("text",)


@dataclass
class CallFlowParameters(NodeParameters):
    # Weak reference: the id of another flow in the same app, never resolved here.
    target_flow_id: str | None = None

    _WIRE: ClassVar[dict[str, str]] = {"target_flow_id": "targetFlowId"}


@dataclass
class LinkParameters(NodeParameters):
    url: str = ""
    text: str = ""

    _WIRE: ClassVar[dict[str, str]] = {"url": "url", "text": "text"}
    _TEMPLATE_FIELDS: ClassVar[tuple[str, ...]] = ("url",)


@dataclass
class OpaqueParameters(NodeParameters):
    """Fallback for node types outside the known set; everything lives in extra."""


# Discriminator map: node type → parameter variant
PARAMETER_TYPES: dict[str, type[NodeParameters]] = {
    "UserIntent": UserIntentParameters,
    "RegistryComponent": InterfaceParameters,
    "BlankComponent": InterfaceParameters,
    "StatCard": InterfaceParameters,
    "PostList": InterfaceParameters,
    "ApiCall": ApiCallParameters,
    "JavaScriptCodeTransform": JavaScriptCodeTransformParameters,
    "Return": ReturnParameters,
    "CallFlow": CallFlowParameters,
    "Link": LinkParameters,
}


def parameters_for(node_type: str, data: dict[str, Any] | None = None) -> NodeParameters:
    """Build the parameter variant for node_type from its wire dict."""
    cls = PARAMETER_TYPES.get(node_type, OpaqueParameters)
    return cls.from_dict(data)
