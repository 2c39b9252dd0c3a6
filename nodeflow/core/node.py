from __future__ import annotations

"""Stored flow types: nodes, slots, edges and the incoming request.

The models accept the camelCase JSON a flow editor exports (``inputParams``,
``sourceHandle`` ...) as well as plain snake_case keyword arguments.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

__all__ = [
    "InputParam",
    "InputAnchor",
    "OutputAnchor",
    "NodeData",
    "FlowNode",
    "FlowEdge",
    "FlowData",
    "ChatMessage",
    "IncomingInput",
]

_FLOW_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class InputParam(BaseModel):  # noqa: D101 – literal / override-eligible slot
    model_config = _FLOW_CONFIG

    name: str
    label: str = ""
    type: str = "string"
    optional: bool = False
    default: Any = None
    accept_variable: bool = False
    overridable: bool = True


class InputAnchor(BaseModel):  # noqa: D101 – slot fed by another node
    model_config = _FLOW_CONFIG

    name: str
    label: str = ""
    type: str = ""
    optional: bool = False
    list: bool = False


class OutputAnchor(BaseModel):  # noqa: D101
    model_config = _FLOW_CONFIG

    id: str = ""
    name: str
    label: str = ""
    type: str = ""


class NodeData(BaseModel):
    """Configuration payload of one node plus the adapter output once built."""

    model_config = _FLOW_CONFIG

    id: str
    label: str = ""
    name: str
    category: str = ""
    inputs: Dict[str, Any] = Field(default_factory=dict)
    input_params: List[InputParam] = Field(default_factory=list)
    input_anchors: List[InputAnchor] = Field(default_factory=list)
    output_anchors: List[OutputAnchor] = Field(default_factory=list)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    instance: Any = Field(default=None, exclude=True)

    # -------------------------------------------------- #
    def get_input_param(self, name: str) -> Optional[InputParam]:
        return next((p for p in self.input_params if p.name == name), None)

    def get_input_anchor(self, name: str) -> Optional[InputAnchor]:
        return next((a for a in self.input_anchors if a.name == name), None)

    def overridable_inputs(self) -> set[str]:
        """Names of input params that a request override may replace."""
        return {p.name for p in self.input_params if p.overridable}

    def required_inputs(self) -> List[str]:
        """Names of declared, non-optional input params and anchors."""
        names = [p.name for p in self.input_params if not p.optional]
        names.extend(a.name for a in self.input_anchors if not a.optional)
        return names

    def selected_outputs(self) -> List[Any]:
        return list(self.outputs.values())


class FlowNode(BaseModel):  # noqa: D101
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str
    data: NodeData

    @property
    def label(self) -> str:
        return self.data.label or self.id


class FlowEdge(BaseModel):  # noqa: D101
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    source: str
    target: str
    source_handle: str = ""
    target_handle: str = ""
    id: str = ""


class FlowData(BaseModel):
    """A stored flow: node list plus edge list."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[FlowEdge] = Field(default_factory=list)

    def node_map(self) -> Dict[str, FlowNode]:
        return {n.id: n for n in self.nodes}

    def get_node(self, node_id: str) -> Optional[FlowNode]:
        return next((n for n in self.nodes if n.id == node_id), None)


class ChatMessage(BaseModel):  # noqa: D101
    model_config = _FLOW_CONFIG

    role: str  # "userMessage" | "apiMessage"
    content: str = ""


class IncomingInput(BaseModel):
    """Request body accepted by the runner (question mode or upsert mode)."""

    model_config = _FLOW_CONFIG

    question: str = ""
    history: List[ChatMessage] = Field(default_factory=list)
    override_config: Optional[Dict[str, Any]] = None
    chat_id: Optional[str] = None
    stop_node_id: Optional[str] = None
    uploads: List[Dict[str, Any]] = Field(default_factory=list)
    streaming: bool = False
