from __future__ import annotations

"""Capability contract every node adapter implements.

An adapter is a thin wrapper around one capability (model call, memory
store, loader...).  The core only ever talks to it through:

    await adapter.initialize(node_data, context) -> instance
    await adapter.run(node_data, question, context) -> output
    await adapter.upsert(node_data, context)            # storage nodes
    await adapter.load_dynamic_options(method, node_data, context)

Adapters return explicit handles from ``initialize``; shared connections
travel through :class:`~nodeflow.core.context.SharedContext`, never as state
rebound on the adapter class.
"""

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Dict, List, Tuple

from nodeflow.core.context import SharedContext
from nodeflow.core.errors import AdapterRunError
from nodeflow.core.node import InputAnchor, InputParam, NodeData, OutputAnchor

__all__ = ["NodeAdapter"]


class NodeAdapter(ABC):
    """Base class; subclasses declare their slots as class attributes."""

    name: ClassVar[str]
    label: ClassVar[str] = ""
    category: ClassVar[str] = ""
    description: ClassVar[str] = ""
    input_params: ClassVar[Tuple[InputParam, ...]] = ()
    input_anchors: ClassVar[Tuple[InputAnchor, ...]] = ()
    output_anchors: ClassVar[Tuple[OutputAnchor, ...]] = ()
    load_methods: ClassVar[Tuple[str, ...]] = ()
    streaming: ClassVar[bool] = False
    reusable: ClassVar[bool] = True

    # -------------------------------------------------- #
    @abstractmethod
    async def initialize(self, node_data: NodeData, context: SharedContext) -> Any:
        """Build this node's instance from its resolved configuration."""

    async def run(self, node_data: NodeData, question: str, context: SharedContext) -> Any:
        raise AdapterRunError(node_data.id, node_data.label or self.label, f"'{self.name}' cannot be run")

    async def upsert(self, node_data: NodeData, context: SharedContext) -> Any:
        raise NotImplementedError(f"'{self.name}' does not support upsert")

    @property
    def supports_upsert(self) -> bool:
        return type(self).upsert is not NodeAdapter.upsert

    async def load_dynamic_options(
        self, method_name: str, node_data: NodeData, context: SharedContext
    ) -> List[Dict[str, Any]]:
        """Dispatch to one of the methods named in ``load_methods``."""
        if method_name not in self.load_methods:
            raise KeyError(f"'{self.name}' has no load method '{method_name}'")
        return await getattr(self, method_name)(node_data, context)

    # -------------------------------------------------- #
    @classmethod
    def node_template(cls, node_id: str, **inputs: Any) -> NodeData:
        """Return a :class:`NodeData` carrying the declared slots and defaults."""
        values: Dict[str, Any] = {p.name: p.default for p in cls.input_params if p.default is not None}
        values.update(inputs)
        outputs = {"output": cls.output_anchors[0].name} if cls.output_anchors else {}
        return NodeData(
            id=node_id,
            label=cls.label or cls.name,
            name=cls.name,
            category=cls.category,
            inputs=values,
            input_params=[p.model_copy() for p in cls.input_params],
            input_anchors=[a.model_copy() for a in cls.input_anchors],
            output_anchors=[
                a.model_copy(update={"id": a.id or f"{node_id}-output-{a.name}"}) for a in cls.output_anchors
            ],
            outputs=outputs,
        )
