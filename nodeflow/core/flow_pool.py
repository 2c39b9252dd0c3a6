from __future__ import annotations
"""FlowPool – last compiled state per flow id, reused across requests.

Rebuilding a flow re-initialises every adapter (connections, embeddings,
upserts).  The pool keeps the terminal node of the last successful build
and serves it again when the next request is provably equivalent.

Entries are never expired: ``update_in_sync(flow_id, False)`` marks one
stale when the stored flow changes, and only a rebuild makes it live again.
Concurrent builds of one flow id are last-writer-wins.
"""
import logging
from dataclasses import dataclass, field
from time import time
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional

from .errors import OverrideConfigMismatchError
from .node import FlowNode, NodeData
from .variables import depends_on_live_input

if TYPE_CHECKING:
    from nodeflow.adapters.registry import AdapterRegistry

__all__ = [
    "CompiledEntry",
    "FlowPool",
    "is_same_override_config",
    "is_start_node_depend_on_input",
]

log = logging.getLogger(__name__)

CACHE_CATEGORY = "Cache"


@dataclass
class CompiledEntry:  # noqa: D101
    ending_node_data: Optional[NodeData]
    starting_nodes: List[FlowNode]
    override_config: Optional[Dict[str, Any]] = None
    in_sync: bool = True
    # executed node copies (terminal last) so the terminal can be re-resolved
    resolved_nodes: List[FlowNode] = field(default_factory=list, repr=False)
    # stop node named by the request that built this entry
    stop_node_id: Optional[str] = None
    built_at: float = field(default_factory=time)


# --------------------------------------------------------------------------- #
# Equivalence rules
# --------------------------------------------------------------------------- #

def _check_same_override_config(
    existing: Optional[Mapping[str, Any]],
    incoming: Optional[Mapping[str, Any]],
    is_internal: bool = False,
) -> None:
    if is_internal:
        # editor requests never carry overrides
        if existing:
            raise OverrideConfigMismatchError("entry was built with an override configuration")
        return
    if dict(existing or {}) != dict(incoming or {}):
        raise OverrideConfigMismatchError("override configuration changed")


def is_same_override_config(
    existing: Optional[Mapping[str, Any]],
    incoming: Optional[Mapping[str, Any]],
    is_internal: bool = False,
) -> bool:  # noqa: D401
    """Same keys and values, order-independent; ``None`` equals ``{}``."""
    try:
        _check_same_override_config(existing, incoming, is_internal)
    except OverrideConfigMismatchError:
        return False
    return True


def is_start_node_depend_on_input(
    starting_nodes: Iterable[FlowNode],
    nodes: Iterable[FlowNode],
    registry: "AdapterRegistry | None" = None,
) -> bool:  # noqa: D401
    """True when the flow cannot be reused across different questions."""
    for node in starting_nodes:
        if node.data.category == CACHE_CATEGORY:
            return True
        if depends_on_live_input(node.data):
            return True

    if registry is not None:
        for node in nodes:
            if node.data.name in registry and not registry.get(node.data.name).reusable:
                return True
    return False


# --------------------------------------------------------------------------- #
# Pool
# --------------------------------------------------------------------------- #

class FlowPool:  # noqa: D101
    def __init__(self, registry: "AdapterRegistry | None" = None):
        self.registry = registry
        self._active: Dict[str, CompiledEntry] = {}

    # -------------------------------------------------- #
    def add(
        self,
        flow_id: str,
        ending_node_data: Optional[NodeData],
        starting_nodes: List[FlowNode],
        override_config: Optional[Mapping[str, Any]] = None,
        resolved_nodes: Optional[List[FlowNode]] = None,
        stop_node_id: Optional[str] = None,
    ) -> CompiledEntry:
        """Install or replace the entry of *flow_id* (in sync)."""
        entry = CompiledEntry(
            ending_node_data=ending_node_data,
            starting_nodes=list(starting_nodes),
            override_config=dict(override_config) if override_config else None,
            in_sync=True,
            resolved_nodes=list(resolved_nodes or []),
            stop_node_id=stop_node_id or None,
        )
        self._active[flow_id] = entry
        return entry

    def update_in_sync(self, flow_id: str, in_sync: bool) -> None:
        entry = self._active.get(flow_id)
        if entry is not None:
            entry.in_sync = in_sync

    def remove(self, flow_id: str) -> None:
        self._active.pop(flow_id, None)

    def get(self, flow_id: str) -> Optional[CompiledEntry]:
        return self._active.get(flow_id)

    def __contains__(self, flow_id: str) -> bool:
        return flow_id in self._active

    def __len__(self) -> int:
        return len(self._active)

    # -------------------------------------------------- #
    def is_reusable(
        self,
        flow_id: str,
        incoming_override_config: Optional[Mapping[str, Any]],
        nodes: Iterable[FlowNode],
        *,
        is_internal: bool = False,
        stop_node_id: Optional[str] = None,
    ) -> bool:
        """Return True when the compiled entry of *flow_id* can serve the request."""
        entry = self._active.get(flow_id)
        if entry is None:
            return False
        if not entry.in_sync:
            log.debug("flow %s is out of sync, rebuilding", flow_id)
            return False
        if entry.ending_node_data is None:
            return False
        if (stop_node_id or None) != entry.stop_node_id:
            log.debug("flow %s was built for stop node %s, rebuilding", flow_id, entry.stop_node_id)
            return False
        try:
            _check_same_override_config(entry.override_config, incoming_override_config, is_internal)
        except OverrideConfigMismatchError as exc:
            log.debug("flow %s not reusable: %s", flow_id, exc)
            return False
        if is_start_node_depend_on_input(entry.starting_nodes, nodes, self.registry):
            log.debug("flow %s depends on live input, rebuilding", flow_id)
            return False
        return True
