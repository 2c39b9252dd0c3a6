from __future__ import annotations
"""Depth-ordered DAG executor.

Walks the nodes of a depth queue from the starting nodes to the target,
resolving each node's inputs from the outputs already produced in this run,
then awaiting its adapter's ``initialize``.  Every node runs exactly once.

Nodes on the same depth share no data dependency; ``parallel=True`` starts
them together in an anyio task group instead of one after another.
"""
import logging
from itertools import groupby
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import anyio

from nodeflow.utils.events import NodeInitFailed, NodeInitFinished, NodeInitStarted, publish

from .cache_pool import CachePool
from .context import SharedContext
from .errors import (
    AdapterInitError,
    GraphIntegrityError,
    InvalidEndingNodeError,
    MissingInputError,
    NodeflowError,
)
from .graph import FlowGraph, build_graph, execution_order
from .node import ChatMessage, FlowEdge, FlowNode, NodeData
from .variables import replace_inputs_with_config, resolve_variables

__all__ = ["Executor", "instance_ref"]

log = logging.getLogger(__name__)


def instance_ref(node_id: str) -> str:
    """Placeholder referencing the instance produced by *node_id*."""
    return "{{%s.data.instance}}" % node_id


def _anchor_from_handle(handle: str) -> str:
    # editor handles look like "<nodeId>-input-<anchor>-<Type|Type>"
    if "-input-" in handle:
        return handle.split("-input-", 1)[1].split("-", 1)[0]
    return handle


def _is_unset(value: Any) -> bool:
    return value is None or value == "" or value == []


class Executor:  # noqa: D101
    def __init__(self, registry, *, parallel: bool = False):
        self.registry = registry
        self.parallel = parallel

    # ------------------------------------------------------------------ #
    async def build(
        self,
        starting_node_ids: Sequence[str],
        nodes: Sequence[FlowNode],
        edges: Sequence[FlowEdge],
        graph: Optional[FlowGraph],
        depth_queue: Mapping[str, int],
        question: str = "",
        history: Optional[List[ChatMessage]] = None,
        chat_id: str = "",
        flow_id: str = "",
        override_config: Optional[Mapping[str, Any]] = None,
        cache_pool: Optional[CachePool] = None,
        is_upsert: bool = False,
        stop_node_id: Optional[str] = None,
        *,
        app_data_source: Any = None,
        analytic: Optional[Dict[str, Any]] = None,
        uploads: Optional[List[Dict[str, Any]]] = None,
        stream=None,
    ) -> List[FlowNode]:
        """Initialise every node of *depth_queue*; return the built copies in order.

        In upsert mode the *stop_node_id* adapter is upserted instead of
        initialised and the traversal ends there.  Any adapter failure aborts
        the traversal with :class:`AdapterInitError`; nothing partial is
        returned.
        """
        graph = graph if graph is not None else build_graph(nodes, edges)
        by_id = {n.id: n for n in nodes}
        missing = [n for n in depth_queue if n not in by_id]
        if missing:
            raise GraphIntegrityError(f"Depth queue references unknown node(s): {', '.join(missing)}")
        for node_id in starting_node_ids:
            if depth_queue.get(node_id) != 0:
                raise GraphIntegrityError(f"Starting node '{node_id}' is not at depth 0")
        if is_upsert and stop_node_id is not None:
            self._check_upsert_target(stop_node_id, by_id, depth_queue)

        context = SharedContext(
            flow_id=flow_id,
            chat_id=chat_id,
            question=question,
            history=list(history or []),
            app_data_source=app_data_source,
            analytic=analytic,
            uploads=list(uploads or []),
            stream=stream,
            cache_pool=cache_pool if cache_pool is not None else CachePool(),
            is_upsert=is_upsert,
        )
        incoming = self._incoming_edges(edges, depth_queue)

        # node id -> built copy; owned by this run only
        built: Dict[str, FlowNode] = {}
        order = execution_order(depth_queue)
        log.debug("[%s] execution order: %s", flow_id, order)

        for depth, level in groupby(order, key=lambda n: depth_queue[n]):
            level_ids = list(level)
            for node_id in level_ids:
                self._check_dependencies_done(node_id, graph, depth_queue, built)

            stop_here = stop_node_id is not None and stop_node_id in level_ids
            if self.parallel and len(level_ids) > 1:
                await self._build_level_parallel(
                    level_ids, depth, by_id, incoming, built, context, override_config, is_upsert, stop_node_id
                )
            else:
                for node_id in level_ids:
                    await self._build_node(
                        by_id[node_id], depth, incoming, built, context, override_config, is_upsert, stop_node_id
                    )
                    if node_id == stop_node_id:
                        break
            if stop_here:
                break

        return [built[n] for n in order if n in built]

    # ------------------------------------------------------------------ #
    async def _build_level_parallel(
        self, level_ids, depth, by_id, incoming, built, context, override_config, is_upsert, stop_node_id
    ) -> None:
        errors: List[BaseException] = []

        async def _one(node_id: str):
            try:
                await self._build_node(
                    by_id[node_id], depth, incoming, built, context, override_config, is_upsert, stop_node_id
                )
            except Exception as exc:  # noqa: BLE001 – re-raised below once the level settles
                errors.append(exc)

        async with anyio.create_task_group() as tg:
            for node_id in level_ids:
                tg.start_soon(_one, node_id)
        if errors:
            raise errors[0]

    async def _build_node(
        self,
        node: FlowNode,
        depth: int,
        incoming: Mapping[str, List[FlowEdge]],
        built: Dict[str, FlowNode],
        context: SharedContext,
        override_config: Optional[Mapping[str, Any]],
        is_upsert: bool,
        stop_node_id: Optional[str],
    ) -> None:
        label = node.label
        adapter = self.registry.get(node.data.name)
        stored = self._with_edge_inputs(node.data, incoming.get(node.id, []))
        node_data = stored
        if override_config:
            node_data = replace_inputs_with_config(node_data, override_config)
        node_data = resolve_variables(node_data, built, context.question, context.history)

        missing = [name for name in node_data.required_inputs() if _is_unset(node_data.inputs.get(name))]
        if missing:
            raise MissingInputError(node.id, label, missing)

        upserting = is_upsert and node.id == stop_node_id
        publish(NodeInitStarted(flow_id=context.flow_id, node_id=node.id, depth=depth))
        try:
            if upserting:
                log.debug("Upserting %s (%s)", label, node.id)
                instance = await adapter.upsert(node_data, context)
            else:
                log.debug("Initializing %s (%s)", label, node.id)
                instance = await adapter.initialize(node_data, context)
        except NodeflowError as exc:
            publish(NodeInitFailed(flow_id=context.flow_id, node_id=node.id, error=str(exc)))
            if isinstance(exc, AdapterInitError):
                raise
            raise AdapterInitError(node.id, label, str(exc)) from exc
        except Exception as exc:
            publish(NodeInitFailed(flow_id=context.flow_id, node_id=node.id, error=str(exc)))
            raise AdapterInitError(node.id, label, str(exc)) from exc

        # keep the stored inputs (placeholders) so the node can be re-resolved later
        built[node.id] = node.model_copy(update={"data": stored.model_copy(update={"instance": instance})})
        publish(NodeInitFinished(flow_id=context.flow_id, node_id=node.id, depth=depth, upserted=upserting))
        log.debug("Finished %s %s (%s)", "upserting" if upserting else "initializing", label, node.id)

    # ------------------------------------------------------------------ #
    @staticmethod
    def _incoming_edges(edges: Iterable[FlowEdge], depth_queue: Mapping[str, int]) -> Dict[str, List[FlowEdge]]:
        incoming: Dict[str, List[FlowEdge]] = {}
        for edge in edges:
            if edge.target in depth_queue and edge.source in depth_queue:
                incoming.setdefault(edge.target, []).append(edge)
        return incoming

    @staticmethod
    def _with_edge_inputs(node_data: NodeData, edges: Sequence[FlowEdge]) -> NodeData:
        """Fill unset anchor inputs with references to the connected sources."""
        if not edges:
            return node_data
        inputs = dict(node_data.inputs)
        for edge in edges:
            anchor = node_data.get_input_anchor(_anchor_from_handle(edge.target_handle))
            if anchor is None:
                continue
            ref = instance_ref(edge.source)
            current = inputs.get(anchor.name)
            if anchor.list:
                refs = list(current) if isinstance(current, list) else ([] if _is_unset(current) else [current])
                if ref not in refs:
                    refs.append(ref)
                inputs[anchor.name] = refs
            elif _is_unset(current):
                inputs[anchor.name] = ref
        return node_data.model_copy(update={"inputs": inputs})

    def _check_upsert_target(
        self, stop_node_id: str, by_id: Mapping[str, FlowNode], depth_queue: Mapping[str, int]
    ) -> None:
        node = by_id.get(stop_node_id)
        if node is None or stop_node_id not in depth_queue:
            raise InvalidEndingNodeError(f"Stop node '{stop_node_id}' is not part of the depth queue")
        if not self.registry.get(node.data.name).supports_upsert:
            raise InvalidEndingNodeError(f"Node {node.label} ({node.id}) does not support upsert")

    @staticmethod
    def _check_dependencies_done(
        node_id: str, graph: FlowGraph, depth_queue: Mapping[str, int], built: Mapping[str, FlowNode]
    ) -> None:
        pending = [d for d in graph.dependencies.get(node_id, []) if d in depth_queue and d not in built]
        if pending:
            raise GraphIntegrityError(
                f"Node '{node_id}' scheduled before its dependencies: {', '.join(pending)}"
            )
