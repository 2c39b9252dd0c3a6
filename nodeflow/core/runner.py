from __future__ import annotations
"""FlowRunner – the request-handling seam around the orchestration core.

One call to :meth:`FlowRunner.build_flow` answers one request:

1. serve the terminal from the :class:`FlowPool` when the last build is
   still equivalent, otherwise
2. select and validate the ending node, prune the flow to its ancestors,
   assign depths and let the :class:`Executor` initialise every node,
3. re-resolve the terminal against this request and run its adapter.

The runner owns no global state: registry and both pools are injected.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from nodeflow.config import RunnerConfig
from nodeflow.utils.events import FlowBuilt, FlowReused, FlowUpserted, publish
from nodeflow.utils.ids import new_chat_id

from .cache_pool import CachePool
from .context import SharedContext
from .errors import (
    AdapterRunError,
    AmbiguousEndingNodeError,
    InvalidEndingNodeError,
    NoEndingNodeError,
)
from .executor import Executor
from .flow_pool import FlowPool
from .graph import FlowGraph, build_graph, get_ending_nodes, starting_nodes_and_depth
from .node import ChatMessage, FlowData, FlowNode, IncomingInput, NodeData
from .variables import find_placeholders, replace_inputs_with_config, resolve_variables

__all__ = ["FlowRunner", "RunResult"]

log = logging.getLogger(__name__)

MEMORY_INPUT = "memory"


@dataclass
class RunResult:  # noqa: D101
    flow_id: str
    chat_id: str
    result: Any
    reused: bool = False
    streaming: bool = False
    ending_node_id: str = ""


class FlowRunner:
    """Build, reuse and run stored flows.

    Parameters
    ----------
    registry:
        :class:`~nodeflow.adapters.registry.AdapterRegistry` resolving node types.
    flow_pool / cache_pool:
        Injected pools; fresh ones are created when omitted.
    config:
        :class:`~nodeflow.config.RunnerConfig` (defaults when omitted).
    """

    def __init__(
        self,
        registry,
        flow_pool: Optional[FlowPool] = None,
        cache_pool: Optional[CachePool] = None,
        config: Optional[RunnerConfig] = None,
    ):
        self.registry = registry
        self.flow_pool = flow_pool if flow_pool is not None else FlowPool(registry)
        self.cache_pool = cache_pool if cache_pool is not None else CachePool()
        self.config = config or RunnerConfig()
        self.executor = Executor(registry, parallel=self.config.parallel_init)

    # ------------------------------------------------------------------ #
    # Question mode
    # ------------------------------------------------------------------ #
    async def build_flow(
        self,
        flow_id: str,
        flow: FlowData,
        incoming: IncomingInput,
        *,
        is_internal: bool = False,
        stream=None,
        app_data_source: Any = None,
        analytic: Optional[Dict[str, Any]] = None,
    ) -> RunResult:
        """Answer *incoming* with the terminal node of *flow*."""
        chat_id = incoming.chat_id or new_chat_id()
        question = incoming.question
        history: List[ChatMessage] = list(incoming.history)
        override = incoming.override_config

        reused = self.flow_pool.is_reusable(
            flow_id, override, flow.nodes, is_internal=is_internal, stop_node_id=incoming.stop_node_id
        )
        if reused:
            entry = self.flow_pool.get(flow_id)
            resolved_nodes = entry.resolved_nodes
            stored = resolved_nodes[-1].data if resolved_nodes else entry.ending_node_data
            if not history:
                history = await self._session_history(flow, stored, flow_id, chat_id)
            node_data = resolve_variables(
                replace_inputs_with_config(stored, override), resolved_nodes, question, history
            )
            publish(FlowReused(flow_id=flow_id, ending_node_id=node_data.id))
            log.debug("Reusing compiled flow %s", flow_id)
        else:
            graph = build_graph(flow.nodes, flow.edges)
            ending = self._select_ending_node(flow, graph, incoming.stop_node_id)
            self._validate_ending_node(ending.data)
            if not history:
                history = await self._session_history(flow, ending.data, flow_id, chat_id)

            starting_ids, depth_queue = starting_nodes_and_depth(graph.dependencies, ending.id)
            built = await self.executor.build(
                starting_ids,
                flow.nodes,
                flow.edges,
                graph,
                depth_queue,
                question=question,
                history=history,
                chat_id=chat_id,
                flow_id=flow_id,
                override_config=override,
                cache_pool=self.cache_pool,
                app_data_source=app_data_source,
                analytic=analytic,
                uploads=incoming.uploads,
            )
            terminal = built[-1]
            node_data = resolve_variables(
                replace_inputs_with_config(terminal.data, override), built, question, history
            )
            by_id = flow.node_map()
            self.flow_pool.add(
                flow_id,
                node_data,
                [by_id[n] for n in starting_ids],
                override,
                resolved_nodes=built,
                stop_node_id=incoming.stop_node_id,
            )
            publish(FlowBuilt(flow_id=flow_id, ending_node_id=terminal.id, node_count=len(built)))

        streaming = bool(incoming.streaming) and self.is_flow_valid_for_stream(flow, node_data)
        context = self._context(
            flow_id,
            chat_id,
            question,
            history,
            stream=stream if streaming else None,
            app_data_source=app_data_source,
            analytic=analytic,
            uploads=incoming.uploads,
        )
        result = await self._run_terminal(node_data, question, context)
        return RunResult(
            flow_id=flow_id,
            chat_id=chat_id,
            result=result,
            reused=reused,
            streaming=streaming,
            ending_node_id=node_data.id,
        )

    async def _run_terminal(self, node_data: NodeData, question: str, context: SharedContext) -> Any:
        adapter = self.registry.get(node_data.name)
        label = node_data.label or node_data.id
        try:
            result = await adapter.run(node_data, question, context)
        except AdapterRunError:
            raise
        except Exception as exc:
            log.error("Error running %s (%s): %s", label, node_data.id, exc)
            raise AdapterRunError(node_data.id, label, str(exc)) from exc
        if isinstance(result, str):
            return {"text": result}
        return result

    # ------------------------------------------------------------------ #
    # Upsert mode
    # ------------------------------------------------------------------ #
    async def upsert_vector(
        self,
        flow_id: str,
        flow: FlowData,
        incoming: IncomingInput,
        *,
        app_data_source: Any = None,
    ) -> List[str]:
        """Run *flow* up to its storage node in upsert mode; return executed ids."""
        chat_id = incoming.chat_id or new_chat_id()
        graph = build_graph(flow.nodes, flow.edges)
        stop_node = self._select_vector_store(flow, incoming.stop_node_id)
        adapter = self.registry.get(stop_node.data.name)
        if not adapter.supports_upsert:
            raise InvalidEndingNodeError(f"Node {stop_node.label} ({stop_node.id}) does not support upsert")

        starting_ids, depth_queue = starting_nodes_and_depth(graph.dependencies, stop_node.id)
        built = await self.executor.build(
            starting_ids,
            flow.nodes,
            flow.edges,
            graph,
            depth_queue,
            question=incoming.question,
            history=list(incoming.history),
            chat_id=chat_id,
            flow_id=flow_id,
            override_config=incoming.override_config,
            cache_pool=self.cache_pool,
            is_upsert=True,
            stop_node_id=stop_node.id,
            app_data_source=app_data_source,
            uploads=incoming.uploads,
        )
        by_id = flow.node_map()
        self.flow_pool.add(flow_id, None, [by_id[n] for n in starting_ids], incoming.override_config)
        publish(FlowUpserted(flow_id=flow_id, stop_node_id=stop_node.id))
        return [n.id for n in built]

    def _select_vector_store(self, flow: FlowData, stop_node_id: Optional[str]) -> FlowNode:
        if stop_node_id:
            node = flow.get_node(stop_node_id)
            if node is None:
                raise InvalidEndingNodeError(f"Stop node '{stop_node_id}' is not part of the flow")
            return node
        candidates = [
            n
            for n in flow.nodes
            if n.data.category == self.config.vector_store_category
            and not any(word in n.data.label for word in self.config.vector_store_label_excludes)
        ]
        if not candidates:
            raise NoEndingNodeError("There is no vector store node in the flow")
        if len(candidates) > 1:
            raise AmbiguousEndingNodeError([n.id for n in candidates])
        return candidates[0]

    # ------------------------------------------------------------------ #
    # Ending node
    # ------------------------------------------------------------------ #
    def _select_ending_node(self, flow: FlowData, graph: FlowGraph, stop_node_id: Optional[str]) -> FlowNode:
        if stop_node_id:
            node = flow.get_node(stop_node_id)
            if node is None:
                raise InvalidEndingNodeError(f"Stop node '{stop_node_id}' is not part of the flow")
            return node
        ending_ids = get_ending_nodes(graph)
        if not ending_ids:
            raise NoEndingNodeError("Ending node not found")
        if len(ending_ids) > 1:
            raise AmbiguousEndingNodeError(ending_ids)
        return flow.get_node(ending_ids[0])

    def _validate_ending_node(self, data: NodeData) -> None:
        label = data.label or data.id
        outputs = data.selected_outputs()
        if outputs and data.name not in outputs:
            raise InvalidEndingNodeError(
                f"Output of {label} ({data.id}) is not valid; only the node itself can end a flow"
            )
        if data.category not in self.config.ending_categories:
            raise InvalidEndingNodeError(
                f"Ending node {label} ({data.id}) must be one of: {', '.join(self.config.ending_categories)}"
            )

    # ------------------------------------------------------------------ #
    # Memory
    # ------------------------------------------------------------------ #
    def _memory_node(self, flow: FlowData, ending: NodeData) -> Optional[FlowNode]:
        refs = find_placeholders(ending.inputs.get(MEMORY_INPUT))
        if refs:
            return flow.get_node(refs[0].split(".", 1)[0])
        for edge in flow.edges:
            if edge.target != ending.id:
                continue
            source = flow.get_node(edge.source)
            if source is not None and source.data.category == self.config.memory_category:
                return source
        return None

    async def _session_history(
        self, flow: FlowData, ending: NodeData, flow_id: str, chat_id: str
    ) -> List[ChatMessage]:
        memory = self._memory_node(flow, ending)
        if memory is None or memory.data.name not in self.registry:
            return []
        adapter = self.registry.get(memory.data.name)
        if not hasattr(adapter, "get_chat_messages"):
            return []
        context = self._context(flow_id, chat_id, "", [])
        return list(await adapter.get_chat_messages(memory.data, context))

    async def clear_session_memory(self, flow: FlowData, chat_id: str, *, flow_id: str = "") -> List[str]:
        """Clear *chat_id* from every memory node of *flow*; return their ids."""
        cleared: List[str] = []
        context = self._context(flow_id, chat_id, "", [])
        for node in flow.nodes:
            if node.data.category != self.config.memory_category or node.data.name not in self.registry:
                continue
            adapter = self.registry.get(node.data.name)
            if hasattr(adapter, "clear_session"):
                await adapter.clear_session(node.data, context)
                cleared.append(node.id)
        return cleared

    # ------------------------------------------------------------------ #
    # Misc
    # ------------------------------------------------------------------ #
    def invalidate(self, flow_id: str) -> None:
        """Mark the compiled entry of *flow_id* stale (call on every flow save)."""
        self.flow_pool.update_in_sync(flow_id, False)

    def is_flow_valid_for_stream(self, flow: FlowData, ending_node_data: NodeData) -> bool:
        for node in flow.nodes:
            category = node.data.category
            if category == self.config.output_parser_category:
                return False
            if category in self.config.model_categories and not self._streams(node.data.name):
                return False
        return self._streams(ending_node_data.name)

    def _streams(self, name: str) -> bool:
        return name in self.registry and self.registry.get(name).streaming

    def _context(
        self,
        flow_id: str,
        chat_id: str,
        question: str,
        history: List[ChatMessage],
        *,
        stream=None,
        app_data_source: Any = None,
        analytic: Optional[Dict[str, Any]] = None,
        uploads: Optional[List[Dict[str, Any]]] = None,
    ) -> SharedContext:
        return SharedContext(
            flow_id=flow_id,
            chat_id=chat_id,
            question=question,
            history=list(history),
            app_data_source=app_data_source,
            analytic=analytic,
            uploads=list(uploads or []),
            stream=stream,
            cache_pool=self.cache_pool,
        )
