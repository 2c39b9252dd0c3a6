from __future__ import annotations

"""DAG helpers (no side-effects).

iter_levels(flow, target) yields (depth, node_ids) in execution order.
build_rich_tree(flow, target) returns a Rich *Tree* ready for printing.
"""
from itertools import groupby
from typing import Iterator, List, Optional, Tuple

from nodeflow.core.graph import build_graph, execution_order, get_ending_nodes, starting_nodes_and_depth
from nodeflow.core.node import FlowData

__all__ = [
    "iter_levels",
    "build_rich_tree",
]

# --------------------------------------------------------------------------- #
# Core traverser
# --------------------------------------------------------------------------- #

def iter_levels(flow: FlowData, target: Optional[str] = None) -> Iterator[Tuple[int, List[str]]]:  # noqa: D401
    """Yield *(depth, node_ids)* for the ancestors of *target* (default: each ending node)."""
    graph = build_graph(flow.nodes, flow.edges)
    targets = [target] if target else get_ending_nodes(graph)
    seen: set[str] = set()
    for tgt in targets:
        _, depth_queue = starting_nodes_and_depth(graph.dependencies, tgt)
        order = [n for n in execution_order(depth_queue) if n not in seen]
        seen.update(order)
        for depth, ids in groupby(order, key=lambda n: depth_queue[n]):
            yield depth, list(ids)


# --------------------------------------------------------------------------- #
# Rich-aware tree builder (import lazily to avoid hard dep at import time)
# --------------------------------------------------------------------------- #

def build_rich_tree(flow: FlowData, target: Optional[str] = None):  # noqa: D401 – return type is Tree but avoid import
    """Return a *rich.tree.Tree* of *flow* grouped by execution depth."""
    from rich.tree import Tree  # local import keeps this module lightweight

    tree = Tree("[bold]Execution DAG[/]")
    nodes = flow.node_map()
    for depth, ids in iter_levels(flow, target):
        level = tree.add(f"[dim]depth {depth}[/]" + (" [dim]parallel ⨉ %d[/]" % len(ids) if len(ids) > 1 else ""))
        for node_id in ids:
            data = nodes[node_id].data
            level.add(f"[cyan]{node_id}[/] [magenta]{data.name}[/] [dim]{data.category}[/]")
    return tree
