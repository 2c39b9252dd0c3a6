from __future__ import annotations
"""Graph construction and dependency resolution for stored flows.

``build_graph`` turns a flat node/edge list into adjacency maps in both
directions.  The resolvers below walk those maps breadth-first to prune a
flow to what one target needs and to assign execution depths.
"""
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Set, Tuple

from .errors import GraphIntegrityError
from .node import FlowEdge, FlowNode

__all__ = [
    "FlowGraph",
    "build_graph",
    "get_ending_nodes",
    "reachable_from",
    "prune_graph",
    "starting_nodes_and_depth",
    "execution_order",
]

Adjacency = Dict[str, List[str]]
DepthQueue = Dict[str, int]


@dataclass(frozen=True)
class FlowGraph:
    """Adjacency of one flow.

    *dependents* is the directed graph (source -> targets consuming it);
    *dependencies* is its reverse (target -> sources it consumes).
    """

    dependents: Adjacency = field(default_factory=dict)
    dependencies: Adjacency = field(default_factory=dict)
    dependency_counts: Dict[str, int] = field(default_factory=dict)

    # -------------------------------------------------- #
    @property
    def node_ids(self) -> List[str]:
        return list(self.dependents.keys())

    def edges(self) -> List[Tuple[str, str]]:
        return [(src, dst) for src, dsts in self.dependents.items() for dst in dsts]


# --------------------------------------------------------------------------- #
# Builder
# --------------------------------------------------------------------------- #

def build_graph(nodes: Iterable[FlowNode], edges: Iterable[FlowEdge]) -> FlowGraph:  # noqa: D401
    """Return the :class:`FlowGraph` of *nodes* / *edges*.

    Raises GraphIntegrityError for duplicate node ids or edges naming a node
    that is not in *nodes*.
    """
    dependents: Adjacency = {}
    dependencies: Adjacency = {}
    counts: Dict[str, int] = {}

    for node in nodes:
        if node.id in dependents:
            raise GraphIntegrityError(f"Duplicate node id '{node.id}'")
        dependents[node.id] = []
        dependencies[node.id] = []
        counts[node.id] = 0

    for edge in edges:
        for end in (edge.source, edge.target):
            if end not in dependents:
                raise GraphIntegrityError(
                    f"Edge {edge.id or f'{edge.source}->{edge.target}'} references unknown node '{end}'"
                )
        if edge.target not in dependents[edge.source]:
            dependents[edge.source].append(edge.target)
        if edge.source not in dependencies[edge.target]:
            dependencies[edge.target].append(edge.source)
        counts[edge.target] += 1

    return FlowGraph(dependents=dependents, dependencies=dependencies, dependency_counts=counts)


def get_ending_nodes(graph: FlowGraph) -> List[str]:  # noqa: D401
    """Return ids of nodes nobody consumes but which consume something.

    A flow made of one node has that node as its ending node.
    """
    if len(graph.dependents) == 1:
        return graph.node_ids
    return [
        node_id
        for node_id, targets in graph.dependents.items()
        if not targets and graph.dependency_counts.get(node_id, 0) > 0
    ]


# --------------------------------------------------------------------------- #
# Resolvers
# --------------------------------------------------------------------------- #

def reachable_from(adjacency: Mapping[str, List[str]], root_id: str) -> Set[str]:  # noqa: D401
    """Return every id reachable from *root_id* (root included), BFS order agnostic."""
    if root_id not in adjacency:
        raise GraphIntegrityError(f"Node '{root_id}' is not part of the graph")
    visited: Set[str] = set()
    queue = deque([root_id])
    while queue:
        current = queue.popleft()
        if current in visited:
            continue
        visited.add(current)
        for neighbour in adjacency.get(current, []):
            if neighbour not in visited:
                queue.append(neighbour)
    return visited


def prune_graph(adjacency: Mapping[str, List[str]], keep: Set[str]) -> Adjacency:
    """Restrict *adjacency* to the ids in *keep*."""
    return {
        node_id: [n for n in neighbours if n in keep]
        for node_id, neighbours in adjacency.items()
        if node_id in keep
    }


def starting_nodes_and_depth(
    dependencies: Mapping[str, List[str]],
    target_id: str,
) -> Tuple[List[str], DepthQueue]:  # noqa: D401
    """Return ``(starting_node_ids, depth_queue)`` for *target_id*.

    Only ancestors of the target are considered.  A node without
    dependencies is a starting node (depth 0); every other node sits one
    level below its deepest dependency, so ``depth[v] > depth[u]`` holds for
    every edge ``u -> v``.
    """
    ancestors = reachable_from(dependencies, target_id)
    pruned = prune_graph(dependencies, ancestors)

    # discovery order from the target keeps results deterministic
    order: List[str] = []
    seen: Set[str] = set()
    queue = deque([target_id])
    while queue:
        current = queue.popleft()
        if current in seen:
            continue
        seen.add(current)
        order.append(current)
        queue.extend(n for n in pruned[current] if n not in seen)

    starting = [n for n in order if not pruned[n]]
    if not starting:
        raise GraphIntegrityError(
            f"No starting node found for '{target_id}': every ancestor has an unresolved dependency"
        )

    dependents: Adjacency = {n: [] for n in pruned}
    remaining: Dict[str, int] = {}
    for node_id, deps in pruned.items():
        remaining[node_id] = len(deps)
        for dep in deps:
            dependents[dep].append(node_id)

    depth_queue: DepthQueue = {}
    ready = deque(starting)
    for node_id in starting:
        depth_queue[node_id] = 0
    while ready:
        current = ready.popleft()
        for nxt in dependents[current]:
            depth_queue[nxt] = max(depth_queue.get(nxt, 0), depth_queue[current] + 1)
            remaining[nxt] -= 1
            if remaining[nxt] == 0:
                ready.append(nxt)

    unresolved = [n for n in order if remaining[n] > 0]
    if unresolved:
        raise GraphIntegrityError(f"Cycle detected among nodes: {', '.join(unresolved)}")

    return starting, {n: depth_queue[n] for n in order}


def execution_order(depth_queue: Mapping[str, int]) -> List[str]:
    """Node ids sorted by ascending depth (stable within a level)."""
    return sorted(depth_queue, key=lambda n: depth_queue[n])
