from __future__ import annotations
"""Exception taxonomy for graph construction, execution and reuse.

Construction errors (``GraphIntegrityError``, ``NoEndingNodeError``,
``InvalidEndingNodeError``) are raised before any adapter is touched.
Adapter errors carry the failing node id and label so callers can report
which part of the flow broke.
"""
from typing import Optional

__all__ = [
    "NodeflowError",
    "GraphIntegrityError",
    "MissingInputError",
    "NoEndingNodeError",
    "InvalidEndingNodeError",
    "AmbiguousEndingNodeError",
    "UnknownAdapterError",
    "AdapterError",
    "AdapterInitError",
    "AdapterRunError",
    "OverrideConfigMismatchError",
]


class NodeflowError(Exception):
    """Base class for every error raised by nodeflow."""


class GraphIntegrityError(NodeflowError):
    """Edge references an unknown node, or no acyclic starting set exists."""


class MissingInputError(GraphIntegrityError):
    """A required input slot has neither a literal, an override nor a reference."""

    def __init__(self, node_id: str, label: str, missing: list[str]):
        self.node_id = node_id
        self.label = label
        self.missing = list(missing)
        super().__init__(
            f"Node {label} ({node_id}) is missing required input(s): {', '.join(self.missing)}"
        )


class NoEndingNodeError(NodeflowError):
    """The flow has no terminal node of an accepted category."""


class InvalidEndingNodeError(NodeflowError):
    """The terminal node cannot be used to answer the request."""


class AmbiguousEndingNodeError(InvalidEndingNodeError):
    """Several terminal candidates exist and no stop node was supplied."""

    def __init__(self, candidates: list[str]):
        self.candidates = list(candidates)
        super().__init__(
            f"Flow has {len(self.candidates)} ending nodes ({', '.join(self.candidates)}); "
            "provide stop_node_id to pick one"
        )


class UnknownAdapterError(NodeflowError, KeyError):
    """No adapter is registered under the requested node type."""

    def __str__(self) -> str:  # KeyError quotes its message otherwise
        return str(self.args[0]) if self.args else ""


class AdapterError(NodeflowError):
    """An adapter failed; wraps the original exception as ``__cause__``."""

    action = "running"

    def __init__(self, node_id: str, label: str, reason: Optional[str] = None):
        self.node_id = node_id
        self.label = label
        self.reason = reason or ""
        msg = f"Error {self.action} {label} ({node_id})"
        if self.reason:
            msg = f"{msg}: {self.reason}"
        super().__init__(msg)


class AdapterInitError(AdapterError):
    action = "initializing"


class AdapterRunError(AdapterError):
    action = "running"


class OverrideConfigMismatchError(NodeflowError):
    """Stored and incoming override configurations differ (non-fatal)."""
