from __future__ import annotations
"""Rich console logging for nodeflow.

Plain log records go through a :class:`rich.logging.RichHandler` attached to
the ``nodeflow`` logger; build events are echoed as debug lines so a
``--verbose`` CLI run shows the traversal as it happens.
"""
from logging import DEBUG, ERROR, INFO, WARNING, Logger, getLogger
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

from nodeflow.utils.events import (
    FlowBuilt,
    FlowReused,
    FlowUpserted,
    NodeInitFailed,
    NodeInitFinished,
    subscribe,
)

console = Console()

__all__ = [
    "console",
    "log",
    "get",
    "setup",
    "show_dag_tree",
]

_LEVEL_MAP = {
    "info": INFO,
    "debug": DEBUG,
    "warning": WARNING,
    "error": ERROR,
}

log: Logger = getLogger("nodeflow")


def setup(level: str = "info") -> Logger:  # noqa: D401
    """Attach the Rich handler once and set *level* on the ``nodeflow`` logger."""
    if not any(isinstance(h, RichHandler) for h in log.handlers):
        log.addHandler(RichHandler(console=console, rich_tracebacks=True, markup=False, show_path=False))
    return get(level)


def get(level: str = "info") -> Logger:  # noqa: D401
    """Return the ``nodeflow`` logger with *level* (str)."""
    lvl = _LEVEL_MAP.get(level.lower(), INFO)
    log.setLevel(lvl)
    return log


# --------------------------------------------------------------------------- #
# Event subscribers
# --------------------------------------------------------------------------- #
@subscribe(NodeInitFinished)
def _on_node_finished(evt: NodeInitFinished):  # noqa: D401 – event hook
    action = "upserted" if evt.upserted else "initialized"
    log.debug("[%s] %s %s (depth %d)", evt.flow_id, action, evt.node_id, evt.depth)


@subscribe(NodeInitFailed)
def _on_node_failed(evt: NodeInitFailed):  # noqa: D401 – event hook
    log.error("[%s] %s failed: %s", evt.flow_id, evt.node_id, evt.error)


@subscribe(FlowBuilt)
def _on_flow_built(evt: FlowBuilt):  # noqa: D401 – event hook
    log.debug("[%s] built %d node(s), ending at %s", evt.flow_id, evt.node_count, evt.ending_node_id)


@subscribe(FlowReused)
def _on_flow_reused(evt: FlowReused):  # noqa: D401 – event hook
    log.debug("[%s] reused compiled flow ending at %s", evt.flow_id, evt.ending_node_id)


@subscribe(FlowUpserted)
def _on_flow_upserted(evt: FlowUpserted):  # noqa: D401 – event hook
    log.debug("[%s] upserted through %s", evt.flow_id, evt.stop_node_id)


# --------------------------------------------------------------------------- #
# Public helpers
# --------------------------------------------------------------------------- #

def show_dag_tree(flow: Any, **kw):  # noqa: D401
    """Render the depth tree of *flow* (see :func:`nodeflow.utils.dag.build_rich_tree`)."""
    from nodeflow.utils.dag import build_rich_tree

    console.print(build_rich_tree(flow, **kw))
