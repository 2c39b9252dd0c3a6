from __future__ import annotations
"""Ultra-lightweight pub/sub **EventBus** for build progress.

Example
-------
```python
from nodeflow.utils.events import subscribe, publish, NodeInitStarted

@subscribe(NodeInitStarted)
def _on_init(evt: NodeInitStarted):
    print(f"initialising {evt.node_id} at depth {evt.depth}")
```
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Type, TypeVar

__all__ = [
    "Event",
    "NodeInitStarted",
    "NodeInitFinished",
    "NodeInitFailed",
    "FlowBuilt",
    "FlowReused",
    "FlowUpserted",
    "subscribe",
    "unsubscribe",
    "publish",
    "clear",
]

T = TypeVar("T", bound="Event")
_Handler = Callable[[Any], None]
_REGISTRY: Dict[Type["Event"], List[_Handler]] = {}


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, kw_only=True)
class Event:  # noqa: D101 – base event
    ts: datetime = field(default_factory=_now)


# --------------------------------------------------------------------------- #
# Concrete events
# --------------------------------------------------------------------------- #
@dataclass(slots=True)
class NodeInitStarted(Event):
    flow_id: str
    node_id: str
    depth: int


@dataclass(slots=True)
class NodeInitFinished(Event):
    flow_id: str
    node_id: str
    depth: int
    upserted: bool = False


@dataclass(slots=True)
class NodeInitFailed(Event):
    flow_id: str
    node_id: str
    error: str


@dataclass(slots=True)
class FlowBuilt(Event):
    flow_id: str
    ending_node_id: str
    node_count: int


@dataclass(slots=True)
class FlowReused(Event):
    flow_id: str
    ending_node_id: str


@dataclass(slots=True)
class FlowUpserted(Event):
    flow_id: str
    stop_node_id: str


# --------------------------------------------------------------------------- #
# API helpers
# --------------------------------------------------------------------------- #

def subscribe(event_type: Type[T]):  # noqa: D401
    """Decorator: register *func* to receive *event_type* events."""

    def _decorator(func: _Handler) -> _Handler:
        _REGISTRY.setdefault(event_type, []).append(func)
        return func

    return _decorator


def unsubscribe(event_type: Type[T], func: _Handler) -> None:
    handlers = _REGISTRY.get(event_type, [])
    if func in handlers:
        handlers.remove(func)


def clear() -> None:
    _REGISTRY.clear()


def publish(evt: Event) -> None:  # noqa: D401
    """Publish an event to all registered subscribers."""
    for func in list(_REGISTRY.get(type(evt), [])):
        try:
            func(evt)
        except Exception as e:  # noqa: BLE001
            # Failure to handle an event must never crash a build.
            from nodeflow.utils.logging import log

            log.warning("event handler %s failed: %s", getattr(func, "__name__", func), e)
