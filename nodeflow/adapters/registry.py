from __future__ import annotations

"""Adapter registry: node type identifier -> adapter implementation.

Resolution is a plain dictionary lookup; adapters are registered at start
up, never imported by name at request time.

    registry = AdapterRegistry()

    @registry.register
    class MyChain(NodeAdapter):
        name = "myChain"
        ...
"""

from typing import Dict, ItemsView, List, Type

from nodeflow.core.errors import UnknownAdapterError

from .base import NodeAdapter

__all__ = ["AdapterRegistry", "default_registry"]


class AdapterRegistry:  # noqa: D101
    def __init__(self):
        self._adapters: Dict[str, NodeAdapter] = {}

    # -------------------------------------------------- #
    def register(self, adapter_cls: Type[NodeAdapter]) -> Type[NodeAdapter]:
        """Register *adapter_cls* under its ``name``; usable as a decorator."""
        name = getattr(adapter_cls, "name", None)
        if not name:
            raise ValueError(f"Adapter {adapter_cls.__name__} must define a non-empty 'name'")
        self._adapters[name] = adapter_cls()
        return adapter_cls

    def get(self, name: str) -> NodeAdapter:
        if name not in self._adapters:
            raise UnknownAdapterError(f"Adapter '{name}' is not registered.")
        return self._adapters[name]

    def names(self) -> List[str]:
        return sorted(self._adapters)

    def items(self) -> ItemsView[str, NodeAdapter]:
        return self._adapters.items()

    def __contains__(self, name: object) -> bool:
        return name in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)


def default_registry() -> AdapterRegistry:
    """Return a fresh registry holding the built-in adapters."""
    from . import api_loader, builtin, openai_chat  # noqa: WPS433 – avoid import cycle

    registry = AdapterRegistry()
    for adapter_cls in (*builtin.BUILTIN_ADAPTERS, openai_chat.ChatOpenAI, api_loader.APILoader):
        registry.register(adapter_cls)
    return registry
