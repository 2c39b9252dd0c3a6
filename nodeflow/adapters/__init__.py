"""Node adapters: the capability contract, the registry and built-in adapters."""

from .base import NodeAdapter
from .registry import AdapterRegistry, default_registry

__all__ = [
    "NodeAdapter",
    "AdapterRegistry",
    "default_registry",
]
