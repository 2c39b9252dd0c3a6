from __future__ import annotations
"""CachePool – generic keyed store handed to adapters via the shared context.

No flow knowledge and no eviction: callers own the lifecycle of what they
put in.  The ``*_llm_cache`` / ``*_embedding_cache`` helpers namespace keys
per flow for model response caches.
"""
from typing import Any, Dict, Hashable, Iterator

__all__ = ["CachePool"]

_LLM_NS = "llm"
_EMBEDDING_NS = "embedding"


class CachePool:  # noqa: D101
    def __init__(self):
        self._store: Dict[Hashable, Any] = {}

    # -------------------------------------------------- #
    def get(self, key: Hashable, default: Any = None) -> Any:
        return self._store.get(key, default)

    def set(self, key: Hashable, value: Any) -> None:
        self._store[key] = value

    def setdefault(self, key: Hashable, default: Any) -> Any:
        return self._store.setdefault(key, default)

    def delete(self, key: Hashable) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._store

    def __len__(self) -> int:
        return len(self._store)

    def __iter__(self) -> Iterator[Hashable]:
        return iter(list(self._store))

    # -------------------------------------------------- #
    # Namespaced helpers
    # -------------------------------------------------- #
    def add_llm_cache(self, flow_id: str, value: Any) -> None:
        self.set((_LLM_NS, flow_id), value)

    def get_llm_cache(self, flow_id: str) -> Any:
        return self.get((_LLM_NS, flow_id))

    def add_embedding_cache(self, flow_id: str, value: Any) -> None:
        self.set((_EMBEDDING_NS, flow_id), value)

    def get_embedding_cache(self, flow_id: str) -> Any:
        return self.get((_EMBEDDING_NS, flow_id))
