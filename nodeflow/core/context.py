from __future__ import annotations
"""Shared execution context passed by reference into every adapter call."""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .cache_pool import CachePool
from .node import ChatMessage

__all__ = ["SharedContext"]


@dataclass
class SharedContext:  # noqa: D101 – owned by one request / traversal
    flow_id: str
    chat_id: str
    question: str = ""
    history: List[ChatMessage] = field(default_factory=list)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("nodeflow.adapters"))
    app_data_source: Any = None  # opaque database handle owned by the caller
    analytic: Optional[Dict[str, Any]] = None
    uploads: List[Dict[str, Any]] = field(default_factory=list)
    stream: Optional[Callable[[str], Any]] = None  # token sink for streaming adapters
    cache_pool: CachePool = field(default_factory=CachePool)
    is_upsert: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    # -------------------------------------------------- #
    def emit_token(self, token: str) -> None:
        """Forward *token* to the transport handle when one is attached."""
        if self.stream is not None:
            self.stream(token)
