from __future__ import annotations
"""ChatOpenAI adapter backed by the official ``openai`` SDK.

The instance exposes the model contract the built-in chains expect::

    text = await model.apredict(prompt, context)

When the request context carries a token sink the completion is streamed
and each delta is forwarded through ``context.emit_token``.
"""
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import openai

from nodeflow.core.context import SharedContext
from nodeflow.core.node import InputAnchor, InputParam, NodeData, OutputAnchor

from .base import NodeAdapter

__all__ = ["OpenAIChatModel", "ChatOpenAI"]


@dataclass
class OpenAIChatModel:
    """Initialised chat model handle."""

    client: openai.AsyncOpenAI
    model: str
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    cache: Any = None  # InMemoryLLMCache-like: lookup(prompt, llm) / update(prompt, llm, text)

    @property
    def llm_string(self) -> str:
        return f"openai:{self.model}:{self.temperature}"

    async def apredict(self, prompt: str, context: Optional[SharedContext] = None) -> str:
        if self.cache is not None:
            hit = self.cache.lookup(prompt, self.llm_string)
            if hit is not None:
                return hit

        kwargs: Dict[str, Any] = {"model": self.model, "messages": [{"role": "user", "content": prompt}]}
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature
        if self.max_tokens is not None:
            kwargs["max_tokens"] = self.max_tokens

        if context is not None and context.stream is not None:
            parts: List[str] = []
            stream = await self.client.chat.completions.create(stream=True, **kwargs)
            async for chunk in stream:
                if not chunk.choices:
                    continue
                token = chunk.choices[0].delta.content or ""
                if token:
                    parts.append(token)
                    context.emit_token(token)
            text = "".join(parts)
        else:
            resp = await self.client.chat.completions.create(**kwargs)
            text = resp.choices[0].message.content or ""

        if self.cache is not None:
            self.cache.update(prompt, self.llm_string, text)
        return text


def _as_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


class ChatOpenAI(NodeAdapter):
    name = "chatOpenAI"
    label = "ChatOpenAI"
    category = "Chat Models"
    description = "Chat completion models served by the OpenAI API (or a compatible server)"
    input_params = (
        InputParam(name="modelName", label="Model Name", type="options", default="gpt-4o-mini"),
        InputParam(name="temperature", label="Temperature", type="number", optional=True, default=0.9),
        InputParam(name="maxTokens", label="Max Tokens", type="number", optional=True),
        InputParam(name="openAIApiKey", label="OpenAI Api Key", type="password", optional=True, overridable=False),
        InputParam(name="basePath", label="BasePath", optional=True),
    )
    input_anchors = (InputAnchor(name="cache", label="Cache", type="BaseCache", optional=True),)
    output_anchors = (OutputAnchor(name="chatOpenAI", label="ChatOpenAI", type="BaseChatModel"),)
    load_methods = ("list_models",)
    streaming = True

    def _client(self, node_data: NodeData) -> openai.AsyncOpenAI:
        return openai.AsyncOpenAI(
            api_key=node_data.inputs.get("openAIApiKey") or os.getenv("OPENAI_API_KEY"),
            base_url=node_data.inputs.get("basePath") or None,
        )

    async def initialize(self, node_data: NodeData, context: SharedContext) -> Any:
        max_tokens = node_data.inputs.get("maxTokens")
        return OpenAIChatModel(
            client=self._client(node_data),
            model=node_data.inputs.get("modelName") or "gpt-4o-mini",
            temperature=_as_float(node_data.inputs.get("temperature")),
            max_tokens=int(max_tokens) if max_tokens not in (None, "") else None,
            cache=node_data.inputs.get("cache"),
        )

    async def list_models(self, node_data: NodeData, context: SharedContext) -> List[Dict[str, Any]]:
        """Model names for the ``modelName`` dropdown."""
        page = await self._client(node_data).models.list()
        return [{"label": m.id, "name": m.id} for m in page.data]
