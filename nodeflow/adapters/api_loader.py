from __future__ import annotations
"""API Loader – turns an HTTP response into a document (``httpx``)."""
import json
from typing import Any, Dict

import httpx

from nodeflow.core.context import SharedContext
from nodeflow.core.node import InputParam, NodeData, OutputAnchor

from .base import NodeAdapter
from .builtin import Document

__all__ = ["APILoader"]

_TIMEOUT = 30.0


def _as_dict(value: Any) -> Dict[str, Any]:
    if not value:
        return {}
    if isinstance(value, dict):
        return dict(value)
    return json.loads(value)


class APILoader(NodeAdapter):
    name = "apiLoader"
    label = "API Loader"
    category = "Document Loaders"
    description = "Load data from an API endpoint"
    input_params = (
        InputParam(name="method", label="Method", type="options", default="GET"),
        InputParam(name="url", label="URL"),
        InputParam(name="headers", label="Headers", type="json", optional=True),
        InputParam(name="body", label="Body", type="json", optional=True),
    )
    output_anchors = (OutputAnchor(name="apiLoader", label="Document", type="Document"),)

    async def initialize(self, node_data: NodeData, context: SharedContext) -> Any:
        method = (node_data.inputs.get("method") or "GET").upper()
        url = node_data.inputs["url"]
        headers = _as_dict(node_data.inputs.get("headers"))
        body = _as_dict(node_data.inputs.get("body")) if method == "POST" else None

        async with httpx.AsyncClient(timeout=_TIMEOUT) as client:
            resp = await client.request(method, url, headers=headers, json=body)
            resp.raise_for_status()

        content_type = resp.headers.get("content-type", "")
        text = json.dumps(resp.json()) if "json" in content_type else resp.text
        context.logger.debug("Loaded %d chars from %s", len(text), url)
        return [Document(page_content=text, metadata={"source": url, "status": resp.status_code})]
