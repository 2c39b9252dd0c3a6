from __future__ import annotations
"""Flow file loader (JSON or YAML export of a flow editor).

Example YAML:

```yaml
nodes:
  - id: text_0
    data: {id: text_0, name: textInput, category: Utilities, inputs: {text: hello}}
  - id: chain_0
    data:
      id: chain_0
      name: upperCaseChain
      category: Chains
      inputAnchors: [{name: input}]
edges:
  - {source: text_0, target: chain_0, targetHandle: chain_0-input-input-string}
```

Usage:
    from nodeflow.flow_loader import load_flow
    flow = load_flow("my_flow.yml")
"""
import json
from pathlib import Path
from typing import Any, Dict

import yaml
from jsonschema import validate as _js_validate

from nodeflow.core.node import FlowData

__all__ = ["load_flow", "parse_flow"]

_YAML_SUFFIXES = {".yml", ".yaml"}


def parse_flow(data: Dict[str, Any]) -> FlowData:  # noqa: D401
    """Validate *data* and return it as :class:`FlowData`."""
    _js_validate(instance=data, schema=_SCHEMA)
    return FlowData.model_validate(data)


def load_flow(path: str | Path) -> FlowData:  # noqa: D401
    """Load the flow file at *path* (``.json``, ``.yml`` or ``.yaml``)."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in _YAML_SUFFIXES:
        data = yaml.safe_load(text)
    elif path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        raise ValueError(f"Unsupported flow file type: {path.suffix or path.name}")
    return parse_flow(data or {})


# --------------------------------------------------------------------------- #
# Minimal JSON Schema for flow exports
# --------------------------------------------------------------------------- #

_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["nodes"],
    "properties": {
        "nodes": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "data"],
                "properties": {
                    "id": {"type": "string"},
                    "data": {
                        "type": "object",
                        "required": ["id", "name"],
                        "properties": {
                            "id": {"type": "string"},
                            "name": {"type": "string"},
                            "inputs": {"type": "object"},
                        },
                    },
                },
            },
        },
        "edges": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["source", "target"],
                "properties": {
                    "source": {"type": "string"},
                    "target": {"type": "string"},
                },
            },
        },
    },
}
