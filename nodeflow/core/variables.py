from __future__ import annotations

"""Placeholder substitution and override handling for node inputs.

Placeholders use double curly brackets:

* ``{{question}}`` / ``{{chat_history}}`` – live request values, only inside
  inputs declared with ``accept_variable``.
* ``{{<nodeId>.data.instance}}`` – output produced by another node.

Everything here is pure: no adapter or network calls, so the terminal node
can be re-resolved on every request even when the rest of the graph is
reused.
"""

import copy
import json
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .node import ChatMessage, FlowNode, NodeData

__all__ = [
    "QUESTION_VAR",
    "CHAT_HISTORY_VAR",
    "find_placeholders",
    "get_variable_value",
    "resolve_variables",
    "replace_inputs_with_config",
    "convert_chat_history_to_text",
    "get_input_variables",
    "depends_on_live_input",
]

QUESTION_VAR = "question"
CHAT_HISTORY_VAR = "chat_history"

_PLACEHOLDER = re.compile(r"\{\{([^{}]+)\}\}")
_PROMPT_VAR = re.compile(r"(?<![{\\])\{([^{}:\\]+)\}(?!\})")

ResolvedNodes = Union[Mapping[str, FlowNode], Iterable[FlowNode]]
History = Sequence[Union[ChatMessage, Mapping[str, Any]]]


def _as_map(nodes: ResolvedNodes) -> Dict[str, FlowNode]:
    if isinstance(nodes, Mapping):
        return dict(nodes)
    return {n.id: n for n in nodes}


def find_placeholders(value: Any) -> List[str]:  # noqa: D401
    """Return the stripped paths of every ``{{...}}`` span in *value*."""
    if not isinstance(value, str):
        return []
    return [m.group(1).strip() for m in _PLACEHOLDER.finditer(value)]


def convert_chat_history_to_text(history: Optional[History]) -> str:
    """Render *history* as ``Human:`` / ``Assistant:`` lines."""
    lines: List[str] = []
    for msg in history or []:
        role = msg.role if isinstance(msg, ChatMessage) else msg.get("role", msg.get("type"))
        content = msg.content if isinstance(msg, ChatMessage) else msg.get("content", msg.get("message", ""))
        if role == "apiMessage":
            lines.append(f"Assistant: {content}")
        elif role == "userMessage":
            lines.append(f"Human: {content}")
    return "\n".join(lines)


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


# --------------------------------------------------------------------------- #
# Resolution
# --------------------------------------------------------------------------- #

def get_variable_value(
    value: Any,
    resolved_nodes: ResolvedNodes,
    question: str,
    history: Optional[History] = None,
    accept_variable: bool = False,
) -> Any:  # noqa: D401
    """Substitute placeholders in *value*.

    Without *accept_variable* a node reference replaces the whole value with
    the referenced instance (object substitution).  With it, every span is
    replaced inside the string.  References to nodes absent from
    *resolved_nodes* are left untouched.
    """
    if not isinstance(value, str):
        return value

    nodes = _as_map(resolved_nodes)
    substitutions: Dict[str, Any] = {}
    result: Any = value

    for match in _PLACEHOLDER.finditer(value):
        span, path = match.group(0), match.group(1).strip()
        if accept_variable and path == QUESTION_VAR:
            substitutions[span] = question
            continue
        if accept_variable and path == CHAT_HISTORY_VAR:
            substitutions[span] = convert_chat_history_to_text(history)
            continue

        node = nodes.get(path.split(".", 1)[0])
        if node is None:
            continue
        if accept_variable:
            substitutions[span] = node.data.instance
        else:
            result = node.data.instance

    if not accept_variable:
        return result

    text = value
    for span in sorted(substitutions, key=len, reverse=True):
        text = text.replace(span, _stringify(substitutions[span]))
    return text


def resolve_variables(
    node_data: NodeData,
    resolved_nodes: ResolvedNodes,
    question: str,
    history: Optional[History] = None,
) -> NodeData:  # noqa: D401
    """Return a copy of *node_data* with every input placeholder resolved."""
    nodes = _as_map(resolved_nodes)
    inputs: Dict[str, Any] = {}
    for key, value in node_data.inputs.items():
        if isinstance(value, list):
            inputs[key] = [get_variable_value(v, nodes, question, history) for v in value]
            continue
        param = node_data.get_input_param(key)
        accept = param.accept_variable if param is not None else False
        resolved = get_variable_value(value, nodes, question, history, accept_variable=accept)
        if resolved is value and isinstance(value, dict):
            resolved = copy.deepcopy(value)
        inputs[key] = resolved
    return node_data.model_copy(update={"inputs": inputs})


def replace_inputs_with_config(node_data: NodeData, override_config: Optional[Mapping[str, Any]]) -> NodeData:
    """Return a copy of *node_data* with request overrides applied.

    Only input params declared ``overridable`` are touched.  A dict value is
    scoped per node id::

        {"systemMessage": {"chain_0": "You are terse"}}

    applies to ``chain_0`` only; other nodes of the same type keep their
    stored value.
    """
    if not override_config:
        return node_data.model_copy()

    eligible = node_data.overridable_inputs()
    inputs = dict(node_data.inputs)
    for key, value in override_config.items():
        if key not in eligible or value is None:
            continue
        if isinstance(value, dict) and value:
            if node_data.id in value:
                inputs[key] = value[node_data.id]
                continue
            if any(node_data.name in scoped for scoped in value):
                continue
        if value == "true":
            value = True
        elif value == "false":
            value = False
        inputs[key] = value
    return node_data.model_copy(update={"inputs": inputs})


# --------------------------------------------------------------------------- #
# Live-input detection
# --------------------------------------------------------------------------- #

def get_input_variables(text: Any) -> List[str]:  # noqa: D401
    """Return single-brace prompt variables (``{name}``) found in *text*."""
    if not isinstance(text, str):
        return []
    return [m.group(1).strip() for m in _PROMPT_VAR.finditer(text)]


def depends_on_live_input(node_data: NodeData) -> bool:
    """True when any input reads the question, the history or a prompt variable."""
    for value in node_data.inputs.values():
        values = value if isinstance(value, list) else [value]
        for v in values:
            if get_input_variables(v):
                return True
            if any(p in (QUESTION_VAR, CHAT_HISTORY_VAR) for p in find_placeholders(v)):
                return True
    return False
