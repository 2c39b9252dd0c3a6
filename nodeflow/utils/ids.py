from __future__ import annotations

"""nodeflow.utils.ids
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Identifier helpers for chat sessions and flow files.
"""

import re
import uuid
from pathlib import Path

__all__ = ["new_chat_id", "flow_id_from_path"]

_PATTERN = re.compile(r"[^a-zA-Z0-9]+")


def new_chat_id() -> str:
    """Return a fresh chat session id (uuid4)."""
    return str(uuid.uuid4())


def flow_id_from_path(path: str | Path) -> str:  # noqa: D401
    """Return a ``snake_case`` flow id derived from a flow file name.

    * non‑alphanumeric chars become ``_``
    * multiple underscores are squeezed
    * everything lower‑cased
    """
    s = _PATTERN.sub("_", Path(path).stem)
    s = re.sub(r"_+", "_", s)
    return s.strip("_").lower() or "flow"
