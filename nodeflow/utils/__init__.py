"""nodeflow utilities."""

from .ids import flow_id_from_path, new_chat_id

__all__ = [
    "new_chat_id",
    "flow_id_from_path",
]
