"""Mail basket: grouping, caching and optimistic edits."""

from .cache import BasketCache
from .editor import BasketEditor
from .grouping import UNASSIGNED_NAME, clipboard_text, export_text, group_items
from .reassignment import MoveOutcome, ReassignmentCoordinator

__all__ = [
    "BasketCache",
    "BasketEditor",
    "MoveOutcome",
    "ReassignmentCoordinator",
    "UNASSIGNED_NAME",
    "clipboard_text",
    "export_text",
    "group_items",
]
