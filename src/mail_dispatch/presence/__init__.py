"""Bridge agent presence and sending accounts."""

from .accounts import AccountDirectory
from .tracker import DEFAULT_ONLINE_WINDOW, BridgePresenceTracker, is_online

__all__ = [
    "AccountDirectory",
    "BridgePresenceTracker",
    "DEFAULT_ONLINE_WINDOW",
    "is_online",
]
