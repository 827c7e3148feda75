"""Outbox: message lifecycle, monitoring and preparation."""

from .lifecycle import (
    TERMINAL_STATES,
    LifecycleError,
    LifecycleEvent,
    OutgoingMessageLifecycle,
)
from .monitor import OutboxMonitor
from .preparation import (
    MailPreparationWorkflow,
    filter_templates,
    resolve_sending_account,
)

__all__ = [
    "LifecycleError",
    "LifecycleEvent",
    "MailPreparationWorkflow",
    "OutboxMonitor",
    "OutgoingMessageLifecycle",
    "TERMINAL_STATES",
    "filter_templates",
    "resolve_sending_account",
]
