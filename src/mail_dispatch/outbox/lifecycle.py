"""State machine for handoffs waiting on a bridge agent.

::

    create ──> Draft ──bridge_ack──> InOutlook ──complete──> Completed
                 ^                      │
                 └───────retry──────────┤
                 ^                      └──fail(reason)──> Error
                 └───────retry─────────────────────────────┘

``Completed`` and ``Error`` are only reachable through ``InOutlook``: the
bridge has to pick a message up before success or failure means anything.
``bridge_ack`` and ``fail`` happen inside the bridge process; the client only
sees them when it polls the message list.
"""

from __future__ import annotations

import dataclasses
import logging
from collections import deque
from enum import StrEnum

from mail_dispatch.core.errors import ValidationError
from mail_dispatch.core.models import DraftRequest, MessageStatus, OutgoingMessage

LOGGER = logging.getLogger(__name__)


class LifecycleError(ValidationError):
    """Raised when an event is not allowed in a message's current state."""


class LifecycleEvent(StrEnum):
    """Events that move a message between states."""

    BRIDGE_ACK = "bridge_ack"
    RETRY = "retry"
    COMPLETE = "complete"
    FAIL = "fail"


TRANSITIONS: dict[tuple[MessageStatus, LifecycleEvent], MessageStatus] = {
    (MessageStatus.DRAFT, LifecycleEvent.BRIDGE_ACK): MessageStatus.IN_OUTLOOK,
    (MessageStatus.IN_OUTLOOK, LifecycleEvent.RETRY): MessageStatus.DRAFT,
    (MessageStatus.ERROR, LifecycleEvent.RETRY): MessageStatus.DRAFT,
    (MessageStatus.IN_OUTLOOK, LifecycleEvent.COMPLETE): MessageStatus.COMPLETED,
    (MessageStatus.IN_OUTLOOK, LifecycleEvent.FAIL): MessageStatus.ERROR,
}

TERMINAL_STATES = frozenset({MessageStatus.COMPLETED})


def _successors(status: MessageStatus) -> set[MessageStatus]:
    return {target for (source, _), target in TRANSITIONS.items() if source is status}


class OutgoingMessageLifecycle:
    """Validates and applies lifecycle events to :class:`OutgoingMessage`.

    Transitions never mutate their input; they return an updated copy.
    """

    def create(self, message_id: int, request: DraftRequest) -> OutgoingMessage:
        """Return a new handoff in ``Draft``."""
        return OutgoingMessage(
            id=message_id,
            case_id=request.case_id,
            source_id=request.source_id,
            recipient=request.recipient,
            subject=request.subject,
            body_html=request.body_html,
            account_id=request.account_id,
            status=MessageStatus.DRAFT,
        )

    def can(self, message: OutgoingMessage, event: LifecycleEvent) -> bool:
        """Whether ``event`` is allowed in the message's current state."""
        return (message.status, event) in TRANSITIONS

    def apply(
        self,
        message: OutgoingMessage,
        event: LifecycleEvent,
        *,
        reason: str | None = None,
    ) -> OutgoingMessage:
        """Return ``message`` after ``event``.

        Raises:
            LifecycleError: The event is not allowed from the current state,
                or a failure was reported without a reason.
        """
        target = TRANSITIONS.get((message.status, event))
        if target is None:
            raise LifecycleError(
                f"Cannot {event.value.replace('_', ' ')} a message that is "
                f"{message.status.value}"
            )
        error_message = message.error_message
        if event is LifecycleEvent.FAIL:
            if not reason or not reason.strip():
                raise LifecycleError("A failure needs a reason")
            error_message = reason.strip()
        elif event is LifecycleEvent.RETRY:
            error_message = None
        LOGGER.debug(
            "Message %s: %s -%s-> %s", message.id, message.status, event, target
        )
        return dataclasses.replace(message, status=target, error_message=error_message)

    def bridge_ack(self, message: OutgoingMessage) -> OutgoingMessage:
        return self.apply(message, LifecycleEvent.BRIDGE_ACK)

    def retry(self, message: OutgoingMessage) -> OutgoingMessage:
        return self.apply(message, LifecycleEvent.RETRY)

    def complete(self, message: OutgoingMessage) -> OutgoingMessage:
        return self.apply(message, LifecycleEvent.COMPLETE)

    def fail(self, message: OutgoingMessage, reason: str) -> OutgoingMessage:
        return self.apply(message, LifecycleEvent.FAIL, reason=reason)

    def reachable(self, source: MessageStatus, target: MessageStatus) -> bool:
        """Whether ``target`` can follow ``source`` through zero or more events."""
        seen = {source}
        queue = deque([source])
        while queue:
            status = queue.popleft()
            if status is target:
                return True
            for successor in _successors(status) - seen:
                seen.add(successor)
                queue.append(successor)
        return False

    def observe(
        self, previous: OutgoingMessage | None, snapshot: OutgoingMessage
    ) -> OutgoingMessage:
        """Reconcile a server snapshot with the last observed state.

        Polling can skip intermediate states, so any reachable status is
        accepted as is. An unreachable one is still taken, because the server
        is authoritative, but is logged.
        """
        if previous is not None and not self.reachable(
            previous.status, snapshot.status
        ):
            LOGGER.warning(
                "Message %s jumped from %s to %s, which no event allows",
                snapshot.id,
                previous.status,
                snapshot.status,
            )
        return snapshot


__all__ = [
    "LifecycleError",
    "LifecycleEvent",
    "OutgoingMessageLifecycle",
    "TERMINAL_STATES",
    "TRANSITIONS",
]
