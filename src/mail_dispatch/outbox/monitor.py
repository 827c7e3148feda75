"""Per-case view of prepared messages, refreshed by polling."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Awaitable, Callable

from mail_dispatch.basket.cache import BasketCache
from mail_dispatch.core.errors import ValidationError
from mail_dispatch.core.interfaces import OutboxBackend
from mail_dispatch.core.models import OutgoingMessage
from mail_dispatch.core.notices import NoticeBoard
from mail_dispatch.core.scheduling import PeriodicPoller

from .lifecycle import TERMINAL_STATES, LifecycleEvent, OutgoingMessageLifecycle

LOGGER = logging.getLogger(__name__)

RETRY_FAILED = "Could not retry the message."
COMPLETE_FAILED = "Could not mark the message as completed."
CANCEL_FAILED = "Could not delete the message."

Messages = tuple[OutgoingMessage, ...]


class OutboxMonitor:
    """Holds the latest message list per case and issues lifecycle commands.

    The bridge has no channel back to the client, so ``InOutlook`` and
    ``Error`` only show up here through :meth:`refresh`. Commands are applied
    locally first and undone when the backend rejects them.
    """

    def __init__(
        self,
        backend: OutboxBackend,
        notices: NoticeBoard,
        *,
        lifecycle: OutgoingMessageLifecycle | None = None,
        basket_cache: BasketCache | None = None,
        list_limit: int = 5,
    ) -> None:
        """Wire the monitor; ``basket_cache`` is refreshed after completions."""
        self._backend = backend
        self._notices = notices
        self._lifecycle = lifecycle or OutgoingMessageLifecycle()
        self._basket_cache = basket_cache
        self._limit = list_limit
        self._messages: dict[int, Messages] = {}
        self._stamps = itertools.count(1)
        self._latest_stamp: dict[int, int] = {}
        self._inflight: dict[int, OutgoingMessage | None] = {}

    def messages(self, case_id: int) -> Messages:
        """Last known messages for a case, newest first as the server sorts them."""
        return self._messages.get(case_id, ())

    def find(self, case_id: int, message_id: int) -> OutgoingMessage | None:
        for message in self._messages.get(case_id, ()):
            if message.id == message_id:
                return message
        return None

    async def refresh(self, case_id: int) -> Messages:
        """Poll the server for the case's messages.

        Raises whatever the backend raises, leaving the previous list in place.
        A response overtaken by a later refresh is dropped.
        """
        stamp = next(self._stamps)
        fetched = await self._backend.list_messages(case_id, self._limit)
        if stamp < self._latest_stamp.get(case_id, 0):
            LOGGER.debug("Dropping stale message list for case %s", case_id)
            return self.messages(case_id)
        self._latest_stamp[case_id] = stamp

        previous = {message.id: message for message in self.messages(case_id)}
        observed: list[OutgoingMessage] = []
        for snapshot in fetched:
            if snapshot.id in self._inflight:
                pending = self._inflight[snapshot.id]
                if pending is not None:
                    observed.append(pending)
                continue
            observed.append(
                self._lifecycle.observe(previous.get(snapshot.id), snapshot)
            )
        self._messages[case_id] = tuple(observed)
        return self._messages[case_id]

    def track(self, message: OutgoingMessage) -> None:
        """Add a freshly created message ahead of the known list."""
        existing = tuple(m for m in self.messages(message.case_id) if m.id != message.id)
        self._messages[message.case_id] = (message,) + existing

    def poller(self, case_id: int, interval_seconds: float) -> PeriodicPoller:
        """Return a poller that refreshes ``case_id`` every ``interval_seconds``."""
        return PeriodicPoller(
            f"outbox-{case_id}", interval_seconds, lambda: self.refresh(case_id)
        )

    async def retry(self, case_id: int, message_id: int) -> bool:
        """Send a message back to ``Draft`` for another bridge pickup."""
        return await self._command(
            case_id,
            message_id,
            LifecycleEvent.RETRY,
            self._backend.retry_message,
            RETRY_FAILED,
        )

    async def complete(self, case_id: int, message_id: int) -> bool:
        """Mark a message handled; the basket is refreshed afterwards."""
        done = await self._command(
            case_id,
            message_id,
            LifecycleEvent.COMPLETE,
            self._backend.complete_message,
            COMPLETE_FAILED,
        )
        if done and self._basket_cache is not None:
            try:
                await self._basket_cache.refresh(case_id)
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.warning("Basket refresh for case %s failed: %s", case_id, exc)
        return done

    async def cancel(self, case_id: int, message_id: int) -> bool:
        """Delete a handoff.

        A compose window the bridge already opened stays open; cancelling only
        removes the record.
        """
        message = self._require(case_id, message_id)
        before = self.messages(case_id)
        position = before.index(message)
        self._messages[case_id] = tuple(m for m in before if m.id != message_id)
        self._inflight[message_id] = None
        try:
            await self._backend.delete_message(message_id)
        except Exception as exc:  # pylint: disable=broad-except
            self._inflight.pop(message_id, None)
            remaining = list(self.messages(case_id))
            remaining.insert(min(position, len(remaining)), message)
            self._messages[case_id] = tuple(remaining)
            self._notices.failure(exc, CANCEL_FAILED)
            return False
        self._inflight.pop(message_id, None)
        LOGGER.info("Cancelled message %s of case %s", message_id, case_id)
        await self._quiet_refresh(case_id)
        return True

    async def _command(
        self,
        case_id: int,
        message_id: int,
        event: LifecycleEvent,
        call: Callable[[int], Awaitable[None]],
        failure_text: str,
    ) -> bool:
        message = self._require(case_id, message_id)
        updated = self._lifecycle.apply(message, event)
        self._replace(case_id, updated)
        self._inflight[message_id] = updated
        try:
            await call(message_id)
        except Exception as exc:  # pylint: disable=broad-except
            self._inflight.pop(message_id, None)
            self._restore(case_id, message)
            self._notices.failure(exc, failure_text)
            return False
        self._inflight.pop(message_id, None)
        LOGGER.info("Message %s: %s accepted", message_id, event)
        await self._quiet_refresh(case_id)
        return True

    def _require(self, case_id: int, message_id: int) -> OutgoingMessage:
        message = self.find(case_id, message_id)
        if message is None:
            raise ValidationError(f"Message {message_id} is not listed for case {case_id}")
        if message_id in self._inflight:
            raise ValidationError(f"Message {message_id} has a command in progress")
        return message

    def _replace(self, case_id: int, message: OutgoingMessage) -> None:
        self._messages[case_id] = tuple(
            message if m.id == message.id else m for m in self.messages(case_id)
        )

    def _restore(self, case_id: int, message: OutgoingMessage) -> None:
        if self.find(case_id, message.id) is not None:
            self._replace(case_id, message)
        else:
            self.track(message)

    async def _quiet_refresh(self, case_id: int) -> None:
        try:
            await self.refresh(case_id)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.warning("Message list refresh for case %s failed: %s", case_id, exc)

    @staticmethod
    def open_messages(messages: Messages) -> Messages:
        """Messages that still need attention, i.e. not yet ``Completed``."""
        return tuple(m for m in messages if m.status not in TERMINAL_STATES)


__all__ = ["OutboxMonitor"]
