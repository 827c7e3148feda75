"""User-visible notices raised by coordinator components."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from .datetime_utils import utc_now
from .errors import GENERIC_FAILURE, user_message

LOGGER = logging.getLogger(__name__)


class NoticeLevel(StrEnum):
    """Severity of a notice."""

    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Notice:
    """A message meant for the person operating the coordinator."""

    level: NoticeLevel
    text: str
    created_at: datetime


NoticeListener = Callable[[Notice], None]


class NoticeBoard:
    """Bounded history of notices with optional listeners."""

    def __init__(self, max_notices: int = 50) -> None:
        """Initialise an empty board keeping at most ``max_notices``."""
        self._notices: deque[Notice] = deque(maxlen=max_notices)
        self._listeners: list[NoticeListener] = []

    def subscribe(self, listener: NoticeListener) -> None:
        """Call ``listener`` for every notice posted from now on."""
        self._listeners.append(listener)

    def post(self, level: NoticeLevel, text: str) -> Notice:
        """Record a notice and fan it out to listeners."""
        notice = Notice(level=level, text=text, created_at=utc_now())
        self._notices.append(notice)
        for listener in self._listeners:
            listener(notice)
        return notice

    def info(self, text: str) -> Notice:
        return self.post(NoticeLevel.INFO, text)

    def success(self, text: str) -> Notice:
        return self.post(NoticeLevel.SUCCESS, text)

    def error(self, text: str) -> Notice:
        return self.post(NoticeLevel.ERROR, text)

    def failure(self, exc: BaseException, fallback: str = GENERIC_FAILURE) -> Notice:
        """Post an error notice for ``exc`` using its user-facing text."""
        LOGGER.warning("%s (%s)", fallback, exc)
        return self.error(user_message(exc, fallback))

    @property
    def notices(self) -> tuple[Notice, ...]:
        """Notices in posting order, oldest first."""
        return tuple(self._notices)

    @property
    def latest(self) -> Notice | None:
        return self._notices[-1] if self._notices else None

    def errors(self) -> tuple[Notice, ...]:
        """Only the error notices."""
        return tuple(n for n in self._notices if n.level is NoticeLevel.ERROR)

    def clear(self) -> None:
        self._notices.clear()


__all__ = ["Notice", "NoticeBoard", "NoticeLevel"]
