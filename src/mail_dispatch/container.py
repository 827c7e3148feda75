"""Service container wiring the coordinators from application settings."""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
from typing import Any, TypeVar

from mail_dispatch.basket import BasketCache, BasketEditor, ReassignmentCoordinator
from mail_dispatch.core.config import AppSettings
from mail_dispatch.core.interfaces import (
    BasketBackend,
    OutboxBackend,
    PresenceBackend,
    ReferenceBackend,
    TemplateRenderer,
)
from mail_dispatch.core.models import CaseInfo
from mail_dispatch.core.notices import NoticeBoard
from mail_dispatch.core.scheduling import PeriodicPoller
from mail_dispatch.outbox import MailPreparationWorkflow, OutboxMonitor
from mail_dispatch.presence import AccountDirectory, BridgePresenceTracker

T = TypeVar("T")


class ServiceContainer:
    """Minimal dependency container with lazy singleton semantics."""

    def __init__(self) -> None:
        """Initialise container storage."""
        self._factories: dict[str, Callable[[ServiceContainer], Any]] = {}
        self._instances: dict[str, Any] = {}

    def register(self, key: str, factory: Callable[[ServiceContainer], T]) -> None:
        """Register a factory under a given key."""
        self._factories[key] = factory

    def resolve(self, key: str) -> Any:
        """Resolve a dependency by key, invoking its factory once."""
        if key in self._instances:
            return self._instances[key]
        if key not in self._factories:
            msg = f"Service '{key}' is not registered"
            raise KeyError(msg)
        instance = self._factories[key](self)
        self._instances[key] = instance
        return instance


def build_container(
    settings: AppSettings,
    *,
    basket_backend: BasketBackend,
    reference_backend: ReferenceBackend,
    outbox_backend: OutboxBackend,
    presence_backend: PresenceBackend,
    renderer: TemplateRenderer,
    notices: NoticeBoard | None = None,
) -> ServiceContainer:
    """Register every coordinator, configured from ``settings``.

    All coordinators share one notice board and one basket cache, so a
    mutation made through any of them reconciles the same basket.
    """
    container = ServiceContainer()
    board = notices or NoticeBoard()
    container.register("settings", lambda _: settings)
    container.register("notices", lambda _: board)
    container.register("basket_backend", lambda _: basket_backend)
    container.register("reference_backend", lambda _: reference_backend)
    container.register("outbox_backend", lambda _: outbox_backend)
    container.register("presence_backend", lambda _: presence_backend)
    container.register("renderer", lambda _: renderer)
    container.register("basket_cache", lambda c: BasketCache(c.resolve("basket_backend")))
    container.register(
        "basket_editor",
        lambda c: BasketEditor(
            c.resolve("basket_cache"),
            c.resolve("basket_backend"),
            c.resolve("notices"),
            title_debounce_seconds=settings.basket.title_debounce_seconds,
        ),
    )
    container.register(
        "reassignment",
        lambda c: ReassignmentCoordinator(
            c.resolve("basket_cache"),
            c.resolve("basket_backend"),
            c.resolve("notices"),
        ),
    )
    container.register(
        "outbox_monitor",
        lambda c: OutboxMonitor(
            c.resolve("outbox_backend"),
            c.resolve("notices"),
            basket_cache=c.resolve("basket_cache"),
            list_limit=settings.outbox.list_limit,
        ),
    )
    container.register(
        "presence_tracker",
        lambda c: BridgePresenceTracker(
            c.resolve("presence_backend"),
            online_window=timedelta(seconds=settings.presence.online_window_seconds),
        ),
    )
    container.register(
        "account_directory",
        lambda c: AccountDirectory(c.resolve("presence_backend"), c.resolve("notices")),
    )
    return container


def build_pollers(container: ServiceContainer, case_id: int) -> list[PeriodicPoller]:
    """Background refreshers for one open case, at the configured cadences."""
    settings: AppSettings = container.resolve("settings")
    presence_interval = settings.presence.poll_interval_seconds
    return [
        container.resolve("basket_cache").poller(
            case_id, settings.basket.refresh_interval_seconds
        ),
        container.resolve("outbox_monitor").poller(
            case_id, settings.outbox.refresh_interval_seconds
        ),
        container.resolve("presence_tracker").poller(presence_interval),
        container.resolve("account_directory").poller(presence_interval),
    ]


def build_preparation(
    container: ServiceContainer,
    case: CaseInfo,
    *,
    source_id: int | None = None,
    task_list: str = "",
    on_close: Callable[[], None] | None = None,
) -> MailPreparationWorkflow:
    """Start a preparation for ``case`` sharing the container's coordinators."""
    settings: AppSettings = container.resolve("settings")
    return MailPreparationWorkflow(
        case,
        reference=container.resolve("reference_backend"),
        accounts=container.resolve("presence_backend"),
        renderer=container.resolve("renderer"),
        outbox=container.resolve("outbox_backend"),
        basket_cache=container.resolve("basket_cache"),
        notices=container.resolve("notices"),
        monitor=container.resolve("outbox_monitor"),
        source_id=source_id,
        task_list=task_list,
        confirmation_seconds=settings.preparation.confirmation_seconds,
        on_close=on_close,
    )


__all__ = ["ServiceContainer", "build_container", "build_pollers", "build_preparation"]
