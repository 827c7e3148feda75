"""Tests for wiring the coordinators from application settings."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from mail_dispatch.container import (
    ServiceContainer,
    build_container,
    build_pollers,
    build_preparation,
)
from mail_dispatch.core.config import AppSettings
from mail_dispatch.core.datetime_utils import utc_now
from mail_dispatch.core.models import (
    BridgeAgent,
    ItemKind,
    MailableItem,
    MessageStatus,
)


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings.model_validate(
        {
            "basket": {"refresh_interval_seconds": 45, "title_debounce_seconds": 0},
            "presence": {
                "heartbeat_interval_seconds": 300,
                "online_window_seconds": 900,
                "poll_interval_seconds": 15,
            },
            "outbox": {"list_limit": 2, "refresh_interval_seconds": 20},
            "preparation": {"confirmation_seconds": 0},
        }
    )


@pytest.fixture
def container(
    settings,
    basket_backend,
    reference_backend,
    outbox_backend,
    presence_backend,
    notices,
) -> ServiceContainer:
    basket_backend.seed(
        7, MailableItem(id=1, kind=ItemKind.ACTIVITY, label="Loan offer", source_id=1)
    )
    return build_container(
        settings,
        basket_backend=basket_backend,
        reference_backend=reference_backend,
        outbox_backend=outbox_backend,
        presence_backend=presence_backend,
        renderer=reference_backend,
        notices=notices,
    )


def test_services_are_created_once(container, notices) -> None:
    """Every resolve returns the same shared instance."""

    assert container.resolve("basket_cache") is container.resolve("basket_cache")
    assert container.resolve("notices") is notices


def test_unknown_service_is_reported(container) -> None:
    """Resolving a key that was never registered fails loudly."""

    with pytest.raises(KeyError, match="not registered"):
        container.resolve("mailer")


def test_pollers_use_configured_cadences(container) -> None:
    """Basket, outbox and presence pollers follow their settings."""

    pollers = build_pollers(container, 7)

    assert [p.name for p in pollers] == [
        "basket-7",
        "outbox-7",
        "bridge-agents",
        "sending-accounts",
    ]
    assert [p.interval_seconds for p in pollers] == [45, 20, 15, 15]


@pytest.mark.asyncio
async def test_editor_uses_configured_debounce(container, basket_backend) -> None:
    """With no quiet period the title is written on the next loop turn."""

    await container.resolve("basket_cache").fetch(7)
    editor = container.resolve("basket_editor")

    editor.edit_title(7, ItemKind.ACTIVITY, 1, "Offer letter")
    await asyncio.sleep(0.02)
    await editor.flush()

    assert ("title", ItemKind.ACTIVITY, 1, "Offer letter") in basket_backend.calls


@pytest.mark.asyncio
async def test_monitor_and_tracker_use_configured_limits(
    container, outbox_backend, presence_backend, message_factory
) -> None:
    """The list limit and the online window come from settings."""

    for message_id in (1, 2, 3):
        outbox_backend.add(message_factory(message_id, MessageStatus.DRAFT))
    presence_backend.agents = [
        BridgeAgent(
            id=1,
            machine_name="PC-1",
            os_user="anna",
            last_seen_at=utc_now() - timedelta(minutes=10),
        )
    ]

    monitor = container.resolve("outbox_monitor")
    await monitor.refresh(7)
    tracker = container.resolve("presence_tracker")
    await tracker.poll()

    assert [m.id for m in monitor.messages(7)] == [3, 2]
    assert tracker.any_online() is True


@pytest.mark.asyncio
async def test_preparation_shares_coordinators(
    container, reference_backend, outbox_backend
) -> None:
    """A confirmed mail is tracked by the shared monitor and closes on time."""

    closed: list[bool] = []
    workflow = build_preparation(
        container,
        reference_backend.cases[7],
        source_id=1,
        task_list="- Loan offer\n",
        on_close=lambda: closed.append(True),
    )
    await workflow.open()
    workflow.select_template(1)
    await workflow.render_preview()

    message = await workflow.confirm()
    await asyncio.sleep(0.01)

    assert message is not None
    assert container.resolve("outbox_monitor").find(7, message.id) is not None
    assert outbox_backend.created[-1].account_id == 1
    assert closed == [True]
