"""Shared in-memory backend stubs for coordinator tests."""

from __future__ import annotations

import asyncio
import dataclasses
import itertools
from collections.abc import Coroutine
from datetime import datetime
from typing import Any

import pytest

from mail_dispatch.core.models import (
    BridgeAgent,
    CaseInfo,
    DraftRequest,
    InformationSource,
    ItemKind,
    MailableItem,
    MailTemplate,
    MessageStatus,
    OutgoingMessage,
    RenderContext,
    RenderedMail,
    SendingAccount,
)
from mail_dispatch.core.notices import NoticeBoard
from mail_dispatch.outbox.lifecycle import OutgoingMessageLifecycle


class StubBasketBackend:
    """Basket backend keeping flagged items per case in memory.

    Reads snapshot the server state when called and writes are applied when
    called, so the order calls are issued in is the order the server sees.
    Setting ``hold`` to an event parks every call made afterwards until the
    event is set; ``fail_with`` makes writes raise after their hold and
    ``fail_reads`` does the same for reads.
    """

    def __init__(self) -> None:
        self.items: dict[int, list[MailableItem]] = {}
        self.hold: asyncio.Event | None = None
        self.fail_with: Exception | None = None
        self.fail_reads: Exception | None = None
        self.apply_writes = True
        self.calls: list[tuple[Any, ...]] = []

    def seed(self, case_id: int, *items: MailableItem) -> None:
        self.items[case_id] = list(items)

    def list_flagged_items(
        self, case_id: int, kind: ItemKind
    ) -> Coroutine[Any, Any, list[MailableItem]]:
        self.calls.append(("list", case_id, kind))
        snapshot = [i for i in self.items.get(case_id, []) if i.kind is kind]
        return self._deliver(snapshot, self.hold, self.fail_reads)

    def set_item_source(
        self, kind: ItemKind, item_id: int, source_id: int | None
    ) -> Coroutine[Any, Any, None]:
        self.calls.append(("source", kind, item_id, source_id))
        if self.apply_writes and self.fail_with is None:
            self._update(kind, item_id, source_id=source_id)
        return self._deliver(None, self.hold, self.fail_with)

    def clear_item_flag(
        self, kind: ItemKind, item_id: int
    ) -> Coroutine[Any, Any, None]:
        self.calls.append(("clear", kind, item_id))
        if self.apply_writes and self.fail_with is None:
            for case_id, items in self.items.items():
                self.items[case_id] = [i for i in items if i.key != (kind, item_id)]
        return self._deliver(None, self.hold, self.fail_with)

    def set_item_title(
        self, kind: ItemKind, item_id: int, title: str | None
    ) -> Coroutine[Any, Any, None]:
        self.calls.append(("title", kind, item_id, title))
        if self.apply_writes and self.fail_with is None:
            self._update(kind, item_id, title_override=title)
        return self._deliver(None, self.hold, self.fail_with)

    def reset_basket(self, case_id: int) -> Coroutine[Any, Any, None]:
        self.calls.append(("reset", case_id))
        if self.apply_writes and self.fail_with is None:
            self.items[case_id] = []
        return self._deliver(None, self.hold, self.fail_with)

    def _update(self, kind: ItemKind, item_id: int, **changes: Any) -> None:
        for case_id, items in self.items.items():
            self.items[case_id] = [
                dataclasses.replace(i, **changes) if i.key == (kind, item_id) else i
                for i in items
            ]

    @staticmethod
    async def _deliver(
        result: Any, hold: asyncio.Event | None, error: Exception | None
    ) -> Any:
        if hold is not None:
            await hold.wait()
        if error is not None:
            raise error
        return result


class StubOutboxBackend:
    """Outbox backend storing messages in memory."""

    def __init__(self) -> None:
        self.lifecycle = OutgoingMessageLifecycle()
        self.messages: dict[int, OutgoingMessage] = {}
        self.ids = itertools.count(100)
        self.fail_with: Exception | None = None
        self.return_payload = True
        self.created: list[DraftRequest] = []
        self.commands: list[tuple[str, int]] = []

    def add(self, message: OutgoingMessage) -> OutgoingMessage:
        self.messages[message.id] = message
        return message

    async def list_messages(self, case_id: int, limit: int) -> list[OutgoingMessage]:
        if self.fail_with is not None:
            raise self.fail_with
        rows = [m for m in self.messages.values() if m.case_id == case_id]
        rows.sort(key=lambda m: m.id, reverse=True)
        return [dataclasses.replace(m) for m in rows[:limit]]

    async def create_message(self, request: DraftRequest) -> OutgoingMessage | None:
        if self.fail_with is not None:
            raise self.fail_with
        self.created.append(request)
        message = self.add(self.lifecycle.create(next(self.ids), request))
        return dataclasses.replace(message) if self.return_payload else None

    async def retry_message(self, message_id: int) -> None:
        self._command("retry", message_id, self.lifecycle.retry)

    async def complete_message(self, message_id: int) -> None:
        self._command("complete", message_id, self.lifecycle.complete)

    async def delete_message(self, message_id: int) -> None:
        self.commands.append(("delete", message_id))
        if self.fail_with is not None:
            raise self.fail_with
        del self.messages[message_id]

    def _command(self, name: str, message_id: int, transition) -> None:
        self.commands.append((name, message_id))
        if self.fail_with is not None:
            raise self.fail_with
        self.messages[message_id] = transition(self.messages[message_id])


class StubReferenceBackend:
    """Reference data and template rendering held in memory."""

    def __init__(self) -> None:
        self.sources = [
            InformationSource(id=1, name="Bank"),
            InformationSource(id=2, name="Mægler"),
        ]
        self.cases: dict[int, CaseInfo] = {
            7: CaseInfo(id=7, case_number="2024-17", alias="Villa")
        }
        self.templates = [
            MailTemplate(id=1, name="Bank request", source_id=1),
            MailTemplate(id=2, name="Broker request", source_id=2),
            MailTemplate(id=3, name="Generic", source_id=None),
        ]
        self.fail_with: Exception | None = None
        self.inferred_email: str | None = "loans@bank.example"
        self.render_hold: asyncio.Event | None = None
        self.renders: list[tuple[int, int, RenderContext]] = []

    async def list_sources(self) -> list[InformationSource]:
        return list(self.sources)

    async def fetch_case(self, case_id: int) -> CaseInfo:
        return self.cases[case_id]

    async def list_cases_with_basket(self) -> list[CaseInfo]:
        return list(self.cases.values())

    async def list_templates(self) -> list[MailTemplate]:
        if self.fail_with is not None:
            raise self.fail_with
        return list(self.templates)

    async def render(
        self, template_id: int, case_id: int, context: RenderContext
    ) -> RenderedMail:
        self.renders.append((template_id, case_id, context))
        if self.render_hold is not None:
            await self.render_hold.wait()
        if self.fail_with is not None:
            raise self.fail_with
        template = next(t for t in self.templates if t.id == template_id)
        return RenderedMail(
            subject=f"{template.name} for {case_id}",
            body=f"<p>Dear {context.name}</p><pre>{context.task_list}</pre>",
            source_id=template.source_id,
            inferred_recipient=self.inferred_email,
        )


class StubPresenceBackend:
    """Agents and accounts held in memory."""

    def __init__(self) -> None:
        self.agents: list[BridgeAgent] = []
        self.accounts = [
            SendingAccount(id=1, name="Office", email="office@firm.example", active=True),
            SendingAccount(id=2, name="Cases", email="Cases@Firm.example", active=True),
            SendingAccount(id=3, name="Old", email="old@firm.example", active=False),
        ]
        self.fail_with: Exception | None = None
        self.sync_requests = 0
        self.toggles: list[tuple[int, bool]] = []

    async def list_agents(self) -> list[BridgeAgent]:
        if self.fail_with is not None:
            raise self.fail_with
        return list(self.agents)

    async def list_accounts(self, *, force_sync: bool = False) -> list[SendingAccount]:
        if self.fail_with is not None:
            raise self.fail_with
        if force_sync:
            self.sync_requests += 1
        return list(self.accounts)

    async def set_account_active(self, account_id: int, active: bool) -> None:
        self.toggles.append((account_id, active))
        if self.fail_with is not None:
            raise self.fail_with
        self.accounts = [
            dataclasses.replace(a, active=active) if a.id == account_id else a
            for a in self.accounts
        ]


def make_message(
    message_id: int,
    status: MessageStatus,
    *,
    case_id: int = 7,
    error_message: str | None = None,
    created_at: datetime | None = None,
) -> OutgoingMessage:
    """Build a message with plausible defaults."""
    return OutgoingMessage(
        id=message_id,
        case_id=case_id,
        source_id=1,
        recipient="loans@bank.example",
        subject=f"Message {message_id}",
        body_html="<p>Hello</p>",
        account_id=1,
        status=status,
        error_message=error_message,
        created_at=created_at,
    )


@pytest.fixture
def notices() -> NoticeBoard:
    return NoticeBoard()


@pytest.fixture
def basket_backend() -> StubBasketBackend:
    return StubBasketBackend()


@pytest.fixture
def outbox_backend() -> StubOutboxBackend:
    return StubOutboxBackend()


@pytest.fixture
def reference_backend() -> StubReferenceBackend:
    return StubReferenceBackend()


@pytest.fixture
def presence_backend() -> StubPresenceBackend:
    return StubPresenceBackend()


@pytest.fixture
def message_factory():
    return make_message
