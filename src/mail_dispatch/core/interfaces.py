"""Protocol interfaces for decoupling components from the backend."""

from __future__ import annotations

from typing import Protocol

from .models import (
    BridgeAgent,
    CaseInfo,
    DraftRequest,
    InformationSource,
    ItemKind,
    MailableItem,
    MailTemplate,
    OutgoingMessage,
    RenderContext,
    RenderedMail,
    SendingAccount,
)


class BasketBackend(Protocol):
    """Reads and mutates the items flagged for mail on a case."""

    async def list_flagged_items(
        self, case_id: int, kind: ItemKind
    ) -> list[MailableItem]:
        """Return items of ``kind`` whose include-in-mail flag is set."""
        raise NotImplementedError

    async def set_item_source(
        self, kind: ItemKind, item_id: int, source_id: int | None
    ) -> None:
        """Assign the item to ``source_id`` or clear its source."""
        raise NotImplementedError

    async def clear_item_flag(self, kind: ItemKind, item_id: int) -> None:
        """Remove the item from the mail basket."""
        raise NotImplementedError

    async def set_item_title(
        self, kind: ItemKind, item_id: int, title: str | None
    ) -> None:
        """Store the item's own mail title override."""
        raise NotImplementedError

    async def reset_basket(self, case_id: int) -> None:
        """Clear the include-in-mail flag on every item of the case."""
        raise NotImplementedError


class ReferenceBackend(Protocol):
    """Read-only reference data."""

    async def list_sources(self) -> list[InformationSource]:
        """Return every information source."""
        raise NotImplementedError

    async def fetch_case(self, case_id: int) -> CaseInfo:
        """Return the case record."""
        raise NotImplementedError

    async def list_cases_with_basket(self) -> list[CaseInfo]:
        """Return every case with at least one item flagged for mail."""
        raise NotImplementedError

    async def list_templates(self) -> list[MailTemplate]:
        """Return every mail template."""
        raise NotImplementedError


class OutboxBackend(Protocol):
    """Server-side store of prepared messages."""

    async def list_messages(self, case_id: int, limit: int) -> list[OutgoingMessage]:
        """Return the most recent messages for a case."""
        raise NotImplementedError

    async def create_message(self, request: DraftRequest) -> OutgoingMessage | None:
        """Create a message in ``Draft``; the backend may omit the payload."""
        raise NotImplementedError

    async def retry_message(self, message_id: int) -> None:
        """Re-queue a message for bridge pickup."""
        raise NotImplementedError

    async def complete_message(self, message_id: int) -> None:
        """Mark a message as handled in the mail client."""
        raise NotImplementedError

    async def delete_message(self, message_id: int) -> None:
        """Cancel a handoff by removing it."""
        raise NotImplementedError


class PresenceBackend(Protocol):
    """Heartbeat and account telemetry written by bridge agents."""

    async def list_agents(self) -> list[BridgeAgent]:
        """Return registered bridge agents with their last heartbeat."""
        raise NotImplementedError

    async def list_accounts(self, *, force_sync: bool = False) -> list[SendingAccount]:
        """Return sending accounts, optionally forcing a remote resync."""
        raise NotImplementedError

    async def set_account_active(self, account_id: int, active: bool) -> None:
        """Enable or disable an account."""
        raise NotImplementedError


class TemplateRenderer(Protocol):
    """External collaborator that fills template placeholders."""

    async def render(
        self, template_id: int, case_id: int, context: RenderContext
    ) -> RenderedMail:
        """Return the rendered subject and body."""
        raise NotImplementedError


__all__ = [
    "BasketBackend",
    "OutboxBackend",
    "PresenceBackend",
    "ReferenceBackend",
    "TemplateRenderer",
]
