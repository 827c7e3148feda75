"""Typed access to the dispatch-related backend endpoints."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from mail_dispatch.core.errors import PayloadError
from mail_dispatch.core.interfaces import (
    BasketBackend,
    OutboxBackend,
    PresenceBackend,
    ReferenceBackend,
    TemplateRenderer,
)
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

from .api_client import ApiClient
from .schemas import (
    AccountPayload,
    ActivityPayload,
    AgentPayload,
    CasePayload,
    DocumentPayload,
    MessagePayload,
    RenderPayload,
    SourceRef,
    TemplatePayload,
)

LOGGER = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
DomainT = TypeVar("DomainT")

_ITEM_PATHS = {
    ItemKind.ACTIVITY: "/aktiviteter/{id}/",
    ItemKind.DOCUMENT: "/sager/sagsdokumenter/{id}/",
}


def _parse_one(
    schema: type[ModelT], payload: Any, convert: Callable[[ModelT], DomainT]
) -> DomainT:
    try:
        return convert(schema.model_validate(payload))
    except PydanticValidationError as exc:
        raise PayloadError(f"Unexpected {schema.__name__} payload") from exc


def _parse_list(
    schema: type[ModelT], payload: Any, convert: Callable[[ModelT], DomainT]
) -> list[DomainT]:
    # Paginated endpoints wrap rows in "results".
    if isinstance(payload, dict) and "results" in payload:
        payload = payload["results"]
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise PayloadError(f"Expected a list of {schema.__name__}")
    return [_parse_one(schema, entry, convert) for entry in payload]


class DispatchGateway(
    BasketBackend, ReferenceBackend, OutboxBackend, PresenceBackend, TemplateRenderer
):
    """Implements every backend protocol on top of :class:`ApiClient`."""

    def __init__(self, client: ApiClient) -> None:
        """Wrap an already configured API client."""
        self._client = client

    # Basket -----------------------------------------------------------------

    async def list_flagged_items(
        self, case_id: int, kind: ItemKind
    ) -> list[MailableItem]:
        if kind is ItemKind.ACTIVITY:
            payload = await self._client.get(
                "/aktiviteter/all/", params={"sag": case_id, "skal_mailes": "true"}
            )
            return _parse_list(ActivityPayload, payload, ActivityPayload.to_domain)
        payload = await self._client.get(
            "/sager/sagsdokumenter/",
            params={"sag_id": case_id, "skal_mailes": "true"},
        )
        return _parse_list(DocumentPayload, payload, DocumentPayload.to_domain)

    async def set_item_source(
        self, kind: ItemKind, item_id: int, source_id: int | None
    ) -> None:
        await self._patch_item(kind, item_id, {"informations_kilde_id": source_id})

    async def clear_item_flag(self, kind: ItemKind, item_id: int) -> None:
        await self._patch_item(kind, item_id, {"skal_mailes": False})

    async def set_item_title(
        self, kind: ItemKind, item_id: int, title: str | None
    ) -> None:
        await self._patch_item(kind, item_id, {"mail_titel": title or ""})

    async def reset_basket(self, case_id: int) -> None:
        await self._client.post(f"/sager/{case_id}/reset_mail_basket/")

    async def _patch_item(
        self, kind: ItemKind, item_id: int, body: dict[str, Any]
    ) -> None:
        await self._client.patch(_ITEM_PATHS[kind].format(id=item_id), body)

    # Reference data ---------------------------------------------------------

    async def list_sources(self) -> list[InformationSource]:
        payload = await self._client.get("/kerne/informationskilder/")
        return _parse_list(SourceRef, payload, SourceRef.to_domain)

    async def fetch_case(self, case_id: int) -> CaseInfo:
        payload = await self._client.get(f"/sager/{case_id}/")
        return _parse_one(CasePayload, payload, CasePayload.to_domain)

    async def list_cases_with_basket(self) -> list[CaseInfo]:
        payload = await self._client.get("/sager/with_mail_basket/")
        return _parse_list(CasePayload, payload, CasePayload.to_domain)

    async def list_templates(self) -> list[MailTemplate]:
        payload = await self._client.get("/skabeloner/mail/")
        return _parse_list(TemplatePayload, payload, TemplatePayload.to_domain)

    # Outbox -----------------------------------------------------------------

    async def list_messages(self, case_id: int, limit: int) -> list[OutgoingMessage]:
        payload = await self._client.get(
            "/emails/outgoing/", params={"sag": case_id, "limit": limit}
        )
        return _parse_list(MessagePayload, payload, MessagePayload.to_domain)

    async def create_message(self, request: DraftRequest) -> OutgoingMessage | None:
        payload = await self._client.post(
            "/emails/outgoing/",
            {
                "recipient": request.recipient,
                "subject": request.subject,
                "body_html": request.body_html,
                "outlook_account": request.account_id,
                "sag": request.case_id,
                "informations_kilde": request.source_id,
                "status": MessageStatus.DRAFT.value,
            },
        )
        if not payload:
            return None
        message = _parse_one(MessagePayload, payload, MessagePayload.to_domain)
        LOGGER.info("Created handoff %s for case %s", message.id, request.case_id)
        return message

    async def retry_message(self, message_id: int) -> None:
        await self._client.post(f"/emails/outgoing/{message_id}/retry/")

    async def complete_message(self, message_id: int) -> None:
        await self._client.post(f"/emails/outgoing/{message_id}/mark_completed/")

    async def delete_message(self, message_id: int) -> None:
        await self._client.delete(f"/emails/outgoing/{message_id}/")

    # Presence ---------------------------------------------------------------

    async def list_agents(self) -> list[BridgeAgent]:
        payload = await self._client.get("/emails/bridges/")
        return _parse_list(AgentPayload, payload, AgentPayload.to_domain)

    async def list_accounts(self, *, force_sync: bool = False) -> list[SendingAccount]:
        params = {"sync": "true"} if force_sync else None
        payload = await self._client.get("/emails/accounts/", params=params)
        return _parse_list(AccountPayload, payload, AccountPayload.to_domain)

    async def set_account_active(self, account_id: int, active: bool) -> None:
        await self._client.post(
            "/emails/accounts/", {"id": account_id, "is_active": active}
        )

    # Rendering --------------------------------------------------------------

    async def render(
        self, template_id: int, case_id: int, context: RenderContext
    ) -> RenderedMail:
        payload = await self._client.post(
            "/emails/render-template/",
            {
                "template_id": template_id,
                "sag_id": case_id,
                "extra_context": {
                    "opgaveliste": context.task_list,
                    "name": context.name,
                    "email": context.email,
                },
            },
        )
        return _parse_one(RenderPayload, payload, RenderPayload.to_domain)


__all__ = ["DispatchGateway"]
