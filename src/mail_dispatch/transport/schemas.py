"""Wire schemas for backend payloads and their mapping to domain models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mail_dispatch.core.datetime_utils import ensure_utc
from mail_dispatch.core.models import (
    BridgeAgent,
    CaseInfo,
    InformationSource,
    ItemKind,
    MailableItem,
    MailTemplate,
    MessageStatus,
    OutgoingMessage,
    RenderedMail,
    SendingAccount,
)

# Older bridge builds report a picked-up message as "Sent".
_LEGACY_STATUSES = {"Sent": MessageStatus.IN_OUTLOOK}


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SourceRef(_WireModel):
    """Nested information source reference."""

    id: int
    name: str = Field(default="", alias="navn")

    def to_domain(self) -> InformationSource:
        return InformationSource(id=self.id, name=self.name)


class ActivityPayload(_WireModel):
    """An activity as returned by the activity list endpoint."""

    id: int
    label: str | None = Field(default=None, alias="aktivitet")
    note: str | None = None
    source: SourceRef | None = Field(default=None, alias="informations_kilde")
    title_override: str | None = Field(default=None, alias="mail_titel")
    template_title: str | None = Field(default=None, alias="skabelon_mail_titel")

    def to_domain(self) -> MailableItem:
        return MailableItem(
            id=self.id,
            kind=ItemKind.ACTIVITY,
            label=self.label or "",
            note_text=self.note,
            source_id=self.source.id if self.source else None,
            title_override=self.title_override,
            template_title=self.template_title,
        )


class DocumentPayload(_WireModel):
    """A case document as returned by the document list endpoint."""

    id: int
    title: str | None = Field(default=None, alias="titel")
    filename: str | None = Field(default=None, alias="filnavn")
    note: str | None = None
    source: SourceRef | None = Field(default=None, alias="informations_kilde")
    title_override: str | None = Field(default=None, alias="mail_titel")
    template_title: str | None = Field(default=None, alias="skabelon_mail_titel")
    group_number: float | None = Field(default=None, alias="gruppe_nr")
    document_number: int | None = Field(default=None, alias="dokument_nr")

    def to_domain(self) -> MailableItem:
        return MailableItem(
            id=self.id,
            kind=ItemKind.DOCUMENT,
            label=self.title or self.filename or "",
            note_text=self.note,
            source_id=self.source.id if self.source else None,
            title_override=self.title_override,
            template_title=self.template_title,
            group_number=self.group_number,
            document_number=self.document_number,
        )


class AccountRef(_WireModel):
    id: int | None = None
    email: str | None = Field(default=None, alias="email_address")


class CasePayload(_WireModel):
    """The fields of a case record used for dispatch."""

    id: int
    case_number: str = Field(alias="sags_nr")
    alias: str | None = None
    street: str | None = Field(default=None, alias="adresse_vej")
    house_number: str | None = Field(default=None, alias="adresse_husnr")
    postal_code: str | None = Field(default=None, alias="adresse_post_nr")
    city: str | None = Field(default=None, alias="adresse_by")
    standard_account_id: int | None = Field(
        default=None, alias="standard_outlook_account_id"
    )
    standard_account: AccountRef | None = Field(
        default=None, alias="standard_outlook_account_details"
    )

    @field_validator("case_number", mode="before")
    @classmethod
    def _stringify_case_number(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value

    def to_domain(self) -> CaseInfo:
        address = None
        if self.street:
            address = (
                f"{self.street} {self.house_number or ''}, "
                f"{self.postal_code or ''} {self.city or ''}"
            )
        account = self.standard_account
        return CaseInfo(
            id=self.id,
            case_number=self.case_number,
            alias=self.alias,
            address=address,
            standard_account_id=self.standard_account_id
            or (account.id if account else None),
            standard_account_email=account.email if account else None,
        )


class TemplatePayload(_WireModel):
    id: int
    name: str = Field(alias="navn")
    source: SourceRef | None = Field(default=None, alias="informations_kilde")

    def to_domain(self) -> MailTemplate:
        return MailTemplate(
            id=self.id,
            name=self.name,
            source_id=self.source.id if self.source else None,
        )


class RenderPayload(_WireModel):
    subject: str
    body: str
    source_id: int | None = Field(default=None, alias="informations_kilde_id")
    inferred_email: str | None = None

    def to_domain(self) -> RenderedMail:
        return RenderedMail(
            subject=self.subject,
            body=self.body,
            source_id=self.source_id,
            inferred_recipient=self.inferred_email or None,
        )


class MessagePayload(_WireModel):
    """An outgoing message record."""

    id: int
    case_id: int = Field(alias="sag")
    source_id: int | None = Field(default=None, alias="informations_kilde")
    recipient: str = ""
    subject: str = ""
    body_html: str = ""
    account_id: int | None = Field(default=None, alias="outlook_account")
    status: MessageStatus
    error_message: str | None = None
    created_at: datetime | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _map_legacy_status(cls, value: object) -> object:
        if isinstance(value, str):
            return _LEGACY_STATUSES.get(value, value)
        return value

    def to_domain(self) -> OutgoingMessage:
        return OutgoingMessage(
            id=self.id,
            case_id=self.case_id,
            source_id=self.source_id,
            recipient=self.recipient,
            subject=self.subject,
            body_html=self.body_html,
            account_id=self.account_id,
            status=self.status,
            error_message=self.error_message or None,
            created_at=ensure_utc(self.created_at),
        )


class AccountPayload(_WireModel):
    id: int
    name: str = Field(default="", alias="account_name")
    email: str = Field(default="", alias="email_address")
    active: bool = Field(default=False, alias="is_active")
    last_synced: datetime | None = None
    updated_at: datetime | None = Field(default=None, alias="sidst_opdateret")

    def to_domain(self) -> SendingAccount:
        return SendingAccount(
            id=self.id,
            name=self.name,
            email=self.email,
            active=self.active,
            last_synced_at=ensure_utc(self.last_synced or self.updated_at),
        )


class AgentPayload(_WireModel):
    id: int
    machine_name: str = ""
    os_user: str = ""
    last_seen: datetime | None = None

    def to_domain(self) -> BridgeAgent:
        return BridgeAgent(
            id=self.id,
            machine_name=self.machine_name,
            os_user=self.os_user,
            last_seen_at=ensure_utc(self.last_seen),
        )


__all__ = [
    "AccountPayload",
    "ActivityPayload",
    "AgentPayload",
    "CasePayload",
    "DocumentPayload",
    "MessagePayload",
    "RenderPayload",
    "SourceRef",
    "TemplatePayload",
]
