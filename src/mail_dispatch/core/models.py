"""Core domain models used across the coordinator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class ItemKind(StrEnum):
    """Kinds of deliverable items that can be flagged for mail."""

    ACTIVITY = "activity"
    DOCUMENT = "document"


class MessageStatus(StrEnum):
    """Lifecycle states of a prepared outgoing message."""

    DRAFT = "Draft"
    IN_OUTLOOK = "InOutlook"
    COMPLETED = "Completed"
    ERROR = "Error"


ItemKey = tuple[ItemKind, int]


@dataclass(frozen=True, slots=True)
class InformationSource:
    """Recipient group used to tag items and messages."""

    id: int
    name: str


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True, slots=True)
class MailableItem:
    """An activity or document currently flagged for inclusion in mail."""

    id: int
    kind: ItemKind
    label: str
    note_text: str | None = None
    source_id: int | None = None
    title_override: str | None = None
    template_title: str | None = None
    group_number: float | None = None
    document_number: int | None = None

    @property
    def key(self) -> ItemKey:
        """Identity of the item within a basket."""
        return (self.kind, self.id)

    @property
    def mail_title(self) -> str | None:
        """Own override first, then the template default, else nothing."""
        return self.title_override or self.template_title or None


@dataclass(slots=True)
class Basket:
    """Flagged items of one case as last fetched, plus local optimistic edits."""

    case_id: int
    items: tuple[MailableItem, ...]
    fetched_at: float
    issue_stamp: int = 0

    def find(self, key: ItemKey) -> MailableItem | None:
        """Return the item identified by ``key`` if present."""
        for item in self.items:
            if item.key == key:
                return item
        return None


@dataclass(frozen=True, slots=True)
class SourceGroup:
    """Items sharing one information source, with their export text."""

    source_id: int | None
    name: str
    activities: tuple[MailableItem, ...]
    documents: tuple[MailableItem, ...]
    export_text: str

    @property
    def is_unassigned(self) -> bool:
        """True for the sentinel group of items without a source."""
        return self.source_id is None

    @property
    def size(self) -> int:
        """Total number of items in the group."""
        return len(self.activities) + len(self.documents)


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class OutgoingMessage:
    """A prepared message handed off to a bridge agent."""

    id: int
    case_id: int
    source_id: int | None
    recipient: str
    subject: str
    body_html: str
    account_id: int | None
    status: MessageStatus
    error_message: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class DraftRequest:
    """Payload for creating a new handoff in ``Draft``."""

    case_id: int
    source_id: int | None
    recipient: str
    subject: str
    body_html: str
    account_id: int


@dataclass(frozen=True, slots=True)
class BridgeAgent:
    """A desktop bridge registered through its heartbeats."""

    id: int
    machine_name: str
    os_user: str
    last_seen_at: datetime | None


@dataclass(frozen=True, slots=True)
class SendingAccount:
    """A mailbox the bridge can prepare messages from."""

    id: int
    name: str
    email: str
    active: bool
    last_synced_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class CaseInfo:
    """The subset of a case record the coordinator needs."""

    id: int
    case_number: str
    alias: str | None = None
    address: str | None = None
    standard_account_id: int | None = None
    standard_account_email: str | None = None


@dataclass(frozen=True, slots=True)
class MailTemplate:
    """A mail template, optionally tagged for one information source."""

    id: int
    name: str
    source_id: int | None = None


@dataclass(frozen=True, slots=True)
class RenderContext:
    """Free-text context passed to the template renderer."""

    task_list: str = ""
    name: str = ""
    email: str = ""


@dataclass(frozen=True, slots=True)
class RenderedMail:
    """Subject and body returned by the template renderer."""

    subject: str
    body: str
    source_id: int | None = None
    inferred_recipient: str | None = None


@dataclass(slots=True)
class AgentStatus:
    """Read-time presence snapshot of one agent."""

    agent: BridgeAgent
    online: bool
    seen_seconds_ago: float | None = field(default=None)


__all__ = [
    "AgentStatus",
    "Basket",
    "BridgeAgent",
    "CaseInfo",
    "DraftRequest",
    "InformationSource",
    "ItemKey",
    "ItemKind",
    "MailTemplate",
    "MailableItem",
    "MessageStatus",
    "OutgoingMessage",
    "RenderContext",
    "RenderedMail",
    "SendingAccount",
    "SourceGroup",
]
