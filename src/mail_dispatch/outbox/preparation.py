"""Guided preparation of a handoff: template, account, recipient, preview."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence

from mail_dispatch.basket.cache import BasketCache
from mail_dispatch.core.errors import ValidationError
from mail_dispatch.core.interfaces import (
    OutboxBackend,
    PresenceBackend,
    ReferenceBackend,
    TemplateRenderer,
)
from mail_dispatch.core.models import (
    CaseInfo,
    DraftRequest,
    MailTemplate,
    MessageStatus,
    OutgoingMessage,
    RenderContext,
    RenderedMail,
    SendingAccount,
)
from mail_dispatch.core.notices import NoticeBoard

from .monitor import OutboxMonitor

LOGGER = logging.getLogger(__name__)

LOAD_FAILED = "Could not load templates or accounts."
PREVIEW_FAILED = "Could not generate the preview."
CONFIRM_FAILED = "Could not save the mail to the outbox."
READY_TEXT = "The mail is ready and will open in the mail client shortly."


def filter_templates(
    templates: Sequence[MailTemplate], source_id: int | None
) -> list[MailTemplate]:
    """Templates tagged for ``source_id``, or all of them when none is given."""
    if source_id is None:
        return list(templates)
    return [template for template in templates if template.source_id == source_id]


def resolve_sending_account(
    accounts: Sequence[SendingAccount], case: CaseInfo
) -> SendingAccount | None:
    """Pick the account a case should send from.

    The case's standard account by id wins, then an active account whose
    address matches the case's configured address, then the first active one.
    """
    active = [account for account in accounts if account.active]
    if case.standard_account_id is not None:
        for account in active:
            if account.id == case.standard_account_id:
                return account
    if case.standard_account_email:
        wanted = case.standard_account_email.strip().casefold()
        for account in active:
            if account.email.strip().casefold() == wanted:
                return account
    return active[0] if active else None


# pylint: disable=too-many-instance-attributes
class MailPreparationWorkflow:
    """State container for preparing one handoff on one case.

    The preview is tied to the template and recipient name it was rendered
    with; changing either drops it, including a render still in flight.
    """

    def __init__(
        self,
        case: CaseInfo,
        *,
        reference: ReferenceBackend,
        accounts: PresenceBackend,
        renderer: TemplateRenderer,
        outbox: OutboxBackend,
        basket_cache: BasketCache,
        notices: NoticeBoard,
        monitor: OutboxMonitor | None = None,
        source_id: int | None = None,
        task_list: str = "",
        confirmation_seconds: float = 2.0,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        """Prepare a workflow for ``case``, optionally scoped to one source group."""
        self.case = case
        self.source_id = source_id
        self.task_list = task_list
        self._reference = reference
        self._accounts_backend = accounts
        self._renderer = renderer
        self._outbox = outbox
        self._basket_cache = basket_cache
        self._notices = notices
        self._monitor = monitor
        self._confirmation_seconds = confirmation_seconds
        self._on_close = on_close
        self._close_handle: asyncio.TimerHandle | None = None
        self._preview_generation = 0
        self._reset()

    def _reset(self) -> None:
        self.templates: list[MailTemplate] = []
        self.accounts: list[SendingAccount] = []
        self.selected_template_id: int | None = None
        self.selected_account_id: int | None = None
        self.recipient_email = ""
        self.recipient_name = ""
        self.preview: RenderedMail | None = None
        self.preview_source_id: int | None = None
        self.created: OutgoingMessage | None = None
        self.success = False
        self.closed = False
        self._discard_preview()

    async def open(self) -> bool:
        """Load templates and accounts and preselect the sending account."""
        self._reset()
        try:
            templates, accounts = await asyncio.gather(
                self._reference.list_templates(),
                self._accounts_backend.list_accounts(),
            )
        except Exception as exc:  # pylint: disable=broad-except
            self._notices.failure(exc, LOAD_FAILED)
            return False

        self.templates = filter_templates(templates, self.source_id)
        self.accounts = [account for account in accounts if account.active]
        account = resolve_sending_account(self.accounts, self.case)
        self.selected_account_id = account.id if account else None
        LOGGER.debug(
            "Preparation for case %s: %d template(s), account %s",
            self.case.id,
            len(self.templates),
            self.selected_account_id,
        )
        return True

    def select_template(self, template_id: int | None) -> None:
        """Choose a template; any existing preview must be regenerated."""
        if template_id is not None and not any(
            t.id == template_id for t in self.templates
        ):
            raise ValidationError(f"Template {template_id} is not available here")
        self.selected_template_id = template_id
        self._discard_preview()

    def select_account(self, account_id: int) -> None:
        """Choose the sending account among the active ones."""
        if not any(a.id == account_id for a in self.accounts):
            raise ValidationError(f"Account {account_id} is not an active account")
        self.selected_account_id = account_id

    def set_recipient_email(self, email: str) -> None:
        self.recipient_email = email.strip()

    def set_recipient_name(self, name: str) -> None:
        """Set the name used by the template; the preview depends on it."""
        self.recipient_name = name
        self._discard_preview()

    async def render_preview(self) -> RenderedMail | None:
        """Render the selected template for the current recipient.

        Returns ``None`` when rendering failed or the inputs changed while
        the render was in flight.
        """
        if self.selected_template_id is None:
            raise ValidationError("Choose a template before generating a preview")
        generation = self._preview_generation
        context = RenderContext(
            task_list=self.task_list,
            name=self.recipient_name,
            email=self.recipient_email,
        )
        try:
            rendered = await self._renderer.render(
                self.selected_template_id, self.case.id, context
            )
        except Exception as exc:  # pylint: disable=broad-except
            self._notices.failure(exc, PREVIEW_FAILED)
            return None

        if generation != self._preview_generation:
            LOGGER.debug("Dropping preview rendered for outdated inputs")
            return None
        self.preview = rendered
        self.preview_source_id = (
            rendered.source_id if rendered.source_id is not None else self.source_id
        )
        if not self.recipient_email and rendered.inferred_recipient:
            self.recipient_email = rendered.inferred_recipient
        return rendered

    async def confirm(self) -> OutgoingMessage | None:
        """Hand the previewed mail to the outbox in ``Draft``.

        Raises:
            ValidationError: No preview, account or recipient address.
        """
        if self.preview is None:
            raise ValidationError("Generate a preview before confirming")
        if self.selected_account_id is None:
            raise ValidationError("Choose a sending account before confirming")
        if not self.recipient_email:
            raise ValidationError("Enter a recipient address before confirming")

        request = DraftRequest(
            case_id=self.case.id,
            source_id=self.preview_source_id,
            recipient=self.recipient_email,
            subject=self.preview.subject,
            body_html=self.preview.body,
            account_id=self.selected_account_id,
        )
        try:
            message = await self._outbox.create_message(request)
        except Exception as exc:  # pylint: disable=broad-except
            self._notices.failure(exc, CONFIRM_FAILED)
            return None

        if message is not None:
            if message.status is not MessageStatus.DRAFT:
                LOGGER.warning(
                    "New message %s arrived as %s instead of Draft",
                    message.id,
                    message.status,
                )
            if self._monitor is not None:
                self._monitor.track(message)
        self.created = message
        self.success = True
        self._notices.success(READY_TEXT)
        await self._refresh_basket()
        self._schedule_close()
        return message

    def close(self) -> None:
        """Close the workflow now, cancelling a pending timed close."""
        if self._close_handle is not None:
            self._close_handle.cancel()
            self._close_handle = None
        if self.closed:
            return
        self.closed = True
        if self._on_close is not None:
            self._on_close()

    def _schedule_close(self) -> None:
        loop = asyncio.get_running_loop()
        self._close_handle = loop.call_later(self._confirmation_seconds, self.close)

    def _discard_preview(self) -> None:
        self.preview = None
        self.preview_source_id = None
        self._preview_generation += 1

    async def _refresh_basket(self) -> None:
        try:
            await self._basket_cache.refresh(self.case.id)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.warning("Basket refresh for case %s failed: %s", self.case.id, exc)


__all__ = [
    "MailPreparationWorkflow",
    "filter_templates",
    "resolve_sending_account",
]
