"""Directory of sending accounts reported by the bridge."""

from __future__ import annotations

import dataclasses
import logging

from mail_dispatch.core.interfaces import PresenceBackend
from mail_dispatch.core.models import SendingAccount
from mail_dispatch.core.notices import NoticeBoard
from mail_dispatch.core.scheduling import PeriodicPoller

LOGGER = logging.getLogger(__name__)

TOGGLE_FAILED = "Could not update the account."


class AccountDirectory:
    """Polled list of sending accounts with an optimistic active toggle."""

    def __init__(self, backend: PresenceBackend, notices: NoticeBoard) -> None:
        self._backend = backend
        self._notices = notices
        self._accounts: tuple[SendingAccount, ...] = ()

    @property
    def accounts(self) -> tuple[SendingAccount, ...]:
        return self._accounts

    def active(self) -> list[SendingAccount]:
        return [account for account in self._accounts if account.active]

    def find(self, account_id: int) -> SendingAccount | None:
        for account in self._accounts:
            if account.id == account_id:
                return account
        return None

    async def refresh(self, *, force_sync: bool = False) -> tuple[SendingAccount, ...]:
        """Reload accounts; ``force_sync`` asks the backend to resync them first.

        Raises whatever the backend raises, keeping the previous list.
        """
        self._accounts = tuple(await self._backend.list_accounts(force_sync=force_sync))
        LOGGER.debug(
            "Loaded %d account(s)%s",
            len(self._accounts),
            " after sync" if force_sync else "",
        )
        return self._accounts

    def poller(self, interval_seconds: float) -> PeriodicPoller:
        return PeriodicPoller("sending-accounts", interval_seconds, self.refresh)

    async def set_active(self, account_id: int, active: bool) -> bool:
        """Toggle an account, showing the change before the server confirms it."""
        account = self.find(account_id)
        if account is None:
            self._notices.error(f"Unknown account {account_id}.")
            return False
        self._swap(dataclasses.replace(account, active=active))
        try:
            await self._backend.set_account_active(account_id, active)
        except Exception as exc:  # pylint: disable=broad-except
            current = self.find(account_id)
            if current is not None and current.active == active:
                self._swap(dataclasses.replace(current, active=account.active))
            self._notices.failure(exc, TOGGLE_FAILED)
            return False
        LOGGER.info(
            "Account %s %s", account_id, "activated" if active else "deactivated"
        )
        return True

    def _swap(self, account: SendingAccount) -> None:
        self._accounts = tuple(
            account if existing.id == account.id else existing
            for existing in self._accounts
        )


__all__ = ["AccountDirectory"]
