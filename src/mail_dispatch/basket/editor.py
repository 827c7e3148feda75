"""Basket edits other than moves: removal, reset and mail title overrides."""

from __future__ import annotations

import dataclasses
import logging

from mail_dispatch.core.interfaces import BasketBackend
from mail_dispatch.core.models import Basket, ItemKey, ItemKind, MailableItem
from mail_dispatch.core.notices import NoticeBoard
from mail_dispatch.core.scheduling import Debouncer

from .cache import BasketCache

LOGGER = logging.getLogger(__name__)

REMOVE_FAILED = "Could not remove the item from the basket."
RESET_FAILED = "Could not empty the basket."
TITLE_FAILED = "Could not save the mail title."


class BasketEditor:
    """Optimistic basket edits, each reconciled by a forced refetch.

    A failed write undoes only its own local change and posts a notice.
    Title overrides are free text and are written after a quiet period.
    """

    def __init__(
        self,
        cache: BasketCache,
        backend: BasketBackend,
        notices: NoticeBoard,
        *,
        title_debounce_seconds: float = 0.8,
    ) -> None:
        """Wire the editor and its debounced title writer."""
        self._cache = cache
        self._backend = backend
        self._notices = notices
        self._title_writer: Debouncer[ItemKey, tuple[int, str | None]] = Debouncer(
            title_debounce_seconds, self._write_title
        )
        self._title_drafts: dict[ItemKey, tuple[int, str | None]] = {}
        self._removals: dict[ItemKey, int] = {}
        self._resets: set[int] = set()
        cache.add_rebase_hook(self._reapply_titles)
        cache.add_rebase_hook(self._hide_removals)

    async def remove_item(self, case_id: int, kind: ItemKind, item_id: int) -> bool:
        """Clear the item's include-in-mail flag. Returns ``True`` on success.

        While the request is in flight the item stays hidden across refetches.
        A failure puts back only this item and keeps whatever else reached the
        cache in the meantime.
        """
        key: ItemKey = (kind, item_id)
        taken = self._taken(case_id, {key})
        self._removals[key] = case_id
        self._cache.apply_local(case_id, lambda items: _without(items, {key}))
        try:
            await self._backend.clear_item_flag(kind, item_id)
        except Exception as exc:  # pylint: disable=broad-except
            self._removals.pop(key, None)
            self._cache.apply_local(case_id, lambda items: _reinsert(items, taken))
            self._notices.failure(exc, REMOVE_FAILED)
            await self._reconcile(case_id)
            return False
        self._removals.pop(key, None)
        LOGGER.info("Removed %s %s from basket of case %s", kind, item_id, case_id)
        await self._reconcile(case_id)
        return True

    async def reset(self, case_id: int) -> bool:
        """Empty the whole basket of a case. Returns ``True`` on success."""
        taken = self._taken(case_id)
        self._resets.add(case_id)
        self._cache.apply_local(case_id, lambda items: ())
        try:
            await self._backend.reset_basket(case_id)
        except Exception as exc:  # pylint: disable=broad-except
            self._resets.discard(case_id)
            self._cache.apply_local(case_id, lambda items: _reinsert(items, taken))
            self._notices.failure(exc, RESET_FAILED)
            await self._reconcile(case_id)
            return False
        self._resets.discard(case_id)
        LOGGER.info("Reset basket of case %s", case_id)
        await self._reconcile(case_id)
        return True

    def edit_title(
        self, case_id: int, kind: ItemKind, item_id: int, text: str | None
    ) -> None:
        """Show ``text`` as the item's title now and persist it once typing stops."""
        key: ItemKey = (kind, item_id)
        title = text.strip() if text else None
        title = title or None
        self._title_drafts[key] = (case_id, title)
        self._cache.apply_local(case_id, lambda items: _retitle(items, key, title))
        self._title_writer.trigger(key, (case_id, title))

    def has_pending_title(self, kind: ItemKind, item_id: int) -> bool:
        return (kind, item_id) in self._title_drafts

    async def flush(self) -> None:
        """Write pending title edits immediately."""
        await self._title_writer.flush()

    async def _write_title(self, key: ItemKey, value: tuple[int, str | None]) -> None:
        case_id, title = value
        kind, item_id = key
        try:
            await self._backend.set_item_title(kind, item_id, title)
        except Exception as exc:  # pylint: disable=broad-except
            self._discard_draft(key, value)
            self._notices.failure(exc, TITLE_FAILED)
        else:
            self._discard_draft(key, value)
        # Either way the server copy is the one to show now.
        await self._reconcile(case_id)

    def _discard_draft(self, key: ItemKey, value: tuple[int, str | None]) -> None:
        # A newer edit typed while this one was in flight stays pending.
        if self._title_drafts.get(key) == value and not self._title_writer.is_pending(
            key
        ):
            del self._title_drafts[key]

    def _reapply_titles(self, basket: Basket) -> Basket:
        for key, (case_id, title) in self._title_drafts.items():
            if case_id == basket.case_id:
                basket.items = _retitle(basket.items, key, title)
        return basket

    def _hide_removals(self, basket: Basket) -> Basket:
        if basket.case_id in self._resets:
            basket.items = ()
            return basket
        hidden = {
            key for key, case_id in self._removals.items() if case_id == basket.case_id
        }
        if hidden:
            basket.items = _without(basket.items, hidden)
        return basket

    def _taken(
        self, case_id: int, keys: set[ItemKey] | None = None
    ) -> tuple[tuple[int, MailableItem], ...]:
        basket = self._cache.get(case_id)
        if basket is None:
            return ()
        return tuple(
            (index, item)
            for index, item in enumerate(basket.items)
            if keys is None or item.key in keys
        )

    async def _reconcile(self, case_id: int) -> None:
        try:
            await self._cache.refresh(case_id)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.warning("Basket refresh for case %s failed: %s", case_id, exc)


def _without(
    items: tuple[MailableItem, ...], keys: set[ItemKey]
) -> tuple[MailableItem, ...]:
    return tuple(item for item in items if item.key not in keys)


def _reinsert(
    items: tuple[MailableItem, ...], taken: tuple[tuple[int, MailableItem], ...]
) -> tuple[MailableItem, ...]:
    # Items already back in the list, e.g. from a refetch, are not duplicated.
    present = {item.key for item in items}
    restored = list(items)
    for index, item in taken:
        if item.key not in present:
            restored.insert(min(index, len(restored)), item)
    return tuple(restored)


def _retitle(
    items: tuple[MailableItem, ...], key: ItemKey, title: str | None
) -> tuple[MailableItem, ...]:
    return tuple(
        dataclasses.replace(item, title_override=title) if item.key == key else item
        for item in items
    )


__all__ = ["BasketEditor"]
