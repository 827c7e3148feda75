"""Per-case basket cache with issue-order gated writes."""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Callable, Iterable

from mail_dispatch.core.interfaces import BasketBackend
from mail_dispatch.core.models import (
    Basket,
    InformationSource,
    ItemKind,
    MailableItem,
    SourceGroup,
)
from mail_dispatch.core.scheduling import PeriodicPoller

from .grouping import group_items

LOGGER = logging.getLogger(__name__)

RebaseHook = Callable[[Basket], Basket]
ItemsEdit = Callable[[tuple[MailableItem, ...]], tuple[MailableItem, ...]]


class BasketCache:
    """Cache of flagged items per case.

    Every fetch takes an issue stamp before the request goes out. A response
    is only stored when its stamp is at or after the stamp of the cached
    entry and after the last invalidation, so a slow, older fetch can never
    overwrite newer data.
    """

    def __init__(
        self,
        backend: BasketBackend,
        *,
        sources: Iterable[InformationSource] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialise an empty cache over ``backend``."""
        self._backend = backend
        self._clock = clock
        self._stamps = itertools.count(1)
        self._entries: dict[int, Basket] = {}
        self._floors: dict[int, int] = {}
        self._rebase_hooks: list[RebaseHook] = []
        self._sources: dict[int, InformationSource] = {}
        self.update_sources(sources)

    @property
    def sources(self) -> dict[int, InformationSource]:
        return dict(self._sources)

    def update_sources(self, sources: Iterable[InformationSource]) -> None:
        """Replace the reference data used to name groups."""
        self._sources = {source.id: source for source in sources}

    def add_rebase_hook(self, hook: RebaseHook) -> None:
        """Register ``hook`` to adjust every freshly fetched basket before storing.

        Used to re-apply optimistic edits still in flight on top of server data.
        """
        self._rebase_hooks.append(hook)

    def get(self, case_id: int) -> Basket | None:
        """Return the cached basket without touching the network."""
        return self._entries.get(case_id)

    def groups(self, case_id: int) -> list[SourceGroup]:
        """Return the cached basket grouped by source, empty when not cached."""
        basket = self._entries.get(case_id)
        if basket is None:
            return []
        return group_items(basket.items, self._sources)

    async def fetch(self, case_id: int, force: bool = False) -> Basket:
        """Return the basket for ``case_id``, loading it when needed.

        Raises whatever the backend raises; the cached entry is left as it was.
        """
        cached = self._entries.get(case_id)
        if cached is not None and not force:
            LOGGER.debug("Basket cache hit for case %s", case_id)
            return cached

        stamp = next(self._stamps)
        fetched_at = self._clock()
        LOGGER.debug("Fetching basket for case %s (stamp %s)", case_id, stamp)
        activities, documents = await asyncio.gather(
            self._backend.list_flagged_items(case_id, ItemKind.ACTIVITY),
            self._backend.list_flagged_items(case_id, ItemKind.DOCUMENT),
        )
        basket = Basket(
            case_id=case_id,
            items=tuple(activities) + tuple(documents),
            fetched_at=fetched_at,
            issue_stamp=stamp,
        )
        return self._store(basket)

    async def refresh(self, case_id: int) -> Basket:
        """Invalidate and force a refetch, reconciling server-side effects.

        When the refetch fails the last known good basket is put back.
        """
        previous = self._entries.get(case_id)
        self.invalidate(case_id)
        try:
            return await self.fetch(case_id, force=True)
        except Exception:
            if previous is not None and case_id not in self._entries:
                self._entries[case_id] = previous
            raise

    def poller(self, case_id: int, interval_seconds: float) -> PeriodicPoller:
        """Return a poller that force-fetches the basket for ``case_id``."""
        return PeriodicPoller(
            f"basket-{case_id}",
            interval_seconds,
            lambda: self.fetch(case_id, force=True),
        )

    def invalidate(self, case_id: int) -> None:
        """Drop the cached basket; fetches issued before this are discarded."""
        self._entries.pop(case_id, None)
        self._floors[case_id] = next(self._stamps)
        LOGGER.debug("Invalidated basket for case %s", case_id)

    def apply_local(self, case_id: int, edit: ItemsEdit) -> bool:
        """Apply an optimistic edit to the cached items.

        Returns ``False`` when the case is not cached.
        """
        basket = self._entries.get(case_id)
        if basket is None:
            return False
        basket.items = edit(basket.items)
        return True

    def _store(self, basket: Basket) -> Basket:
        case_id = basket.case_id
        current = self._entries.get(case_id)
        floor = self._floors.get(case_id, 0)
        if basket.issue_stamp < floor or (
            current is not None and basket.issue_stamp < current.issue_stamp
        ):
            LOGGER.debug(
                "Discarding stale basket for case %s (stamp %s)",
                case_id,
                basket.issue_stamp,
            )
            return current if current is not None else basket

        for hook in self._rebase_hooks:
            basket = hook(basket)
        self._entries[case_id] = basket
        return basket


__all__ = ["BasketCache"]
