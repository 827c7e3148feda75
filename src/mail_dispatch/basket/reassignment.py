"""Optimistic moves of basket items between information sources."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from enum import StrEnum

from mail_dispatch.core.interfaces import BasketBackend
from mail_dispatch.core.models import Basket, ItemKey, ItemKind, MailableItem
from mail_dispatch.core.notices import NoticeBoard

from .cache import BasketCache

LOGGER = logging.getLogger(__name__)

MOVE_FAILED = "Could not move the item to the selected group."
REFRESH_FAILED = "The item was moved, but the basket could not be refreshed."


class MoveOutcome(StrEnum):
    """How a move request was finally resolved."""

    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    SUPERSEDED = "superseded"


@dataclass(frozen=True, slots=True)
class PendingMove:
    """A move whose persistence call has not resolved yet."""

    case_id: int
    key: ItemKey
    from_source_id: int | None
    to_source_id: int | None
    generation: int


def _retag(
    items: tuple[MailableItem, ...], key: ItemKey, source_id: int | None
) -> tuple[MailableItem, ...]:
    return tuple(
        dataclasses.replace(item, source_id=source_id) if item.key == key else item
        for item in items
    )


class ReassignmentCoordinator:
    """Move items between groups with zero perceived latency.

    The move is applied to the cached basket at once and persisted in the
    background. Every item has a move generation that increases with each
    move; a response is only acted on when it belongs to the item's latest
    generation, so overlapping moves resolve to the most recently issued one
    whatever order the network answers in.
    """

    def __init__(
        self,
        cache: BasketCache,
        backend: BasketBackend,
        notices: NoticeBoard,
    ) -> None:
        """Wire the coordinator to the cache it edits and the backend it writes."""
        self._cache = cache
        self._backend = backend
        self._notices = notices
        self._generations: dict[ItemKey, int] = {}
        self._pending: dict[ItemKey, PendingMove] = {}
        self._tasks: set[asyncio.Task[MoveOutcome]] = set()
        cache.add_rebase_hook(self._reapply_pending)

    def generation(self, kind: ItemKind, item_id: int) -> int:
        """Latest move generation issued for an item, 0 if never moved."""
        return self._generations.get((kind, item_id), 0)

    def pending(self, case_id: int) -> tuple[PendingMove, ...]:
        """Moves for ``case_id`` still waiting on the backend."""
        return tuple(m for m in self._pending.values() if m.case_id == case_id)

    def move_item(
        self,
        case_id: int,
        item_id: int,
        kind: ItemKind,
        from_source_id: int | None,
        to_source_id: int | None,
    ) -> asyncio.Task[MoveOutcome]:
        """Move an item to ``to_source_id``.

        The cached basket reflects the move before this returns. The returned
        task resolves once the persistence call has been reconciled.
        """
        key: ItemKey = (kind, item_id)
        generation = self._generations.get(key, 0) + 1
        self._generations[key] = generation
        move = PendingMove(
            case_id=case_id,
            key=key,
            from_source_id=from_source_id,
            to_source_id=to_source_id,
            generation=generation,
        )
        self._pending[key] = move
        self._cache.apply_local(
            case_id, lambda items: _retag(items, key, to_source_id)
        )
        LOGGER.info(
            "Moving %s %s from source %s to %s (generation %s)",
            kind,
            item_id,
            from_source_id,
            to_source_id,
            generation,
        )

        task = asyncio.get_running_loop().create_task(self._persist(move))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait until every outstanding move has been reconciled."""
        while self._tasks:
            await asyncio.gather(*self._tasks)

    def _is_latest(self, move: PendingMove) -> bool:
        return self._generations.get(move.key) == move.generation

    async def _persist(self, move: PendingMove) -> MoveOutcome:
        kind, item_id = move.key
        try:
            await self._backend.set_item_source(kind, item_id, move.to_source_id)
        except Exception as exc:  # pylint: disable=broad-except
            if not self._is_latest(move):
                LOGGER.debug(
                    "Ignoring failure of superseded move %s generation %s",
                    move.key,
                    move.generation,
                )
                return MoveOutcome.SUPERSEDED
            self._pending.pop(move.key, None)
            self._cache.apply_local(
                move.case_id,
                lambda items: _retag(items, move.key, move.from_source_id),
            )
            self._notices.failure(exc, MOVE_FAILED)
            return MoveOutcome.ROLLED_BACK

        if not self._is_latest(move):
            LOGGER.debug(
                "Ignoring success of superseded move %s generation %s",
                move.key,
                move.generation,
            )
            return MoveOutcome.SUPERSEDED

        self._pending.pop(move.key, None)
        try:
            await self._cache.refresh(move.case_id)
        except Exception as exc:  # pylint: disable=broad-except
            self._notices.failure(exc, REFRESH_FAILED)
        return MoveOutcome.COMMITTED

    def _reapply_pending(self, basket: Basket) -> Basket:
        for move in self._pending.values():
            if move.case_id == basket.case_id:
                basket.items = _retag(basket.items, move.key, move.to_source_id)
        return basket


__all__ = ["MoveOutcome", "PendingMove", "ReassignmentCoordinator"]
