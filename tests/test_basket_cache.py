"""Tests for the per-case basket cache."""

from __future__ import annotations

import asyncio

import pytest

from mail_dispatch.basket.cache import BasketCache
from mail_dispatch.core.errors import TransportError
from mail_dispatch.core.models import InformationSource, ItemKind, MailableItem


def _activity(item_id: int, source_id: int | None, label: str = "Task") -> MailableItem:
    return MailableItem(
        id=item_id, kind=ItemKind.ACTIVITY, label=label, source_id=source_id
    )


def _document(item_id: int, source_id: int | None) -> MailableItem:
    return MailableItem(
        id=item_id,
        kind=ItemKind.DOCUMENT,
        label=f"Doc {item_id}.pdf",
        source_id=source_id,
        group_number=1.0,
        document_number=item_id,
    )


@pytest.mark.asyncio
async def test_fetch_combines_activities_and_documents(basket_backend) -> None:
    """A fetch loads both kinds and later reads are served from the cache."""

    basket_backend.seed(7, _activity(1, 1), _document(2, 1))
    cache = BasketCache(basket_backend, sources=[InformationSource(1, "Bank")])

    basket = await cache.fetch(7)
    again = await cache.fetch(7)

    assert again is basket
    assert [item.key for item in basket.items] == [
        (ItemKind.ACTIVITY, 1),
        (ItemKind.DOCUMENT, 2),
    ]
    assert len(basket_backend.calls) == 2
    groups = cache.groups(7)
    assert [group.name for group in groups] == ["Bank"]
    assert groups[0].size == 2


@pytest.mark.asyncio
async def test_older_response_never_replaces_newer_entry(basket_backend) -> None:
    """A slow fetch issued first is discarded when a later fetch already landed."""

    basket_backend.seed(7, _activity(1, 1, "old"))
    cache = BasketCache(basket_backend)

    gate = asyncio.Event()
    basket_backend.hold = gate
    slow = asyncio.create_task(cache.fetch(7, force=True))
    await asyncio.sleep(0)

    basket_backend.hold = None
    basket_backend.seed(7, _activity(1, 1, "new"))
    fresh = await cache.fetch(7, force=True)

    gate.set()
    result = await slow

    assert result is fresh
    assert cache.get(7) is fresh
    assert cache.get(7).items[0].label == "new"


@pytest.mark.asyncio
async def test_invalidate_discards_fetch_already_in_flight(basket_backend) -> None:
    """Data requested before an invalidation never repopulates the cache."""

    basket_backend.seed(7, _activity(1, 1))
    cache = BasketCache(basket_backend)

    gate = asyncio.Event()
    basket_backend.hold = gate
    pending = asyncio.create_task(cache.fetch(7, force=True))
    await asyncio.sleep(0)

    cache.invalidate(7)
    gate.set()
    await pending

    assert cache.get(7) is None


@pytest.mark.asyncio
async def test_refresh_failure_keeps_last_known_basket(basket_backend) -> None:
    """A failed refresh raises and leaves the previous basket in place."""

    basket_backend.seed(7, _activity(1, 1))
    cache = BasketCache(basket_backend)
    previous = await cache.fetch(7)

    basket_backend.fail_reads = TransportError("offline")
    with pytest.raises(TransportError):
        await cache.refresh(7)

    assert cache.get(7) is previous


@pytest.mark.asyncio
async def test_refresh_reflects_server_side_changes(basket_backend) -> None:
    """refresh always goes to the backend, even with a cached entry."""

    basket_backend.seed(7, _activity(1, 1))
    cache = BasketCache(basket_backend)
    await cache.fetch(7)

    basket_backend.seed(7)
    refreshed = await cache.refresh(7)

    assert refreshed.items == ()
    assert cache.groups(7) == []


@pytest.mark.asyncio
async def test_rebase_hooks_adjust_fetched_baskets(basket_backend) -> None:
    """Hooks run on every stored basket before it becomes visible."""

    basket_backend.seed(7, _activity(1, 1), _activity(2, 1))
    cache = BasketCache(basket_backend)

    def drop_second(basket):
        basket.items = tuple(item for item in basket.items if item.id != 2)
        return basket

    cache.add_rebase_hook(drop_second)
    basket = await cache.fetch(7)

    assert [item.id for item in basket.items] == [1]


def test_apply_local_requires_cached_case(basket_backend) -> None:
    """Optimistic edits are a no-op for cases that were never loaded."""

    cache = BasketCache(basket_backend)

    assert cache.apply_local(7, lambda items: ()) is False
    assert cache.groups(7) == []


@pytest.mark.asyncio
async def test_poller_refetches_and_survives_failures(basket_backend) -> None:
    """Background polls pick up server changes; a failed poll keeps the entry."""

    basket_backend.seed(7, _activity(1, 1))
    cache = BasketCache(basket_backend)
    first = await cache.fetch(7)
    poller = cache.poller(7, 60)

    basket_backend.seed(7, _activity(1, 1), _activity(2, None))
    assert await poller.poll_once() is True
    assert [item.id for item in cache.get(7).items] == [1, 2]

    polled = cache.get(7)
    basket_backend.fail_reads = TransportError("offline")
    assert await poller.poll_once() is False
    assert cache.get(7) is polled
    assert polled is not first
