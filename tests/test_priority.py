"""Tests for priority tiers, due checks and work list ordering."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from pricewatch.db.models import PriceObservation, Product, ProductView, WatchlistItem
from pricewatch.ingest.base import ProductToTrack
from pricewatch.worker.priority import (
    ScheduledProduct,
    TrackingPriority,
    TrackingScheduler,
    TrackingSignal,
    calculate_priority,
    is_due,
    order_work_list,
)

NOW = datetime(2026, 3, 10, 12, 0, 0)


def test_watched_product_is_high():
    assert calculate_priority(TrackingSignal(watch_count=1), NOW) is TrackingPriority.HIGH


def test_view_exactly_seven_days_ago_is_high():
    signal = TrackingSignal(last_viewed_at=NOW - timedelta(days=7))
    assert calculate_priority(signal, NOW) is TrackingPriority.HIGH


def test_recent_price_change_is_medium():
    signal = TrackingSignal(
        last_viewed_at=NOW - timedelta(days=8),
        last_price_change_at=NOW - timedelta(days=3),
    )
    assert calculate_priority(signal, NOW) is TrackingPriority.MEDIUM


def test_view_within_thirty_days_is_low():
    signal = TrackingSignal(
        last_viewed_at=NOW - timedelta(days=20),
        last_price_change_at=NOW - timedelta(days=10),
    )
    assert calculate_priority(signal, NOW) is TrackingPriority.LOW


def test_no_activity_is_inactive():
    assert calculate_priority(TrackingSignal(), NOW) is TrackingPriority.INACTIVE
    old = TrackingSignal(last_viewed_at=NOW - timedelta(days=45))
    assert calculate_priority(old, NOW) is TrackingPriority.INACTIVE


def test_aware_timestamps_are_compared_in_utc():
    viewed = datetime(2026, 3, 3, 14, 0, tzinfo=timezone(timedelta(hours=2)))  # 12:00 UTC
    assert calculate_priority(TrackingSignal(last_viewed_at=viewed), NOW) is TrackingPriority.HIGH


def test_never_tracked_is_due():
    assert is_due(TrackingPriority.HIGH, None, NOW)
    assert is_due(TrackingPriority.INACTIVE, None, NOW)


def test_high_priority_due_after_twelve_hours():
    assert not is_due(TrackingPriority.HIGH, NOW - timedelta(hours=10), NOW)
    assert is_due(TrackingPriority.HIGH, NOW - timedelta(hours=12), NOW)


@pytest.mark.parametrize(
    "priority,hours",
    [
        (TrackingPriority.MEDIUM, 24),
        (TrackingPriority.LOW, 168),
        (TrackingPriority.INACTIVE, 720),
    ],
)
def test_tier_thresholds(priority, hours):
    assert not is_due(priority, NOW - timedelta(hours=hours - 1), NOW)
    assert is_due(priority, NOW - timedelta(hours=hours), NOW)


def test_force_bypasses_due_check():
    assert is_due(TrackingPriority.INACTIVE, NOW - timedelta(minutes=5), NOW, force=True)


def _scheduled(product_id, priority):
    product = ProductToTrack(id=product_id, merchant="exito", original_url=f"https://www.exito.com/{product_id}/p")
    return ScheduledProduct(product=product, priority=priority)


def test_work_list_orders_by_tier_and_keeps_catalog_order():
    items = [
        _scheduled(1, TrackingPriority.LOW),
        _scheduled(2, TrackingPriority.HIGH),
        _scheduled(3, TrackingPriority.INACTIVE),
        _scheduled(4, TrackingPriority.HIGH),
        _scheduled(5, TrackingPriority.MEDIUM),
    ]
    ordered = order_work_list(items, limit=4)
    assert [item.product.id for item in ordered] == [2, 4, 5, 1]


async def _add_product(session_factory, product_id, **fields):
    async with session_factory() as db:
        db.add(
            Product(
                id=product_id,
                merchant=fields.pop("merchant", "exito"),
                original_url=f"https://www.exito.com/{product_id}/p",
                normalized_url=f"https://www.exito.com/{product_id}/p",
                product_hash=f"hash-{product_id}",
                **fields,
            )
        )
        await db.commit()


@pytest.mark.asyncio
async def test_scheduler_builds_ordered_work_list(session_factory, repository):
    await _add_product(session_factory, 1, last_tracked_at=NOW - timedelta(days=40))  # inactive, due
    await _add_product(session_factory, 2, last_tracked_at=NOW - timedelta(hours=2))  # watched, not due
    await _add_product(session_factory, 3)  # never tracked
    await _add_product(session_factory, 4, last_tracked_at=NOW - timedelta(hours=30))  # price change, due
    await _add_product(session_factory, 5, tracking_enabled=False)
    await _add_product(session_factory, 6, merchant="falabella")
    await _add_product(session_factory, 7, last_tracked_at=NOW - timedelta(hours=13))  # viewed, due

    async with session_factory() as db:
        db.add(WatchlistItem(product_id=2, user_ref="user-1"))
        db.add(ProductView(product_id=7, viewed_at=NOW - timedelta(days=1)))
        db.add(PriceObservation(product_id=4, price=100, currency="COP", source="seed", observed_at=NOW - timedelta(days=5)))
        db.add(PriceObservation(product_id=4, price=90, currency="COP", source="automated-tracking", observed_at=NOW - timedelta(days=2)))
        await db.commit()

    scheduler = TrackingScheduler(repository)
    work_list = await scheduler.get_products_to_track(limit=10, merchant="exito", now=NOW)

    assert [(item.product.id, item.priority) for item in work_list] == [
        (7, TrackingPriority.HIGH),
        (4, TrackingPriority.MEDIUM),
        (1, TrackingPriority.INACTIVE),
        (3, TrackingPriority.INACTIVE),
    ]

    forced = await scheduler.get_products_to_track(limit=2, merchant="exito", force=True, now=NOW)
    assert [item.product.id for item in forced] == [2, 7]


class SlowSignalRepository:
    def __init__(self, products, watched=()):
        self.products = products
        self.watched = set(watched)
        self.in_flight = 0
        self.max_in_flight = 0

    async def list_products(self, product_filter=None):
        return list(self.products)

    async def _lookup(self, value):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)
        self.in_flight -= 1
        return value

    async def count_watchers(self, product_id):
        return await self._lookup(1 if product_id in self.watched else 0)

    async def last_viewed_at(self, product_id):
        return await self._lookup(None)

    async def last_price_change_at(self, product_id):
        return await self._lookup(None)


@pytest.mark.asyncio
async def test_signals_are_gathered_concurrently_within_bound():
    products = [
        ProductToTrack(id=i, merchant="exito", original_url=f"https://www.exito.com/{i}/p")
        for i in range(1, 13)
    ]
    repository = SlowSignalRepository(products, watched={9})
    scheduler = TrackingScheduler(repository, signal_concurrency=2)

    work_list = await scheduler.get_products_to_track(limit=20, now=NOW)

    # Two products at a time, three lookups each
    assert 1 < repository.max_in_flight <= 6
    assert work_list[0].product.id == 9
    assert work_list[0].priority == TrackingPriority.HIGH
    assert [item.product.id for item in work_list[1:]] == [i for i in range(1, 13) if i != 9]
