"""Priority tiers and refresh cadence for tracked products.

Products people look at are refreshed often; products nobody has touched in a
month are refreshed monthly. The tier is a pure function of the product's
tracking signal and is recomputed on every run.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from pricewatch.db.repository import BaseRepository, ProductFilter
from pricewatch.ingest.base import ProductToTrack
from pricewatch.utils.timeutil import as_naive_utc, utcnow

logger = logging.getLogger(__name__)

RECENT_ACTIVITY = timedelta(days=7)
STALE_VIEW = timedelta(days=30)


class TrackingPriority(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INACTIVE = "INACTIVE"


# Hours between refreshes per tier
TIER_THRESHOLD_HOURS: Dict[TrackingPriority, int] = {
    TrackingPriority.HIGH: 12,
    TrackingPriority.MEDIUM: 24,
    TrackingPriority.LOW: 168,
    TrackingPriority.INACTIVE: 720,
}

TIER_ORDER: Tuple[TrackingPriority, ...] = (
    TrackingPriority.HIGH,
    TrackingPriority.MEDIUM,
    TrackingPriority.LOW,
    TrackingPriority.INACTIVE,
)


@dataclass
class TrackingSignal:
    """Activity signals the tier is derived from."""

    watch_count: int = 0
    last_viewed_at: Optional[datetime] = None
    last_price_change_at: Optional[datetime] = None
    last_tracked_at: Optional[datetime] = None


@dataclass
class ScheduledProduct:
    product: ProductToTrack
    priority: TrackingPriority


def _within(moment: Optional[datetime], window: timedelta, now: datetime) -> bool:
    if moment is None:
        return False
    return now - as_naive_utc(moment) <= window


def calculate_priority(signal: TrackingSignal, now: Optional[datetime] = None) -> TrackingPriority:
    """
    Assign a priority tier.

    HIGH: watched by anyone, or viewed in the last 7 days.
    MEDIUM: price changed in the last 7 days.
    LOW: viewed in the last 30 days.
    INACTIVE: everything else.
    Boundaries are inclusive (exactly 7 days ago still counts as recent).
    """
    now = as_naive_utc(now) if now else utcnow()

    if signal.watch_count > 0 or _within(signal.last_viewed_at, RECENT_ACTIVITY, now):
        return TrackingPriority.HIGH
    if _within(signal.last_price_change_at, RECENT_ACTIVITY, now):
        return TrackingPriority.MEDIUM
    if _within(signal.last_viewed_at, STALE_VIEW, now):
        return TrackingPriority.LOW
    return TrackingPriority.INACTIVE


def is_due(
    priority: TrackingPriority,
    last_tracked_at: Optional[datetime],
    now: Optional[datetime] = None,
    force: bool = False,
) -> bool:
    """Whether a product should be refreshed in this run."""
    if force or last_tracked_at is None:
        return True

    now = as_naive_utc(now) if now else utcnow()
    hours_since = (now - as_naive_utc(last_tracked_at)).total_seconds() / 3600
    return hours_since >= TIER_THRESHOLD_HOURS[priority]


def order_work_list(scheduled: Sequence[ScheduledProduct], limit: Optional[int] = None) -> List[ScheduledProduct]:
    """Order by tier, keeping catalog order within a tier, then truncate."""
    rank = {tier: index for index, tier in enumerate(TIER_ORDER)}
    ordered = sorted(scheduled, key=lambda item: rank[item.priority])
    return ordered if limit is None else ordered[:limit]


class TrackingScheduler:
    """Builds the ordered work list for a run from repository signals."""

    def __init__(self, repository: BaseRepository, signal_concurrency: int = 5):
        self.repository = repository
        self.signal_concurrency = max(1, signal_concurrency)

    async def get_signal(self, product: ProductToTrack) -> TrackingSignal:
        watch_count, last_viewed_at, last_price_change_at = await asyncio.gather(
            self.repository.count_watchers(product.id),
            self.repository.last_viewed_at(product.id),
            self.repository.last_price_change_at(product.id),
        )
        return TrackingSignal(
            watch_count=watch_count,
            last_viewed_at=last_viewed_at,
            last_price_change_at=last_price_change_at,
            last_tracked_at=product.last_tracked_at,
        )

    async def _gather_signals(self, products: Sequence[ProductToTrack]) -> List[TrackingSignal]:
        semaphore = asyncio.Semaphore(self.signal_concurrency)

        async def bounded(product: ProductToTrack) -> TrackingSignal:
            async with semaphore:
                return await self.get_signal(product)

        return await asyncio.gather(*(bounded(product) for product in products))

    async def get_products_to_track(
        self,
        limit: int,
        merchant: Optional[str] = None,
        force: bool = False,
        now: Optional[datetime] = None,
    ) -> List[ScheduledProduct]:
        """
        Due products, highest tier first.

        Args:
            limit: Maximum number of products in the work list
            merchant: Only consider this merchant's products
            force: Ignore refresh cadence and treat every product as due
            now: Reference time (defaults to the current UTC time)

        Returns:
            Ordered work list of at most ``limit`` products
        """
        now = as_naive_utc(now) if now else utcnow()
        products = await self.repository.list_products(ProductFilter(merchant=merchant))

        scheduled: List[ScheduledProduct] = []
        signals = await self._gather_signals(products)
        for product, signal in zip(products, signals):
            priority = calculate_priority(signal, now)
            if is_due(priority, signal.last_tracked_at, now, force):
                scheduled.append(ScheduledProduct(product=product, priority=priority))

        work_list = order_work_list(scheduled, limit)

        distribution = Counter(item.priority for item in work_list)
        logger.info(
            f"Selected {len(work_list)} of {len(products)} products "
            f"(due: {len(scheduled)}, force: {force}) - "
            + ", ".join(f"{tier.value}={distribution.get(tier, 0)}" for tier in TIER_ORDER)
        )
        return work_list
