"""Batch tracking runs."""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from pricewatch import metrics
from pricewatch.config import settings
from pricewatch.db.repository import BaseRepository, SqlAlchemyRepository
from pricewatch.db.session import AsyncSessionLocal
from pricewatch.ingest.base import ErrorKind, ProductToTrack, TrackingResult
from pricewatch.ingest.fetchers.headless import BrowserHandle, BrowserHardStrategy
from pricewatch.ingest.fetchers.static import HttpFastStrategy
from pricewatch.ingest.strategy_selector import StrategyKind, StrategySelector
from pricewatch.worker.priority import ScheduledProduct, TrackingScheduler
from pricewatch.worker.recorder import ObservationRecorder, RecordOutcome

logger = logging.getLogger(__name__)

SUMMARY_TITLE_LENGTH = 50


def _short_title(product: ProductToTrack) -> str:
    title = product.title or product.original_url
    if len(title) > SUMMARY_TITLE_LENGTH:
        return title[:SUMMARY_TITLE_LENGTH] + "..."
    return title


@dataclass
class FailedItem:
    product_id: int
    title: str
    error: str
    error_kind: Optional[ErrorKind] = None


@dataclass
class RunSummary:
    """Aggregate outcome of one tracking run."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    bot_detections: int = 0
    observations_inserted: int = 0
    failures: List[FailedItem] = field(default_factory=list)
    results: List[TrackingResult] = field(default_factory=list)

    def add(self, product: ProductToTrack, outcome: RecordOutcome):
        result = outcome.result
        self.total += 1
        self.results.append(result)

        if outcome.inserted:
            self.observations_inserted += 1

        if result.success:
            self.successful += 1
            return

        self.failed += 1
        if result.error_kind == ErrorKind.BOT_DETECTION:
            self.bot_detections += 1
        self.failures.append(
            FailedItem(
                product_id=product.id,
                title=_short_title(product),
                error=result.error or "unknown error",
                error_kind=result.error_kind,
            )
        )

    def log(self):
        logger.info(
            f"Tracking run finished: {self.total} tracked, {self.successful} successful, "
            f"{self.failed} failed ({self.bot_detections} bot detection), "
            f"{self.observations_inserted} observations recorded"
        )
        for item in self.failures:
            logger.warning(f"  - [{item.product_id}] {item.title}: {item.error}")


class BatchRunner:
    """
    Tracks a work list in fixed-size concurrent batches.

    Items in a batch run concurrently; the next batch starts only once the
    current one is done, after a randomized pause. Item failures are counted,
    never raised. The only fatal condition is the shared renderer failing to
    start, which is checked up front when the work list needs it.
    """

    def __init__(
        self,
        selector: StrategySelector,
        recorder: ObservationRecorder,
        concurrency: Optional[int] = None,
        delay_range: Optional[Tuple[float, float]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.selector = selector
        self.recorder = recorder
        self.concurrency = max(1, concurrency or settings.default_concurrency)
        self.delay_range = delay_range or (
            settings.batch_delay_min_seconds,
            settings.batch_delay_max_seconds,
        )
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def run(self, work_list: Sequence[ProductToTrack]) -> RunSummary:
        summary = RunSummary()
        if not work_list:
            return summary

        # Raises RendererUnavailableError: fatal for the run
        if any(self.selector.kind_for(p.original_url) is StrategyKind.BROWSER_HARD for p in work_list):
            await self.selector.strategy(StrategyKind.BROWSER_HARD).start()

        batches = [
            list(work_list[i:i + self.concurrency])
            for i in range(0, len(work_list), self.concurrency)
        ]
        for index, batch in enumerate(batches, start=1):
            logger.info(f"Batch {index}/{len(batches)}: {len(batch)} products")
            outcomes = await asyncio.gather(*(self._process(product) for product in batch))
            for product, outcome in zip(batch, outcomes):
                summary.add(product, outcome)

            if index < len(batches):
                delay = self._rng.uniform(*self.delay_range)
                logger.debug(f"Waiting {delay:.1f}s before next batch")
                await self._sleep(delay)

        return summary

    async def _process(self, product: ProductToTrack) -> RecordOutcome:
        strategy = self.selector.select(product.original_url)
        try:
            result = await strategy.track(product)
        except Exception as e:
            logger.exception(f"Strategy {strategy.name} raised for product {product.id}: {e}")
            result = TrackingResult.failure(product.id, strategy.name, f"{type(e).__name__}: {e}")

        metrics.record_attempt(
            result.strategy_used,
            result.success,
            result.duration_ms,
            result.error_kind.value if result.error_kind else None,
        )

        if result.success:
            logger.info(f"[{product.id}] {result.price} {result.currency} via {result.method}")
        else:
            logger.warning(f"[{product.id}] {_short_title(product)}: {result.error}")

        return await self.recorder.record(product, result)


async def track_prices(
    limit: Optional[int] = None,
    merchant: Optional[str] = None,
    concurrency: Optional[int] = None,
    force: Optional[bool] = None,
    repository: Optional[BaseRepository] = None,
    selector: Optional[StrategySelector] = None,
) -> RunSummary:
    """
    Run one tracking pass: schedule, fetch, record.

    Args:
        limit: Maximum number of products to track
        merchant: Only track this merchant's products
        concurrency: Products per batch
        force: Track every product regardless of refresh cadence
        repository: Persistence adapter (defaults to the SQLAlchemy one)
        selector: Strategy selector (defaults to a fresh HTTP + browser pair)

    Raises:
        RendererUnavailableError: The browser was needed but could not start
    """
    limit = limit or settings.default_limit
    force = settings.force_mode if force is None else force
    repository = repository or SqlAlchemyRepository(AsyncSessionLocal)

    scheduler = TrackingScheduler(repository)
    scheduled: List[ScheduledProduct] = await scheduler.get_products_to_track(
        limit=limit, merchant=merchant, force=force
    )
    if not scheduled:
        logger.info("No products due for tracking")
        return RunSummary()

    handle: Optional[BrowserHandle] = None
    if selector is None:
        handle = BrowserHandle()
        selector = StrategySelector(
            http_strategy=HttpFastStrategy(),
            browser_strategy=BrowserHardStrategy(handle=handle),
        )

    runner = BatchRunner(selector, ObservationRecorder(repository), concurrency=concurrency)
    try:
        summary = await runner.run([item.product for item in scheduled])
    finally:
        await selector.close_all()
        if handle is not None:
            await handle.close()

    summary.log()
    return summary
