"""Change-only persistence of tracking results."""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from pricewatch import metrics
from pricewatch.config import settings
from pricewatch.db.repository import BaseRepository
from pricewatch.ingest.base import ErrorKind, ProductToTrack, TrackingResult

logger = logging.getLogger(__name__)

# Scale of the price column
PRICE_QUANTUM = Decimal("0.01")


@dataclass
class RecordOutcome:
    result: TrackingResult
    inserted: bool = False


class ObservationRecorder:
    """
    Writes a price observation only when the price changed.

    ``last_tracked_at`` is touched after every attempt, successful or not, so
    failing products still move back in the refresh queue.
    """

    def __init__(self, repository: BaseRepository, source: Optional[str] = None):
        self.repository = repository
        self.source = source or settings.observation_source

    async def record(self, product: ProductToTrack, result: TrackingResult) -> RecordOutcome:
        outcome = RecordOutcome(result=result)

        if result.success and result.price is not None:
            try:
                outcome.inserted = await self._store(product, result)
            except Exception as e:
                logger.error(f"Failed to persist observation for product {product.id}: {e}")
                outcome.result = self._persistence_failure(result, e)

        try:
            await self.repository.touch_last_tracked(product.id)
        except Exception as e:
            logger.error(f"Failed to update last_tracked_at for product {product.id}: {e}")
            if outcome.result.success:
                outcome.result = self._persistence_failure(result, e)

        return outcome

    async def _store(self, product: ProductToTrack, result: TrackingResult) -> bool:
        price = result.price.quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)
        currency = (result.currency or product.currency or settings.default_currency).upper()
        latest = await self.repository.get_latest_observation(product.id)

        inserted = False
        if latest is None or latest.price != price:
            await self.repository.insert_observation(
                product_id=product.id,
                price=price,
                currency=currency,
                source=self.source,
            )
            inserted = True
            metrics.record_observation(product.merchant, latest.price if latest else None, price)

            if latest is None:
                logger.info(f"Product {product.id}: first observation {price} {currency}")
            elif latest.price:
                change = (price - latest.price) / latest.price * 100
                logger.info(
                    f"Product {product.id}: {latest.price} -> {price} {currency} ({change:+.1f}%)"
                )
            else:
                logger.info(f"Product {product.id}: {latest.price} -> {price} {currency}")
        else:
            logger.debug(f"Product {product.id}: price unchanged at {price}")

        title = result.title if result.title and result.title != product.title else None
        new_currency = currency if currency != (product.currency or "").upper() else None
        if title or new_currency:
            await self.repository.update_product_details(product.id, title=title, currency=new_currency)

        return inserted

    @staticmethod
    def _persistence_failure(result: TrackingResult, error: Exception) -> TrackingResult:
        return TrackingResult.failure(
            product_id=result.product_id,
            strategy_used=result.strategy_used,
            error=f"persistence: {type(error).__name__}: {error}",
            error_kind=ErrorKind.PERSISTENCE,
            duration_ms=result.duration_ms,
        )
