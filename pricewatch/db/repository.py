"""Persistence interface used by the tracking engine, plus its SQLAlchemy adapter."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricewatch.db.models import PriceObservation, Product, ProductView, WatchlistItem
from pricewatch.ingest.base import ProductToTrack
from pricewatch.normalize.urls import normalize_url, product_hash
from pricewatch.utils.timeutil import utcnow

logger = logging.getLogger(__name__)


@dataclass
class ProductFilter:
    """Catalog filter for a tracking run."""

    merchant: Optional[str] = None


@dataclass
class ObservationRecord:
    price: Decimal
    currency: str
    source: str
    observed_at: datetime


class BaseRepository(ABC):
    """Narrow async persistence interface the engine depends on."""

    @abstractmethod
    async def list_products(self, product_filter: Optional[ProductFilter] = None) -> List[ProductToTrack]:
        """Tracking-enabled products in catalog order."""

    @abstractmethod
    async def get_latest_observation(self, product_id: int) -> Optional[ObservationRecord]:
        pass

    @abstractmethod
    async def insert_observation(
        self,
        product_id: int,
        price: Decimal,
        currency: str,
        source: str,
        observed_at: Optional[datetime] = None,
    ) -> int:
        pass

    @abstractmethod
    async def touch_last_tracked(self, product_id: int, tracked_at: Optional[datetime] = None) -> None:
        pass

    @abstractmethod
    async def count_watchers(self, product_id: int) -> int:
        pass

    @abstractmethod
    async def last_viewed_at(self, product_id: int) -> Optional[datetime]:
        pass

    @abstractmethod
    async def last_price_change_at(self, product_id: int) -> Optional[datetime]:
        pass

    @abstractmethod
    async def update_product_details(
        self, product_id: int, title: Optional[str] = None, currency: Optional[str] = None
    ) -> None:
        pass

    @abstractmethod
    async def upsert_product(
        self,
        merchant: str,
        original_url: str,
        title: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> ProductToTrack:
        pass


def _to_tracked(product: Product) -> ProductToTrack:
    return ProductToTrack(
        id=product.id,
        merchant=product.merchant,
        original_url=product.original_url,
        title=product.title or "",
        normalized_url=product.normalized_url,
        currency=product.currency,
        last_tracked_at=product.last_tracked_at,
    )


class SqlAlchemyRepository(BaseRepository):
    """
    Repository over an async session factory.

    Every call opens its own short session so that a failure while persisting
    one product never leaves another product's unit of work half-applied.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_products(self, product_filter: Optional[ProductFilter] = None) -> List[ProductToTrack]:
        query = select(Product).where(Product.tracking_enabled.is_(True))
        if product_filter and product_filter.merchant:
            query = query.where(Product.merchant == product_filter.merchant)
        query = query.order_by(Product.id)

        async with self.session_factory() as db:
            result = await db.execute(query)
            return [_to_tracked(product) for product in result.scalars().all()]

    async def get_latest_observation(self, product_id: int) -> Optional[ObservationRecord]:
        query = (
            select(PriceObservation)
            .where(PriceObservation.product_id == product_id)
            .order_by(PriceObservation.observed_at.desc(), PriceObservation.id.desc())
            .limit(1)
        )
        async with self.session_factory() as db:
            observation = (await db.execute(query)).scalar_one_or_none()
            if observation is None:
                return None
            return ObservationRecord(
                price=observation.price,
                currency=observation.currency,
                source=observation.source,
                observed_at=observation.observed_at,
            )

    async def insert_observation(
        self,
        product_id: int,
        price: Decimal,
        currency: str,
        source: str,
        observed_at: Optional[datetime] = None,
    ) -> int:
        async with self.session_factory() as db:
            observation = PriceObservation(
                product_id=product_id,
                price=price,
                currency=currency,
                source=source,
                observed_at=observed_at or utcnow(),
            )
            db.add(observation)
            await db.commit()
            return observation.id

    async def touch_last_tracked(self, product_id: int, tracked_at: Optional[datetime] = None) -> None:
        async with self.session_factory() as db:
            await db.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(last_tracked_at=tracked_at or utcnow())
            )
            await db.commit()

    async def count_watchers(self, product_id: int) -> int:
        async with self.session_factory() as db:
            result = await db.execute(
                select(func.count(WatchlistItem.id)).where(WatchlistItem.product_id == product_id)
            )
            return int(result.scalar_one())

    async def last_viewed_at(self, product_id: int) -> Optional[datetime]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(func.max(ProductView.viewed_at)).where(ProductView.product_id == product_id)
            )
            return result.scalar_one_or_none()

    async def last_price_change_at(self, product_id: int) -> Optional[datetime]:
        """When the latest observation differs from the one before it, its timestamp."""
        query = (
            select(PriceObservation.price, PriceObservation.observed_at)
            .where(PriceObservation.product_id == product_id)
            .order_by(PriceObservation.observed_at.desc(), PriceObservation.id.desc())
            .limit(2)
        )
        async with self.session_factory() as db:
            rows = (await db.execute(query)).all()

        if len(rows) < 2:
            return None
        latest, previous = rows
        if Decimal(latest.price) != Decimal(previous.price):
            return latest.observed_at
        return None

    async def update_product_details(
        self, product_id: int, title: Optional[str] = None, currency: Optional[str] = None
    ) -> None:
        values = {}
        if title:
            values["title"] = title
        if currency:
            values["currency"] = currency
        if not values:
            return

        async with self.session_factory() as db:
            await db.execute(update(Product).where(Product.id == product_id).values(**values))
            await db.commit()

    async def upsert_product(
        self,
        merchant: str,
        original_url: str,
        title: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> ProductToTrack:
        """Insert a product keyed on its hash; an existing row is returned untouched."""
        normalized = normalize_url(original_url, merchant)
        key = product_hash(merchant, normalized)

        async with self.session_factory() as db:
            existing = await self._find_by_hash(db, key)
            if existing is not None:
                return _to_tracked(existing)

            product = Product(
                merchant=merchant,
                original_url=original_url,
                normalized_url=normalized,
                product_hash=key,
                title=title,
                currency=currency,
            )
            db.add(product)
            try:
                await db.commit()
            except IntegrityError:
                # Another writer inserted the same hash first
                await db.rollback()
                existing = await self._find_by_hash(db, key)
                if existing is None:
                    raise
                logger.debug(f"Product {key[:12]} inserted concurrently, reusing row {existing.id}")
                return _to_tracked(existing)
            logger.info(f"Added product {product.id} ({merchant}) {normalized[:80]}")
            return _to_tracked(product)

    @staticmethod
    async def _find_by_hash(db: AsyncSession, key: str) -> Optional[Product]:
        result = await db.execute(select(Product).where(Product.product_hash == key))
        return result.scalar_one_or_none()
