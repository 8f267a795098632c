"""SQLAlchemy database models."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from pricewatch.utils.timeutil import utcnow


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Product(Base):
    """Catalog product whose price is tracked."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    merchant: Mapped[str] = mapped_column(String(64), nullable=False)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_url: Mapped[str] = mapped_column(Text, nullable=False)
    product_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)  # Last known
    tracking_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_tracked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    # Relationships
    observations: Mapped[list["PriceObservation"]] = relationship(
        "PriceObservation", back_populates="product", cascade="all, delete-orphan"
    )
    watchlist_items: Mapped[list["WatchlistItem"]] = relationship(
        "WatchlistItem", back_populates="product", cascade="all, delete-orphan"
    )
    views: Mapped[list["ProductView"]] = relationship(
        "ProductView", back_populates="product", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_products_merchant", "merchant"),
        Index("ix_products_last_tracked_at", "last_tracked_at"),
    )


class PriceObservation(Base):
    """Append-only price history; a row is written only when the price changes."""

    __tablename__ = "price_observations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)  # seed, import, automated-tracking
    observed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    # Relationships
    product: Mapped["Product"] = relationship("Product", back_populates="observations")

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_price_observations_price_non_negative"),
        Index("ix_price_observations_product_observed", "product_id", "observed_at"),
    )


class WatchlistItem(Base):
    """A user watching a product; any watcher puts the product in the top tier."""

    __tablename__ = "watchlist_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    user_ref: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    # Relationships
    product: Mapped["Product"] = relationship("Product", back_populates="watchlist_items")

    __table_args__ = (Index("ix_watchlist_items_product_id", "product_id"),)


class ProductView(Base):
    """Product page view, recorded by the (external) frontend."""

    __tablename__ = "product_views"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    anonymous_user_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    viewed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    # Relationships
    product: Mapped["Product"] = relationship("Product", back_populates="views")

    __table_args__ = (Index("ix_product_views_product_viewed", "product_id", "viewed_at"),)
