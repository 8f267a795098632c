"""Base strategy interface and the shapes shared across the tracking pipeline."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

BOT_DETECTION = "bot detection"
PRICE_NOT_FOUND = "price not found"


class ErrorKind(str, Enum):
    """Failure taxonomy reported on a TrackingResult."""

    TRANSIENT = "transient"
    BOT_DETECTION = "bot_detection"
    EXTRACTION_MISS = "extraction_miss"
    PERSISTENCE = "persistence"


class TrackingError(Exception):
    """Base class for per-item tracking failures."""

    kind = ErrorKind.TRANSIENT


class BotDetectionError(TrackingError):
    """The site diverted the request to a blockade or verification page."""

    kind = ErrorKind.BOT_DETECTION

    def __init__(self, url: str, reason: str = BOT_DETECTION):
        self.url = url
        self.reason = reason
        super().__init__(reason)


class PriceNotFoundError(TrackingError):
    """The page loaded but no cascade stage produced a usable price."""

    kind = ErrorKind.EXTRACTION_MISS

    def __init__(self, url: str):
        self.url = url
        super().__init__(PRICE_NOT_FOUND)


class RendererUnavailableError(Exception):
    """The shared headless browser could not be started. Fatal for the run."""


@dataclass
class ProductToTrack:
    """Product row as seen by the tracking pipeline."""

    id: int
    merchant: str
    original_url: str
    title: str = ""
    normalized_url: Optional[str] = None
    currency: Optional[str] = None
    last_tracked_at: Optional[datetime] = None


@dataclass
class ExtractedPrice:
    """Price found by one stage of the extraction cascade."""

    raw: Optional[str]
    amount: Decimal
    currency: str
    method: str
    title: Optional[str] = None


@dataclass
class TrackingResult:
    """Outcome of one tracking attempt."""

    product_id: int
    success: bool
    strategy_used: str
    price: Optional[Decimal] = None
    currency: Optional[str] = None
    title: Optional[str] = None
    method: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    duration_ms: float = 0.0

    @classmethod
    def failure(
        cls,
        product_id: int,
        strategy_used: str,
        error: str,
        error_kind: ErrorKind = ErrorKind.TRANSIENT,
        duration_ms: float = 0.0,
    ) -> "TrackingResult":
        return cls(
            product_id=product_id,
            success=False,
            strategy_used=strategy_used,
            error=error,
            error_kind=error_kind,
            duration_ms=duration_ms,
        )

    @classmethod
    def from_extracted(
        cls,
        product_id: int,
        strategy_used: str,
        extracted: ExtractedPrice,
        duration_ms: float = 0.0,
    ) -> "TrackingResult":
        return cls(
            product_id=product_id,
            success=True,
            strategy_used=strategy_used,
            price=extracted.amount,
            currency=extracted.currency,
            title=extracted.title,
            method=extracted.method,
            duration_ms=duration_ms,
        )


class BaseStrategy(ABC):
    """Abstract base class for fetch strategies."""

    name: str = "BASE"

    @abstractmethod
    async def track(self, product: ProductToTrack) -> TrackingResult:
        """
        Fetch the product page and extract its current price.

        Implementations never raise: every failure is reported as a
        TrackingResult with ``success=False``.
        """
        pass

    async def start(self) -> None:
        """Acquire resources ahead of the first product (no-op by default)."""
        return None

    async def close(self) -> None:
        """Release resources held by the strategy."""
        return None
