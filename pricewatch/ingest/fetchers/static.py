"""Lightweight HTTP strategy for server-rendered product pages."""

import logging
import time
from typing import Optional

import httpx

from pricewatch.config import settings
from pricewatch.ingest.base import (
    BOT_DETECTION,
    BaseStrategy,
    BotDetectionError,
    ErrorKind,
    PriceNotFoundError,
    ProductToTrack,
    TrackingResult,
)
from pricewatch.ingest.cascade import ExtractionCascade, extraction_cascade
from pricewatch.ingest.user_agent_pool import UserAgentPool, user_agent_pool
from pricewatch.logging_config import get_logger

logger = logging.getLogger(__name__)

# URL fragments of the verification pages storefronts redirect bots to
BOT_CHECK_PATTERNS = (
    "account-verification",
    "/gz/",
    "/captcha",
    "validatecaptcha",
)

BLOCKADE_STATUS_CODES = (401, 403)


def is_bot_check_url(url: str) -> bool:
    """Whether a (final) URL points at a known verification page."""
    lowered = url.lower()
    return any(pattern in lowered for pattern in BOT_CHECK_PATTERNS)


class HttpFastStrategy(BaseStrategy):
    """Single GET with browser-like headers, then the extraction cascade."""

    name = "HTTP_FAST"

    def __init__(
        self,
        cascade: Optional[ExtractionCascade] = None,
        client: Optional[httpx.AsyncClient] = None,
        ua_pool: Optional[UserAgentPool] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize the HTTP strategy.

        Args:
            cascade: Extraction cascade (defaults to the shared instance)
            client: Pre-built HTTP client; owned by the caller when provided
            ua_pool: User agent pool for header rotation
            timeout: Request timeout in seconds
        """
        self.cascade = cascade or extraction_cascade
        self.ua_pool = ua_pool or user_agent_pool
        self.timeout = timeout or settings.http_timeout_seconds
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={
                    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
                    "Accept-Language": settings.accept_language,
                    "Accept-Encoding": "gzip, deflate",
                    "Connection": "keep-alive",
                    "Upgrade-Insecure-Requests": "1",
                },
            )
        return self._client

    async def close(self):
        """Close the HTTP client if this strategy created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def track(self, product: ProductToTrack) -> TrackingResult:
        log = get_logger(__name__, product_id=product.id, strategy=self.name)
        log.info(f"[{self.name}] Tracking {(product.title or product.original_url)[:40]}...")
        start = time.monotonic()

        def elapsed() -> float:
            return (time.monotonic() - start) * 1000

        try:
            html, final_url = await self._fetch(product.original_url)
            extracted = self.cascade.extract(html, product.merchant, final_url)
            if extracted is None:
                raise PriceNotFoundError(final_url)

            log.debug(f"Price {extracted.amount} {extracted.currency} via {extracted.method}")
            return TrackingResult.from_extracted(product.id, self.name, extracted, elapsed())

        except BotDetectionError as e:
            log.warning(f"[{self.name}] Bot detection on {e.url}: {e.reason}")
            return TrackingResult.failure(product.id, self.name, e.reason, ErrorKind.BOT_DETECTION, elapsed())
        except PriceNotFoundError as e:
            log.warning(f"[{self.name}] Price not found on {e.url}")
            return TrackingResult.failure(product.id, self.name, str(e), ErrorKind.EXTRACTION_MISS, elapsed())
        except httpx.HTTPStatusError as e:
            log.error(f"[{self.name}] HTTP {e.response.status_code} for {e.request.url}")
            return TrackingResult.failure(product.id, self.name, f"HTTP {e.response.status_code}", ErrorKind.TRANSIENT, elapsed())
        except httpx.TimeoutException as e:
            log.error(f"[{self.name}] Timeout: {type(e).__name__}")
            return TrackingResult.failure(product.id, self.name, f"timeout ({type(e).__name__})", ErrorKind.TRANSIENT, elapsed())
        except httpx.HTTPError as e:
            log.error(f"[{self.name}] Failed: {type(e).__name__}: {e}")
            return TrackingResult.failure(product.id, self.name, str(e) or type(e).__name__, ErrorKind.TRANSIENT, elapsed())
        except Exception as e:
            log.exception(f"[{self.name}] Unexpected failure: {e}")
            return TrackingResult.failure(product.id, self.name, f"{type(e).__name__}: {e}", ErrorKind.TRANSIENT, elapsed())

    async def _fetch(self, url: str) -> tuple[str, str]:
        """
        GET the page.

        Returns:
            (html, final_url)

        Raises:
            BotDetectionError: On 401/403 or a redirect to a verification page
            httpx.HTTPStatusError: On any other non-2xx status
        """
        client = self._get_client()
        response = await client.get(url, headers={"User-Agent": self.ua_pool.get_random()})
        final_url = str(response.url)

        if response.status_code in BLOCKADE_STATUS_CODES:
            raise BotDetectionError(final_url, f"{BOT_DETECTION} (HTTP {response.status_code})")

        if is_bot_check_url(final_url):
            raise BotDetectionError(final_url)

        response.raise_for_status()
        return response.text, final_url
