"""Headless browser strategy for storefronts that defend against plain HTTP clients."""

import asyncio
import logging
import sys
import time
from typing import Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Route,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from pricewatch.config import settings
from pricewatch.ingest.base import (
    BaseStrategy,
    BotDetectionError,
    ErrorKind,
    PriceNotFoundError,
    ProductToTrack,
    RendererUnavailableError,
    TrackingResult,
)
from pricewatch.ingest.cascade import ExtractionCascade, extraction_cascade
from pricewatch.ingest.fetchers.static import is_bot_check_url
from pricewatch.ingest.merchants import MerchantProfile, get_profile
from pricewatch.ingest.user_agent_pool import UserAgentPool, user_agent_pool
from pricewatch.logging_config import get_logger

logger = logging.getLogger(__name__)

# Stealth browser launch args
STEALTH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-setuid-sandbox",
]

BLOCKED_RESOURCE_TYPES = frozenset({"image", "stylesheet", "font", "media"})

BLOCKED_DOMAINS = (
    "google-analytics",
    "googletagmanager",
    "doubleclick",
    "facebook.net",
    "hotjar",
)

# Waited for when the merchant profile has no ready selector of its own
DEFAULT_READY_SELECTOR = (
    'meta[itemprop="price"], meta[property="product:price:amount"], '
    'meta[property="og:price:amount"], [itemprop="price"]'
)


class BrowserHandle:
    """
    Owned handle on the shared Chromium instance.

    The browser is started lazily on first use and at most once: concurrent
    first callers wait on the same lock and reuse the instance. A failed launch
    gets one self-repair attempt (installing chromium) before the handle gives
    up with RendererUnavailableError.
    """

    def __init__(self, headless: Optional[bool] = None, self_repair: Optional[bool] = None):
        self.headless = settings.browser_headless if headless is None else headless
        self.self_repair = settings.browser_self_repair if self_repair is None else self_repair
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def started(self) -> bool:
        return self._browser is not None

    async def get_browser(self) -> Browser:
        """Return the shared browser, starting it on first use."""
        if self._browser is not None:
            return self._browser

        async with self._lock:
            if self._closed:
                raise RendererUnavailableError("Browser handle already closed")
            if self._browser is None:
                await self._start()
            return self._browser

    async def _start(self) -> None:
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._launch()
            logger.info("Headless browser started")
            return
        except PlaywrightError as e:
            if not self.self_repair:
                await self._stop_playwright()
                raise RendererUnavailableError(f"Browser launch failed: {e}") from e
            logger.warning(f"Browser launch failed, attempting self-repair: {e}")

        installed = await self._install_browser()
        if not installed:
            await self._stop_playwright()
            raise RendererUnavailableError("Browser launch failed and chromium install did not succeed")

        try:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            self._browser = await self._launch()
            logger.info("Headless browser started after self-repair")
        except PlaywrightError as e:
            await self._stop_playwright()
            raise RendererUnavailableError(f"Browser launch failed after self-repair: {e}") from e

    async def _launch(self) -> Browser:
        return await self._playwright.chromium.launch(headless=self.headless, args=STEALTH_ARGS)

    @staticmethod
    async def _install_browser() -> bool:
        """Run ``playwright install chromium`` once; True when it exited cleanly."""
        logger.info("Installing chromium for Playwright...")
        process = await asyncio.create_subprocess_exec(
            sys.executable, "-m", "playwright", "install", "chromium",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        output, _ = await process.communicate()
        if process.returncode != 0:
            logger.error(
                f"Chromium install exited with {process.returncode}: "
                f"{output.decode(errors='replace')[-500:] if output else ''}"
            )
            return False
        return True

    async def _stop_playwright(self) -> None:
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.error(f"Error stopping Playwright: {e}")
            self._playwright = None

    async def close(self) -> None:
        """Shut the shared browser down. Safe to call more than once."""
        async with self._lock:
            if self._closed:
                return
            self._closed = True

            if self._browser is not None:
                try:
                    await self._browser.close()
                except Exception as e:
                    logger.error(f"Error closing browser: {e}")
                self._browser = None

            await self._stop_playwright()


class BrowserHardStrategy(BaseStrategy):
    """Render the page in an isolated context of the shared browser, then extract."""

    name = "BROWSER_HARD"

    def __init__(
        self,
        handle: Optional[BrowserHandle] = None,
        cascade: Optional[ExtractionCascade] = None,
        ua_pool: Optional[UserAgentPool] = None,
        navigation_timeout_ms: Optional[int] = None,
        ready_timeout_ms: Optional[int] = None,
    ):
        """
        Initialize the rendering strategy.

        Args:
            handle: Shared browser handle; owned (and closed) by the caller when
                    provided, otherwise created and closed by this strategy
            cascade: Extraction cascade (defaults to the shared instance)
            ua_pool: User agent pool for per-context rotation
            navigation_timeout_ms: Budget for page.goto
            ready_timeout_ms: Budget for the price/verification wait race
        """
        self._owns_handle = handle is None
        self.handle = handle or BrowserHandle()
        self.cascade = cascade or extraction_cascade
        self.ua_pool = ua_pool or user_agent_pool
        self.navigation_timeout_ms = navigation_timeout_ms or settings.browser_navigation_timeout_ms
        self.ready_timeout_ms = ready_timeout_ms or settings.browser_ready_timeout_ms

    async def start(self) -> None:
        """Start the shared browser ahead of the first product."""
        await self.handle.get_browser()

    async def close(self):
        if self._owns_handle:
            await self.handle.close()

    async def track(self, product: ProductToTrack) -> TrackingResult:
        log = get_logger(__name__, product_id=product.id, strategy=self.name)
        log.info(f"[{self.name}] Tracking {(product.title or product.original_url)[:40]}...")
        start = time.monotonic()

        def elapsed() -> float:
            return (time.monotonic() - start) * 1000

        context: Optional[BrowserContext] = None
        page: Optional[Page] = None
        try:
            browser = await self.handle.get_browser()
            context = await browser.new_context(
                user_agent=self.ua_pool.get_random(browser="chrome"),
                viewport={"width": 1920, "height": 1080},
                extra_http_headers={"Accept-Language": settings.accept_language},
            )
            await context.route("**/*", self._block_resources)
            page = await context.new_page()

            try:
                await page.goto(
                    product.original_url,
                    wait_until="domcontentloaded",
                    timeout=self.navigation_timeout_ms,
                )
            except PlaywrightTimeoutError:
                # The document is often usable even when subresources stall
                log.debug(f"Navigation timeout for {product.original_url}, continuing")

            await self._wait_for_price_or_verification(page, get_profile(product.merchant, product.original_url))

            if is_bot_check_url(page.url):
                raise BotDetectionError(page.url)

            html = await page.content()
            extracted = self.cascade.extract(html, product.merchant, page.url)
            if extracted is None:
                raise PriceNotFoundError(page.url)

            log.debug(f"Price {extracted.amount} {extracted.currency} via {extracted.method}")
            return TrackingResult.from_extracted(product.id, self.name, extracted, elapsed())

        except BotDetectionError as e:
            log.warning(f"[{self.name}] Bot detection redirect: {e.url}")
            return TrackingResult.failure(product.id, self.name, e.reason, ErrorKind.BOT_DETECTION, elapsed())
        except PriceNotFoundError as e:
            log.warning(f"[{self.name}] Price not found on {e.url}")
            return TrackingResult.failure(product.id, self.name, str(e), ErrorKind.EXTRACTION_MISS, elapsed())
        except RendererUnavailableError as e:
            log.error(f"[{self.name}] Renderer unavailable: {e}")
            return TrackingResult.failure(product.id, self.name, f"renderer unavailable: {e}", ErrorKind.TRANSIENT, elapsed())
        except PlaywrightTimeoutError as e:
            log.error(f"[{self.name}] Timeout: {e}")
            return TrackingResult.failure(product.id, self.name, "timeout", ErrorKind.TRANSIENT, elapsed())
        except Exception as e:
            log.error(f"[{self.name}] Failed: {type(e).__name__}: {e}")
            return TrackingResult.failure(product.id, self.name, f"{type(e).__name__}: {e}", ErrorKind.TRANSIENT, elapsed())
        finally:
            await self._release(page, context)

    async def _wait_for_price_or_verification(self, page: Page, profile: MerchantProfile) -> None:
        """
        Race "price element attached" against "redirected to a verification page".

        Whichever settles first ends the wait; the other is cancelled. Timeouts
        are not errors here: extraction decides what the page contains.
        """
        selector = profile.ready_selector or DEFAULT_READY_SELECTOR
        price_wait = asyncio.ensure_future(
            page.wait_for_selector(selector, state="attached", timeout=self.ready_timeout_ms)
        )
        verification_wait = asyncio.ensure_future(
            page.wait_for_url(is_bot_check_url, timeout=self.ready_timeout_ms)
        )

        done, pending = await asyncio.wait(
            {price_wait, verification_wait}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            error = task.exception()
            if error is not None:
                logger.debug(f"Ready wait ended with {type(error).__name__}")

    @staticmethod
    async def _block_resources(route: Route) -> None:
        request = route.request
        try:
            if request.resource_type in BLOCKED_RESOURCE_TYPES or any(
                domain in request.url for domain in BLOCKED_DOMAINS
            ):
                await route.abort()
            else:
                await route.continue_()
        except PlaywrightError as e:
            # The page may already be closing
            logger.debug(f"Route handling failed for {request.url[:80]}: {e}")

    @staticmethod
    async def _release(page: Optional[Page], context: Optional[BrowserContext]) -> None:
        if page is not None:
            try:
                await page.close()
            except Exception as e:
                logger.error(f"Error closing page: {e}")
        if context is not None:
            try:
                await context.close()
            except Exception as e:
                logger.error(f"Error closing browser context: {e}")
