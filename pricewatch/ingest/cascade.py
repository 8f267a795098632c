"""Ordered price extraction over a fetched product page.

Stages run from most to least trustworthy and the first stage that yields a
usable amount wins:

1. structured data (JSON-LD Product/Offer)
2. dedicated price meta fields
3. embedded application-state blobs (lowest-confidence JSON path)
4. visible price elements matched by CSS selectors

A zero amount is never a real price here; it is treated as "not found" and
the cascade moves on.
"""

import logging
from typing import Callable, List, Optional, Tuple

from selectolax.parser import HTMLParser, Node

from pricewatch.ingest.base import ExtractedPrice
from pricewatch.ingest.json_extractor import (
    extract_json_ld,
    extract_state_blobs,
    find_offer,
    find_price_field,
    offer_price,
)
from pricewatch.ingest.merchants import (
    GENERIC_PRICE_SELECTORS,
    MerchantProfile,
    fallback_currency,
    get_profile,
)
from pricewatch.normalize.price_parser import (
    ParsedPrice,
    decimal_separator,
    parse_machine_amount,
    parse_price,
)

logger = logging.getLogger(__name__)

META_PRICE_SELECTORS = (
    'meta[property="product:price:amount"]',
    'meta[property="og:price:amount"]',
    'meta[itemprop="price"]',
)

META_CURRENCY_SELECTORS = (
    'meta[property="product:price:currency"]',
    'meta[property="og:price:currency"]',
    'meta[itemprop="priceCurrency"]',
)

STRUCTURED_DATA = "structured_data"
META_TAGS = "meta_tags"
STATE_BLOB = "state_blob"
DOM_SELECTORS = "dom_selectors"


class _Page:
    """Parsed document plus the context every stage needs."""

    def __init__(self, tree: HTMLParser, profile: MerchantProfile, fallback: str):
        self.tree = tree
        self.profile = profile
        self.fallback_currency = fallback


class ExtractionCascade:
    """Try each extraction stage in order and return the first usable price."""

    STAGES: Tuple[Tuple[str, str], ...] = (
        (STRUCTURED_DATA, "_from_structured_data"),
        (META_TAGS, "_from_meta_tags"),
        (STATE_BLOB, "_from_state_blob"),
        (DOM_SELECTORS, "_from_selectors"),
    )

    def extract(
        self,
        document: str,
        merchant_hint: Optional[str] = None,
        url: Optional[str] = None,
    ) -> Optional[ExtractedPrice]:
        """
        Extract a normalized price from an HTML document.

        Args:
            document: Page markup
            merchant_hint: Merchant name used for selectors and currency defaults
            url: Page URL; its country-code suffix refines the fallback currency

        Returns:
            ExtractedPrice from the first successful stage, or None
        """
        if not document:
            return None

        tree = HTMLParser(document)
        profile = get_profile(merchant_hint, url)
        page = _Page(tree, profile, fallback_currency(merchant_hint, url))

        for method, attr in self.STAGES:
            stage: Callable[[_Page], Optional[Tuple[Optional[str], ParsedPrice]]] = getattr(self, attr)
            try:
                found = stage(page)
            except Exception as e:
                # A broken stage must not hide the ones after it
                logger.debug(f"Extraction stage {method} failed: {type(e).__name__}: {e}")
                continue

            if not found:
                continue

            raw, parsed = found
            if parsed.amount is None or parsed.amount == 0:
                logger.debug(f"Stage {method} produced no usable amount from {raw!r}")
                continue

            return ExtractedPrice(
                raw=raw,
                amount=parsed.amount,
                currency=(parsed.currency or page.fallback_currency).upper(),
                method=method,
                title=self._extract_title(page),
            )

        return None

    def _from_structured_data(self, page: _Page) -> Optional[Tuple[Optional[str], ParsedPrice]]:
        offer, _ = find_offer(extract_json_ld(page.tree))
        if not offer:
            return None

        price = offer_price(offer)
        if price in (None, ""):
            return None

        currency = offer.get("priceCurrency") or page.fallback_currency
        return str(price), parse_machine_amount(price, currency)

    def _from_meta_tags(self, page: _Page) -> Optional[Tuple[Optional[str], ParsedPrice]]:
        content = self._first_meta_content(page.tree, META_PRICE_SELECTORS)
        if not content:
            return None

        currency = self._first_meta_content(page.tree, META_CURRENCY_SELECTORS) or page.fallback_currency
        return content, parse_machine_amount(content, currency)

    def _from_state_blob(self, page: _Page) -> Optional[Tuple[Optional[str], ParsedPrice]]:
        for blob in extract_state_blobs(page.tree):
            price, currency = find_price_field(blob)
            if price is None:
                continue
            return str(price), parse_machine_amount(price, currency or page.fallback_currency)
        return None

    def _from_selectors(self, page: _Page) -> Optional[Tuple[Optional[str], ParsedPrice]]:
        selectors: List[str] = list(page.profile.price_selectors) + list(GENERIC_PRICE_SELECTORS)

        for selector in selectors:
            node = page.tree.css_first(selector)
            if node is None:
                continue

            text = self._price_text(node, page)
            if not text:
                continue

            parsed = parse_price(text, page.fallback_currency)
            if parsed.amount:
                logger.debug(f"Selector matched: {selector[:50]}")
                return text, parsed
        return None

    @staticmethod
    def _first_meta_content(tree: HTMLParser, selectors) -> Optional[str]:
        for selector in selectors:
            node = tree.css_first(selector)
            if node is not None:
                content = (node.attributes.get("content") or "").strip()
                if content:
                    return content
        return None

    def _price_text(self, node: Node, page: _Page) -> Optional[str]:
        """Visible price text, joining a split integer/cents rendering when present."""
        if node.tag == "meta":
            return (node.attributes.get("content") or "").strip() or None

        text = node.text(strip=True)
        profile = page.profile
        if not text or not profile.price_container_class or not profile.cents_selector:
            return text

        container = self._closest_with_class(node, profile.price_container_class)
        if container is None:
            return text

        cents_node = container.css_first(profile.cents_selector)
        cents = "".join(ch for ch in cents_node.text(strip=True) if ch.isdigit()) if cents_node else ""
        if not cents:
            return text

        integer = "".join(ch for ch in text if ch.isdigit())
        return f"{integer}{decimal_separator(page.fallback_currency)}{cents}"

    @staticmethod
    def _closest_with_class(node: Node, class_name: str) -> Optional[Node]:
        current = node.parent
        while current is not None:
            classes = (current.attributes.get("class") or "").split()
            if class_name in classes:
                return current
            current = current.parent
        return None

    def _extract_title(self, page: _Page) -> Optional[str]:
        _, product = find_offer(extract_json_ld(page.tree))
        if product and isinstance(product.get("name"), str) and product["name"].strip():
            return product["name"].strip()

        og_title = page.tree.css_first('meta[property="og:title"]')
        if og_title is not None:
            content = (og_title.attributes.get("content") or "").strip()
            if content:
                return content

        for selector in filter(None, (page.profile.title_selector, "h1")):
            node = page.tree.css_first(selector)
            if node is not None and node.text(strip=True):
                return node.text(strip=True)

        title = page.tree.css_first("title")
        if title is not None and title.text(strip=True):
            return title.text(strip=True).split("|")[0].strip()
        return None


extraction_cascade = ExtractionCascade()
