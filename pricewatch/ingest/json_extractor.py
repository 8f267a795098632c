"""Extract price data from JSON embedded in product pages."""

import json
import logging
import math
import re
from typing import Any, Dict, Iterator, List, Optional, Tuple

from selectolax.parser import HTMLParser

logger = logging.getLogger(__name__)

PRODUCT_TYPES = {"Product", "ProductGroup", "IndividualProduct"}
OFFER_TYPES = {"Offer", "AggregateOffer"}

# Global assignments that hold a serialized application state
STATE_ASSIGNMENTS = ("__PRELOADED_STATE__", "__INITIAL_STATE__", "__APOLLO_STATE__")

CURRENCY_KEYS = ("currency_id", "currency", "priceCurrency", "currencyCode")

_decoder = json.JSONDecoder()


def extract_json_ld(tree: HTMLParser) -> List[Any]:
    """
    Extract JSON-LD structured data from script tags.

    Malformed blocks are skipped; the rest are returned in document order.
    """
    results = []
    for script in tree.css('script[type="application/ld+json"]'):
        try:
            results.append(json.loads(script.text()))
        except (json.JSONDecodeError, TypeError):
            logger.debug("Skipping malformed JSON-LD block")
            continue
    return results


def _iter_nodes(block: Any) -> Iterator[Dict[str, Any]]:
    """Yield the top-level nodes of a JSON-LD block (arrays and @graph included)."""
    if isinstance(block, list):
        for item in block:
            yield from _iter_nodes(item)
    elif isinstance(block, dict):
        if "@graph" in block and isinstance(block["@graph"], list):
            yield from _iter_nodes(block["@graph"])
        else:
            yield block


def _node_types(node: Dict[str, Any]) -> set:
    node_type = node.get("@type", "")
    if isinstance(node_type, list):
        return {str(t) for t in node_type}
    return {str(node_type)}


def find_offer(json_ld_objects: List[Any]) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
    """
    Find the first Product or Offer node and its offer.

    Returns:
        (offer, product) where product is None for a bare Offer node and
        offer is None for a Product without offers
    """
    for block in json_ld_objects:
        for node in _iter_nodes(block):
            types = _node_types(node)
            if types & PRODUCT_TYPES:
                offers = node.get("offers")
                if isinstance(offers, list):
                    offers = offers[0] if offers else None
                return (offers if isinstance(offers, dict) else None), node
            if types & OFFER_TYPES:
                return node, None
    return None, None


def offer_price(offer: Dict[str, Any]) -> Any:
    """Price value of an offer, using AggregateOffer.lowPrice when price is absent."""
    price = offer.get("price")
    if price in (None, "") and "lowPrice" in offer:
        price = offer.get("lowPrice")
    return price


def extract_next_data(tree: HTMLParser) -> Optional[Dict[str, Any]]:
    """
    Extract __NEXT_DATA__ script tag content.

    Common in Next.js applications.
    """
    script = tree.css_first("script#__NEXT_DATA__")
    if script is None:
        return None
    try:
        return json.loads(script.text())
    except (json.JSONDecodeError, TypeError) as e:
        logger.debug(f"Failed to extract __NEXT_DATA__: {e}")
    return None


def extract_state_blobs(tree: HTMLParser) -> List[Any]:
    """
    Extract serialized application state assigned to window globals.

    The object literal is decoded structurally from the assignment onwards, so
    nested braces and trailing script code do not truncate or corrupt it.
    Blobs that are not valid JSON are dropped.
    """
    blobs = []
    next_data = extract_next_data(tree)
    if next_data is not None:
        blobs.append(next_data)

    for script in tree.css("script"):
        text = script.text() or ""
        for name in STATE_ASSIGNMENTS:
            if name not in text:
                continue
            match = re.search(re.escape(name) + r"\s*=\s*", text)
            if not match:
                continue
            try:
                blob, _ = _decoder.raw_decode(text, match.end())
            except json.JSONDecodeError as e:
                logger.debug(f"Failed to decode {name}: {e}")
                continue
            blobs.append(blob)
    return blobs


def _plausible_price(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(value) and value > 0
    if isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return False
        return math.isfinite(number) and number > 0
    return False


def find_price_field(obj: Any, max_depth: int = 40) -> Tuple[Optional[Any], Optional[str]]:
    """
    Depth-first search for a plausible numeric ``price`` field.

    Returns:
        (price, currency) where currency comes from a sibling key when present
    """
    stack: List[Tuple[Any, int]] = [(obj, 0)]
    while stack:
        current, depth = stack.pop()
        if depth > max_depth:
            continue
        if isinstance(current, dict):
            price = current.get("price")
            if _plausible_price(price):
                currency = None
                for key in CURRENCY_KEYS:
                    value = current.get(key)
                    if isinstance(value, str) and len(value) == 3:
                        currency = value.upper()
                        break
                return price, currency
            # Reverse so the first key is searched first
            for value in reversed(list(current.values())):
                if isinstance(value, (dict, list)):
                    stack.append((value, depth + 1))
        elif isinstance(current, list):
            for value in reversed(current):
                if isinstance(value, (dict, list)):
                    stack.append((value, depth + 1))
    return None, None
