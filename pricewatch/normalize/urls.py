"""Canonical product URLs and content-addressed product keys.

The same listing is routinely reached through search, recommendation and
campaign links that differ only in tracking parameters. Normalization strips
that noise so that ``product_hash`` identifies the listing, not the click.
"""

import hashlib
import logging
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pricewatch.ingest.merchants import QueryRule, get_profile

logger = logging.getLogger(__name__)

TRACKING_PARAMS = frozenset({
    "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
    "ref", "tag", "tracking_id", "wid", "sid", "polycard_client",
    "searchVariation", "search_layout", "position", "type",
    "reco_item_pos", "reco_backend", "reco_backend_type", "reco_client",
    "reco_id", "reco_model", "c_id", "c_uid", "da_id", "da_position",
    "id_origin", "da_sort_algorithm", "gclid", "fbclid",
})


def normalize_url(url: str, merchant: Optional[str] = None) -> str:
    """
    Normalize a product URL for de-duplication.

    Fragments are always removed. Query parameters follow the merchant's
    explicit rule: all of them for strip-all merchants, only the tracking
    denylist otherwise. Scheme and host are lower-cased. Malformed URLs are
    returned unchanged.

    Args:
        url: Product URL as found in the catalog
        merchant: Merchant name; detected from the host when omitted

    Returns:
        Normalized URL (idempotent: normalizing it again is a no-op)
    """
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        logger.debug(f"Malformed URL left as-is: {url!r}")
        return url

    if not parts.scheme or not parts.netloc:
        return url

    profile = get_profile(merchant, url)

    if profile.query_rule is QueryRule.STRIP_ALL:
        query = ""
    else:
        denied = TRACKING_PARAMS | set(profile.extra_tracking_params)
        kept = [
            (key, value)
            for key, value in parse_qsl(parts.query, keep_blank_values=True)
            if key not in denied
        ]
        query = urlencode(kept)

    path = parts.path or "/"

    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, query, ""))


def product_hash(merchant: str, normalized_url: str) -> str:
    """Content-addressed product key: sha256 of ``merchant:normalized_url``."""
    return hashlib.sha256(f"{merchant}:{normalized_url}".encode("utf-8")).hexdigest()
