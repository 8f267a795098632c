"""Merchant profiles: URL rules, currency defaults and price selectors per storefront."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
from urllib.parse import urlsplit

from pricewatch.config import settings


class QueryRule(Enum):
    """How query parameters are handled when normalizing a product URL."""

    # Product id lives in the path; every query parameter is session/tracking noise
    STRIP_ALL = "strip_all"
    # Only the known tracking keys are removed
    DENYLIST = "denylist"


@dataclass(frozen=True)
class MerchantProfile:
    """Static extraction and normalization hints for one merchant."""

    name: str
    host_fragments: tuple[str, ...]
    query_rule: QueryRule = QueryRule.DENYLIST
    default_currency: Optional[str] = None
    # Visible price, most specific first
    price_selectors: tuple[str, ...] = ()
    # Class of the element wrapping an integer part and a cents part
    price_container_class: Optional[str] = None
    cents_selector: Optional[str] = None
    title_selector: Optional[str] = None
    # Element whose appearance means the price has rendered
    ready_selector: Optional[str] = None
    extra_tracking_params: tuple[str, ...] = field(default_factory=tuple)


MERCADOLIBRE = MerchantProfile(
    name="mercadolibre",
    host_fragments=("mercadolibre", "mercadolivre"),
    query_rule=QueryRule.STRIP_ALL,
    default_currency="COP",
    price_selectors=(
        ".ui-pdp-price__second-line .andes-money-amount__fraction",
        ".ui-pdp-price--main .andes-money-amount__fraction",
        ".andes-money-amount__fraction",
    ),
    price_container_class="andes-money-amount",
    cents_selector=".andes-money-amount__cents",
    title_selector="h1.ui-pdp-title",
    ready_selector='.andes-money-amount__fraction, meta[itemprop="price"]',
)

AMAZON = MerchantProfile(
    name="amazon",
    host_fragments=("amazon.",),
    default_currency="USD",
    price_selectors=(
        "#corePrice_feature_div .a-offscreen",
        "#priceblock_ourprice",
        "#priceblock_dealprice",
        ".a-price .a-offscreen",
    ),
    price_container_class="a-price",
    title_selector="#productTitle",
    ready_selector="#corePrice_feature_div, #productTitle",
)

EXITO = MerchantProfile(
    name="exito",
    host_fragments=("exito",),
    default_currency="COP",
    price_selectors=('[data-fs-container-price-otros="true"]', ".product-price"),
)

FALABELLA = MerchantProfile(
    name="falabella",
    host_fragments=("falabella",),
    default_currency="COP",
    price_selectors=("li.prices-0 span", ".copy12.primary"),
)

ZARA = MerchantProfile(name="zara", host_fragments=("zara",), price_selectors=(".money-amount__main",))
HM = MerchantProfile(name="hm", host_fragments=("hm.com",), price_selectors=("#product-price",))
NIKE = MerchantProfile(name="nike", host_fragments=("nike",), price_selectors=('[data-test="product-price"]',))
ADIDAS = MerchantProfile(name="adidas", host_fragments=("adidas",), price_selectors=(".gl-price-item",))

DEFAULT_PROFILE = MerchantProfile(name="default", host_fragments=())

# Detection order matters: first matching fragment wins
MERCHANT_PROFILES: tuple[MerchantProfile, ...] = (
    MERCADOLIBRE,
    AMAZON,
    EXITO,
    FALABELLA,
    ZARA,
    HM,
    NIKE,
    ADIDAS,
)

_PROFILES_BY_NAME = {profile.name: profile for profile in MERCHANT_PROFILES}

# Selectors tried on every page after the merchant-specific ones
GENERIC_PRICE_SELECTORS: tuple[str, ...] = (
    '[itemprop="price"]',
    '[data-testid="price"]',
    ".product-price",
    ".price",
)

# Country-code host suffix -> currency
TLD_CURRENCIES: tuple[tuple[str, str], ...] = (
    (".com.br", "BRL"),
    (".com.co", "COP"),
    (".com.mx", "MXN"),
    (".com.ar", "ARS"),
    (".cl", "CLP"),
)


def _hostname(url: str) -> str:
    try:
        hostname = urlsplit(url).hostname or ""
    except ValueError:
        return ""
    hostname = hostname.lower()
    if hostname.startswith("www."):
        hostname = hostname[4:]
    return hostname


def detect_merchant(url: str) -> Optional[str]:
    """Return the merchant name for a product URL, or None when unknown."""
    hostname = _hostname(url)
    if not hostname:
        return None
    for profile in MERCHANT_PROFILES:
        if any(fragment in hostname for fragment in profile.host_fragments):
            return profile.name
    return None


def get_profile(merchant: Optional[str], url: Optional[str] = None) -> MerchantProfile:
    """Resolve a merchant profile by name, falling back to URL detection."""
    if merchant and merchant.lower() in _PROFILES_BY_NAME:
        return _PROFILES_BY_NAME[merchant.lower()]
    if url:
        detected = detect_merchant(url)
        if detected:
            return _PROFILES_BY_NAME[detected]
    return DEFAULT_PROFILE


def currency_for_url(url: Optional[str]) -> Optional[str]:
    """Currency implied by the host's country-code suffix."""
    if not url:
        return None
    hostname = _hostname(url)
    for suffix, currency in TLD_CURRENCIES:
        if hostname.endswith(suffix):
            return currency
    return None


def fallback_currency(merchant: Optional[str], url: Optional[str] = None) -> str:
    """Currency used when the page itself declares none."""
    return (
        currency_for_url(url)
        or get_profile(merchant, url).default_currency
        or settings.default_currency
    )
