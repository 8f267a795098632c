"""Tests for the ordered price extraction cascade."""

import json
from decimal import Decimal
from unittest.mock import patch

from pricewatch.ingest.cascade import (
    DOM_SELECTORS,
    META_TAGS,
    STATE_BLOB,
    STRUCTURED_DATA,
    ExtractionCascade,
)

ML_URL = "https://articulo.mercadolibre.com.co/MCO-123-audifonos-_JM"


def _page(head: str = "", body: str = "") -> str:
    return f"<html><head>{head}</head><body>{body}</body></html>"


def _json_ld(data) -> str:
    return f'<script type="application/ld+json">{json.dumps(data)}</script>'


PRODUCT_LD = {
    "@context": "https://schema.org",
    "@type": "Product",
    "name": "Audífonos Inalámbricos",
    "offers": {"@type": "Offer", "price": 129900, "priceCurrency": "COP"},
}


def test_structured_data_wins_without_running_later_stages():
    html = _page(
        head=_json_ld(PRODUCT_LD) + '<meta property="product:price:amount" content="1">',
        body='<span class="price">$ 5</span>',
    )
    cascade = ExtractionCascade()

    with patch.object(ExtractionCascade, "_from_meta_tags") as meta, \
            patch.object(ExtractionCascade, "_from_state_blob") as state, \
            patch.object(ExtractionCascade, "_from_selectors") as selectors:
        result = cascade.extract(html, "mercadolibre", ML_URL)

    assert result is not None
    assert result.amount == Decimal("129900")
    assert result.currency == "COP"
    assert result.method == STRUCTURED_DATA
    assert result.title == "Audífonos Inalámbricos"
    meta.assert_not_called()
    state.assert_not_called()
    selectors.assert_not_called()


def test_graph_and_offer_list_are_searched():
    data = {
        "@context": "https://schema.org",
        "@graph": [
            {"@type": "BreadcrumbList", "itemListElement": []},
            {
                "@type": "Product",
                "name": "Zapatillas",
                "offers": [{"@type": "Offer", "price": "349.99", "priceCurrency": "USD"}],
            },
        ],
    }
    result = ExtractionCascade().extract(_page(head=_json_ld(data)), None, "https://shop.example.com/p/1")

    assert result.amount == Decimal("349.99")
    assert result.currency == "USD"
    assert result.method == STRUCTURED_DATA


def test_aggregate_offer_low_price():
    data = {
        "@type": "Product",
        "name": "Televisor",
        "offers": {"@type": "AggregateOffer", "lowPrice": 1899000, "highPrice": 2100000, "priceCurrency": "COP"},
    }
    result = ExtractionCascade().extract(_page(head=_json_ld(data)), "exito", "https://www.exito.com/tv/p")
    assert result.amount == Decimal("1899000")


def test_malformed_json_ld_is_skipped():
    html = _page(
        head='<script type="application/ld+json">{"@type": "Product", broken</script>' + _json_ld(PRODUCT_LD)
    )
    result = ExtractionCascade().extract(html, "mercadolibre", ML_URL)
    assert result.amount == Decimal("129900")
    assert result.method == STRUCTURED_DATA


def test_zero_price_falls_through_to_meta_tags():
    data = {"@type": "Product", "name": "X", "offers": {"@type": "Offer", "price": 0, "priceCurrency": "USD"}}
    html = _page(
        head=_json_ld(data)
        + '<meta property="product:price:amount" content="49.99">'
        + '<meta property="product:price:currency" content="usd">'
    )
    result = ExtractionCascade().extract(html, None, "https://shop.example.com/p")

    assert result.amount == Decimal("49.99")
    assert result.currency == "USD"
    assert result.method == META_TAGS


def test_state_blob_with_nested_objects():
    state = {"page": {"item": {"id": "MCO1", "price": 89900, "currency_id": "COP", "meta": {"a": {"b": 1}}}}}
    html = _page(body=f"<script>window.__PRELOADED_STATE__ = {json.dumps(state)}; init();</script>")
    result = ExtractionCascade().extract(html, "mercadolibre", ML_URL)

    assert result.amount == Decimal("89900")
    assert result.currency == "COP"
    assert result.method == STATE_BLOB


def test_next_data_blob():
    data = {"props": {"pageProps": {"product": {"price": 59.9, "currency": "MXN"}}}}
    html = _page(body=f'<script id="__NEXT_DATA__" type="application/json">{json.dumps(data)}</script>')
    result = ExtractionCascade().extract(html, None, "https://shop.example.com.mx/p")

    assert result.amount == Decimal("59.9")
    assert result.currency == "MXN"
    assert result.method == STATE_BLOB


def test_invalid_state_blob_and_boolean_price_are_ignored():
    html = _page(
        body=(
            "<script>window.__INITIAL_STATE__ = {not json};</script>"
            '<script>window.__PRELOADED_STATE__ = {"flags": {"price": true}};</script>'
        )
    )
    assert ExtractionCascade().extract(html, None, "https://shop.example.com/p") is None


def test_dom_selectors_join_integer_and_cents():
    body = (
        '<h1 class="ui-pdp-title">Audífonos Bluetooth</h1>'
        '<div class="ui-pdp-price--main">'
        '<span class="andes-money-amount">'
        '<span class="andes-money-amount__currency-symbol">$</span>'
        '<span class="andes-money-amount__fraction">1.299</span>'
        '<span class="andes-money-amount__cents">90</span>'
        "</span></div>"
    )
    result = ExtractionCascade().extract(_page(body=body), "mercadolibre", ML_URL)

    assert result.amount == Decimal("1299.90")
    assert result.currency == "COP"
    assert result.method == DOM_SELECTORS
    assert result.title == "Audífonos Bluetooth"


def test_dom_selectors_thousands_dot_without_cents():
    body = '<span class="andes-money-amount__fraction">70.378</span>'
    result = ExtractionCascade().extract(_page(body=body), "mercadolibre", ML_URL)
    assert result.amount == Decimal("70378")


def test_generic_selector_with_title_tag():
    html = "<html><head><title>Lámpara de mesa | Tienda</title></head><body><span class=\"price\">USD 24.50</span></body></html>"
    result = ExtractionCascade().extract(html, None, "https://shop.example.com/p")

    assert result.amount == Decimal("24.50")
    assert result.method == DOM_SELECTORS
    assert result.title == "Lámpara de mesa"


def test_no_price_anywhere():
    assert ExtractionCascade().extract(_page(body="<p>Producto agotado</p>"), None, "https://shop.example.com/p") is None
    assert ExtractionCascade().extract("", None) is None
