"""Tests for the SQLAlchemy repository."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from pricewatch.db.models import ProductView, WatchlistItem
from pricewatch.db.repository import ProductFilter
from pricewatch.normalize.urls import normalize_url, product_hash

ML_URL = "https://articulo.mercadolibre.com.co/MCO-123-audifonos-_JM"


@pytest.mark.asyncio
async def test_upsert_is_keyed_on_product_hash(repository):
    first = await repository.upsert_product("mercadolibre", ML_URL + "?position=3#reviews", title="Audífonos")
    again = await repository.upsert_product("mercadolibre", ML_URL + "?searchVariation=9", title="Otro título")

    assert again.id == first.id
    assert again.title == "Audífonos"
    assert first.normalized_url == ML_URL

    products = await repository.list_products()
    assert len(products) == 1


@pytest.mark.asyncio
async def test_upsert_returns_row_inserted_by_concurrent_writer(repository):
    first = await repository.upsert_product("mercadolibre", ML_URL, title="Audífonos")

    find_by_hash = repository._find_by_hash
    lookups = []

    async def stale_first_lookup(db, key):
        lookups.append(key)
        if len(lookups) == 1:
            return None
        return await find_by_hash(db, key)

    repository._find_by_hash = stale_first_lookup
    again = await repository.upsert_product("mercadolibre", ML_URL, title="Otro título")

    assert len(lookups) == 2
    assert again.id == first.id
    assert again.title == "Audífonos"
    assert len(await repository.list_products()) == 1


@pytest.mark.asyncio
async def test_list_products_filters_by_merchant(repository):
    await repository.upsert_product("mercadolibre", ML_URL)
    await repository.upsert_product("exito", "https://www.exito.com/tv-55/p")

    exito = await repository.list_products(ProductFilter(merchant="exito"))
    assert [p.merchant for p in exito] == ["exito"]


@pytest.mark.asyncio
async def test_latest_observation_and_price_change(repository):
    product = await repository.upsert_product("exito", "https://www.exito.com/tv-55/p")
    base = datetime(2026, 3, 1, 8, 0)

    assert await repository.get_latest_observation(product.id) is None
    assert await repository.last_price_change_at(product.id) is None

    await repository.insert_observation(product.id, Decimal("100.00"), "COP", "seed", observed_at=base)
    assert await repository.last_price_change_at(product.id) is None

    await repository.insert_observation(product.id, Decimal("100.00"), "COP", "automated-tracking", base + timedelta(days=1))
    assert await repository.last_price_change_at(product.id) is None

    changed_at = base + timedelta(days=2)
    await repository.insert_observation(product.id, Decimal("95.50"), "COP", "automated-tracking", changed_at)

    latest = await repository.get_latest_observation(product.id)
    assert latest.price == Decimal("95.50")
    assert await repository.last_price_change_at(product.id) == changed_at


@pytest.mark.asyncio
async def test_watchers_and_views(session_factory, repository):
    product = await repository.upsert_product("exito", "https://www.exito.com/tv-55/p")
    viewed = datetime(2026, 3, 5, 18, 30)

    assert await repository.count_watchers(product.id) == 0
    assert await repository.last_viewed_at(product.id) is None

    async with session_factory() as db:
        db.add_all([
            WatchlistItem(product_id=product.id, user_ref="a"),
            WatchlistItem(product_id=product.id, user_ref="b"),
            ProductView(product_id=product.id, viewed_at=viewed - timedelta(days=3)),
            ProductView(product_id=product.id, viewed_at=viewed),
        ])
        await db.commit()

    assert await repository.count_watchers(product.id) == 2
    assert await repository.last_viewed_at(product.id) == viewed


@pytest.mark.asyncio
async def test_touch_and_update_details(repository):
    product = await repository.upsert_product("exito", "https://www.exito.com/tv-55/p")
    tracked_at = datetime(2026, 3, 5, 10, 0)

    await repository.touch_last_tracked(product.id, tracked_at)
    await repository.update_product_details(product.id, title="Televisor 55", currency="COP")

    [row] = await repository.list_products()
    assert row.last_tracked_at == tracked_at
    assert row.title == "Televisor 55"
    assert row.currency == "COP"
    assert row.normalized_url == normalize_url("https://www.exito.com/tv-55/p", "exito")
    assert product_hash("exito", row.normalized_url)
