"""Tests for change-only observation recording."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from pricewatch.db.models import PriceObservation, Product
from pricewatch.ingest.base import ErrorKind, TrackingResult
from pricewatch.normalize.price_parser import parse_price
from pricewatch.worker.recorder import ObservationRecorder


async def _observation_count(session_factory, product_id):
    async with session_factory() as db:
        result = await db.execute(
            select(func.count(PriceObservation.id)).where(PriceObservation.product_id == product_id)
        )
        return result.scalar_one()


def _success(product_id, price, currency="COP", title=None):
    return TrackingResult(
        product_id=product_id,
        success=True,
        strategy_used="HTTP_FAST",
        price=Decimal(price),
        currency=currency,
        title=title,
        method="structured_data",
    )


@pytest.mark.asyncio
async def test_unchanged_price_is_recorded_once(session_factory, repository):
    product = await repository.upsert_product("exito", "https://www.exito.com/tv-55/p", title="Televisor 55")
    recorder = ObservationRecorder(repository)

    first = await recorder.record(product, _success(product.id, "1899000"))
    second = await recorder.record(product, _success(product.id, "1899000"))

    assert first.inserted
    assert not second.inserted
    assert await _observation_count(session_factory, product.id) == 1


@pytest.mark.asyncio
async def test_sub_cent_price_is_recorded_once(session_factory, repository):
    product = await repository.upsert_product("amazon", "https://www.amazon.com/dp/B0C1234567")
    recorder = ObservationRecorder(repository)
    amount = parse_price("$1.299", "USD").amount

    outcomes = [await recorder.record(product, _success(product.id, amount, "USD")) for _ in range(3)]

    assert [o.inserted for o in outcomes] == [True, False, False]
    assert await _observation_count(session_factory, product.id) == 1
    latest = await repository.get_latest_observation(product.id)
    assert latest.price == Decimal("1.30")


@pytest.mark.asyncio
async def test_changed_price_appends_observation(session_factory, repository):
    product = await repository.upsert_product("exito", "https://www.exito.com/tv-55/p")
    recorder = ObservationRecorder(repository)

    await recorder.record(product, _success(product.id, "1899000"))
    outcome = await recorder.record(product, _success(product.id, "1799000"))

    assert outcome.inserted
    assert await _observation_count(session_factory, product.id) == 2

    latest = await repository.get_latest_observation(product.id)
    assert latest.price == Decimal("1799000")
    assert latest.source == "automated-tracking"


@pytest.mark.asyncio
async def test_title_and_currency_are_updated(session_factory, repository):
    product = await repository.upsert_product("exito", "https://www.exito.com/tv-55/p", title="TV")
    recorder = ObservationRecorder(repository)

    await recorder.record(product, _success(product.id, "1899000", title="Televisor Samsung 55"))

    async with session_factory() as db:
        row = await db.get(Product, product.id)
    assert row.title == "Televisor Samsung 55"
    assert row.currency == "COP"
    assert row.last_tracked_at is not None


@pytest.mark.asyncio
async def test_failed_attempt_only_touches_last_tracked(session_factory, repository):
    product = await repository.upsert_product("exito", "https://www.exito.com/tv-55/p")
    recorder = ObservationRecorder(repository)

    failure = TrackingResult.failure(product.id, "HTTP_FAST", "HTTP 503")
    outcome = await recorder.record(product, failure)

    assert not outcome.inserted
    assert outcome.result is failure
    assert await _observation_count(session_factory, product.id) == 0
    async with session_factory() as db:
        row = await db.get(Product, product.id)
    assert row.last_tracked_at is not None


@pytest.mark.asyncio
async def test_persistence_error_becomes_item_failure(repository):
    product = await repository.upsert_product("exito", "https://www.exito.com/tv-55/p")
    repository.insert_observation = AsyncMock(side_effect=RuntimeError("database is locked"))
    repository.touch_last_tracked = AsyncMock()
    recorder = ObservationRecorder(repository)

    outcome = await recorder.record(product, _success(product.id, "1899000"))

    assert not outcome.inserted
    assert not outcome.result.success
    assert outcome.result.error_kind == ErrorKind.PERSISTENCE
    repository.touch_last_tracked.assert_awaited_once_with(product.id)
