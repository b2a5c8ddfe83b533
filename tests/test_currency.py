import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from spendsync.services.currency import ExchangeRateCache, FxRateSnapshot
from spendsync.utils.time import utc_now
from tests.helpers import StaticRateCache, TEST_RATES


def test_usd_and_zero_amounts_are_left_alone():
    cache = StaticRateCache(rates=TEST_RATES)

    assert asyncio.run(cache.convert(Decimal("12.34"), "USD")) == Decimal("12.34")
    assert asyncio.run(cache.convert(Decimal("0"), "EUR")) == Decimal("0")
    assert asyncio.run(cache.convert(Decimal("5"), None)) == Decimal("5")
    assert cache.fetches == 0


def test_conversion_divides_by_rate():
    cache = StaticRateCache(rates=TEST_RATES)

    assert asyncio.run(cache.convert(Decimal("108"), "nok")) == Decimal("10")
    assert cache.fetches == 1
    # second call is served from the snapshot
    asyncio.run(cache.convert(Decimal("1"), "EUR"))
    assert cache.fetches == 1


def test_fallback_rates_when_live_source_fails():
    cache = StaticRateCache(rates=None, fallback_rates={"USD": Decimal("1"), "EUR": Decimal("0.92")})

    converted = asyncio.run(cache.convert(Decimal("100"), "EUR"))
    assert float(converted) == pytest.approx(108.6957, abs=1e-4)
    # fallback is never cached, so the live source is tried again
    assert cache.snapshot is None
    asyncio.run(cache.convert(Decimal("100"), "EUR"))
    assert cache.fetches == 2


def test_unknown_currency_is_left_unconverted():
    cache = StaticRateCache(rates=TEST_RATES)

    assert asyncio.run(cache.convert(Decimal("50"), "XYZ")) == Decimal("50")


def test_failed_refresh_keeps_previous_snapshot():
    cache = StaticRateCache(rates=None, ttl_hours=1)
    cache._snapshot = FxRateSnapshot(rates={"EUR": Decimal("0.5")}, fetched_at=utc_now() - timedelta(hours=3))

    assert asyncio.run(cache.convert(Decimal("1"), "EUR")) == Decimal("2")
    assert cache.fetches == 1


def test_stale_snapshot_served_while_refresh_in_flight():
    cache = StaticRateCache(rates=TEST_RATES, ttl_hours=1)
    cache._snapshot = FxRateSnapshot(rates={"EUR": Decimal("0.5")}, fetched_at=utc_now() - timedelta(hours=3))

    async def scenario():
        async with cache._refresh_lock:
            return await cache.get_rates()

    rates = asyncio.run(scenario())
    assert rates["EUR"] == Decimal("0.5")
    assert cache.fetches == 0


def test_expired_snapshot_is_refreshed():
    cache = StaticRateCache(rates=TEST_RATES, ttl_hours=1)
    cache._snapshot = FxRateSnapshot(rates={"EUR": Decimal("0.5")}, fetched_at=utc_now() - timedelta(hours=3))

    rates = asyncio.run(cache.get_rates())
    assert rates["EUR"] == Decimal("0.92")
    assert cache.snapshot.is_fresh(timedelta(hours=1))


def test_normalize_row(row_factory):
    cache = StaticRateCache(rates=TEST_RATES)
    row = row_factory(currency="EUR", spend=Decimal("9.20"), revenue=Decimal("0.92"), clicks=4)

    normalized = asyncio.run(cache.normalize_row(row))
    assert normalized.currency_code == "USD"
    assert normalized.spend == Decimal("10")
    assert normalized.revenue == Decimal("1")
    assert normalized.clicks == 4
    assert row.currency_code == "EUR"


def test_default_cache_reads_settings():
    cache = ExchangeRateCache(api_url="https://fx.example/latest", ttl_hours=2, timeout_seconds=3)
    assert cache.ttl == timedelta(hours=2)
    assert cache.timeout_seconds == 3
    assert cache.snapshot is None


def test_batch_normalization_reads_rates_once(row_factory):
    # a failing live source is retried on every lookup, so fetches counts lookups
    cache = StaticRateCache(rates=None)
    rows = [row_factory(campaign_id=f"C{i}", currency="EUR", spend=Decimal("0.92")) for i in range(3)]
    rows.append(row_factory(campaign_id="C9", spend=Decimal("4")))

    normalized = asyncio.run(cache.normalize_rows(rows))

    assert cache.fetches == 1
    assert [r.spend for r in normalized] == [Decimal("1"), Decimal("1"), Decimal("1"), Decimal("4")]
    assert {r.currency_code for r in normalized} == {"USD"}


def test_batch_of_usd_rows_needs_no_rates(row_factory):
    cache = StaticRateCache(rates=None)
    asyncio.run(cache.normalize_rows([row_factory(spend=Decimal("3")), row_factory(campaign_id="C2")]))
    assert cache.fetches == 0
