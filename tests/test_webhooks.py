import asyncio
from decimal import Decimal

from spendsync.integrations.revenuecat import process_webhook_event
from spendsync.models.schemas.webhooks import RevenueCatEvent

# 2026-02-01T00:00:00Z
PURCHASED_AT_MS = 1769904000000


def _event(**overrides):
    event = {
        "id": "evt_1",
        "type": "INITIAL_PURCHASE",
        "app_user_id": "app-user-1",
        "product_id": "pro_monthly",
        "country_code": "NO",
        "currency": "EUR",
        "price": 10.86,
        "price_in_purchased_currency": 9.99,
        "purchased_at_ms": PURCHASED_AT_MS,
    }
    event.update(overrides)
    return event


def test_purchase_accumulates_into_both_stores(db_session, fx_cache, stored):
    outcome = asyncio.run(process_webhook_event(db_session, 1, RevenueCatEvent(**_event()), fx_cache))

    assert outcome.processed is True
    assert outcome.details["revenue"] == 10.86
    assert outcome.details["date"] == "2026-02-01"
    [campaign] = stored.campaigns(platform="revenuecat")
    assert (campaign.campaign_id, campaign.country_code, campaign.revenue, campaign.purchases) == ("pro_monthly", "NO", Decimal("10.86"), 1)
    [country] = stored.countries(platform="revenuecat")
    assert (country.country_code, country.revenue, country.purchases) == ("NO", Decimal("10.86"), 1)

    asyncio.run(process_webhook_event(db_session, 1, RevenueCatEvent(**_event(id="evt_2")), fx_cache))
    assert stored.countries(platform="revenuecat")[0].revenue == Decimal("21.72")
    assert stored.campaigns(platform="revenuecat")[0].purchases == 2


def test_price_falls_back_to_usd_price_field(db_session, fx_cache, stored):
    event = _event(currency="USD", price=4.99, price_in_purchased_currency=None)
    asyncio.run(process_webhook_event(db_session, 1, RevenueCatEvent(**event), fx_cache))
    assert stored.campaigns(platform="revenuecat")[0].revenue == Decimal("4.99")


def test_non_revenue_and_free_events_are_skipped(db_session, fx_cache, stored):
    cancellation = asyncio.run(process_webhook_event(db_session, 1, RevenueCatEvent(**_event(type="CANCELLATION")), fx_cache))
    trial = asyncio.run(process_webhook_event(
        db_session, 1, RevenueCatEvent(**_event(price=0, price_in_purchased_currency=0)), fx_cache
    ))

    assert cancellation.skipped and "CANCELLATION" in cancellation.reason
    assert trial.skipped and trial.reason == "Zero or negative price"
    assert stored.campaigns() == []


def test_webhook_endpoint_resolves_owner_by_secret(client, connection_factory, stored):
    connection_factory(user_id=7, platform="revenuecat", account_id="proj1", access_token="sk_rc", settings={"webhook_secret": "whsec_1"})

    r = client.post(
        "/api/v1/webhooks/revenuecat",
        json={"api_version": "1.0", "event": _event()},
        headers={"Authorization": "Bearer whsec_1"},
    )

    assert r.status_code == 200, r.text
    assert r.json()["processed"] is True
    [country] = stored.countries(user_id=7)
    assert (country.country_code, country.revenue) == ("NO", Decimal("10.86"))


def test_webhook_endpoint_rejects_unknown_secret(client, connection_factory, stored):
    connection_factory(platform="revenuecat", access_token="sk_rc")

    r = client.post("/api/v1/webhooks/revenuecat", json={"event": _event()}, headers={"Authorization": "Bearer nope"})
    assert r.status_code == 401
    r = client.post("/api/v1/webhooks/revenuecat", json={"event": _event()})
    assert r.status_code == 401
    assert stored.campaigns() == []


def test_webhook_secret_defaults_to_api_key(client, connection_factory):
    connection_factory(platform="revenuecat", access_token="sk_rc")

    r = client.post(
        "/api/v1/webhooks/revenuecat",
        json={"event": _event(type="TRANSFER")},
        headers={"Authorization": "sk_rc"},
    )
    assert r.status_code == 200
    assert r.json()["skipped"] is True


def test_lowercase_country_is_normalized(db_session, fx_cache, stored):
    asyncio.run(process_webhook_event(db_session, 1, RevenueCatEvent(**_event(country_code="no")), fx_cache))

    [campaign] = stored.campaigns(platform="revenuecat")
    assert campaign.country_code == "NO"
    [country] = stored.countries(platform="revenuecat")
    assert (country.country_code, country.revenue) == ("NO", Decimal("10.86"))
