import asyncio
from datetime import date
from decimal import Decimal

import pytest

from spendsync.models.schemas.entries import ManualEntryCreate, ManualEntryKey, ManualEntryUpdate
from spendsync.services.manual_entries import (
    build_entry_row,
    delete_source,
    list_entries,
    remove_manual_entry,
    save_manual_entry,
    update_manual_entry,
)


def _entry(**overrides):
    values = dict(platform="custom_2", campaign_id="Flyers", country_code="DE", date=date(2026, 2, 1))
    values.update(overrides)
    return ManualEntryCreate(**values)


def test_replace_converts_to_usd(db_session, fx_cache, stored):
    asyncio.run(save_manual_entry(db_session, 1, _entry(spend=Decimal("46"), currency="EUR"), fx_cache))

    [campaign] = stored.campaigns()
    assert campaign.spend == Decimal("50.00")
    assert stored.countries()[0].spend == Decimal("50.00")


def test_add_sums_with_stored_values(db_session, fx_cache, stored):
    asyncio.run(save_manual_entry(db_session, 1, _entry(spend=Decimal("10"), clicks=3), fx_cache))

    preview = asyncio.run(build_entry_row(
        db_session, 1, _entry(spend=Decimal("9.20"), currency="EUR", clicks=2, on_conflict="add"), fx_cache
    ))
    assert (preview.spend, preview.clicks) == (Decimal("20.00"), 5)

    asyncio.run(save_manual_entry(
        db_session, 1, _entry(spend=Decimal("9.20"), currency="EUR", clicks=2, on_conflict="add"), fx_cache
    ))
    [campaign] = stored.campaigns()
    assert (campaign.spend, campaign.clicks) == (Decimal("20.00"), 5)
    [country] = stored.countries()
    assert (country.spend, country.clicks) == (Decimal("20.00"), 5)


def test_add_without_stored_row_is_a_plain_write(db_session, fx_cache, stored):
    asyncio.run(save_manual_entry(db_session, 1, _entry(revenue=Decimal("3"), purchases=1, on_conflict="add"), fx_cache))
    assert stored.campaigns()[0].revenue == Decimal("3.00")


def test_remove_entry(db_session, fx_cache, stored):
    asyncio.run(save_manual_entry(db_session, 1, _entry(spend=Decimal("1")), fx_cache))
    key = ManualEntryKey(platform="custom_2", campaign_id="Flyers", country_code="de", date=date(2026, 2, 1))

    assert remove_manual_entry(db_session, 1, key) is True
    assert stored.campaigns() == []
    assert stored.countries() == []
    assert remove_manual_entry(db_session, 1, key) is False


def _save(db_session, fx_cache, **overrides):
    asyncio.run(save_manual_entry(db_session, 1, _entry(**overrides), fx_cache))


def test_list_entries_orders_and_pages(db_session, fx_cache):
    for day in (1, 2, 3):
        for campaign in ("B", "A"):
            _save(db_session, fx_cache, campaign_id=campaign, date=date(2026, 2, day), spend=Decimal("1"))

    page = list_entries(db_session, 1, "custom_2", page=1, limit=4)
    assert page.total == 6
    assert [(e.date.day, e.campaign_id) for e in page.entries] == [(3, "A"), (3, "B"), (2, "A"), (2, "B")]

    second = list_entries(db_session, 1, "custom_2", page=2, limit=4)
    assert [(e.date.day, e.campaign_id) for e in second.entries] == [(1, "A"), (1, "B")]


def test_list_entries_filters_and_clamps(db_session, fx_cache):
    _save(db_session, fx_cache, campaign_id="A", spend=Decimal("1"))
    _save(db_session, fx_cache, campaign_id="B", spend=Decimal("2"))
    _save(db_session, fx_cache, campaign_id="A", date=date(2026, 2, 2), spend=Decimal("3"))

    by_day = list_entries(db_session, 1, "custom_2", day=date(2026, 2, 1))
    assert sorted(e.campaign_id for e in by_day.entries) == ["A", "B"]
    by_campaign = list_entries(db_session, 1, "custom_2", campaign_id="A")
    assert [e.spend for e in by_campaign.entries] == [3.0, 1.0]

    clamped = list_entries(db_session, 1, "custom_2", page=0, limit=500)
    assert (clamped.page, clamped.limit, clamped.total) == (1, 100, 3)
    assert list_entries(db_session, 1, "custom_2", limit=0).limit == 1
    assert list_entries(db_session, 2, "custom_2").total == 0


def test_update_moves_entry_to_another_country(db_session, fx_cache, stored):
    _save(db_session, fx_cache, campaign_id="A", spend=Decimal("10"))
    _save(db_session, fx_cache, campaign_id="B", spend=Decimal("4"))
    entry_id = next(c.id for c in stored.campaigns() if c.campaign_id == "A")

    found, entry = asyncio.run(update_manual_entry(
        db_session, 1, "custom_2", entry_id, ManualEntryUpdate(country_code="se", spend=Decimal("9.20"), currency="EUR"), fx_cache
    ))

    assert found is True
    assert (entry.id, entry.country_code, entry.spend, entry.clicks) == (entry_id, "SE", 10.0, 0)
    countries = {c.country_code: c.spend for c in stored.countries()}
    assert countries == {"DE": Decimal("4.00"), "SE": Decimal("10.00")}


def test_update_keeps_untouched_fields(db_session, fx_cache, stored):
    _save(db_session, fx_cache, spend=Decimal("46"), currency="EUR", clicks=7)
    entry_id = stored.campaigns()[0].id

    asyncio.run(update_manual_entry(db_session, 1, "custom_2", entry_id, ManualEntryUpdate(clicks=8), fx_cache))

    [campaign] = stored.campaigns()
    assert (campaign.spend, campaign.clicks, campaign.country_code) == (Decimal("50.00"), 8, "DE")
    assert stored.countries()[0].clicks == 8


def test_update_rejects_a_taken_key(db_session, fx_cache, stored):
    _save(db_session, fx_cache, spend=Decimal("1"))
    _save(db_session, fx_cache, date=date(2026, 2, 2), spend=Decimal("2"))
    entry_id = next(c.id for c in stored.campaigns() if c.date == date(2026, 2, 1))

    with pytest.raises(ValueError):
        asyncio.run(update_manual_entry(db_session, 1, "custom_2", entry_id, ManualEntryUpdate(date=date(2026, 2, 2)), fx_cache))
    with pytest.raises(ValueError):
        asyncio.run(update_manual_entry(db_session, 1, "custom_2", entry_id, ManualEntryUpdate(), fx_cache))

    assert sorted(c.spend for c in stored.campaigns()) == [Decimal("1.00"), Decimal("2.00")]


def test_update_to_zero_removes_entry(db_session, fx_cache, stored):
    _save(db_session, fx_cache, spend=Decimal("5"))
    entry_id = stored.campaigns()[0].id

    found, entry = asyncio.run(update_manual_entry(db_session, 1, "custom_2", entry_id, ManualEntryUpdate(spend=0), fx_cache))

    assert (found, entry) == (True, None)
    assert stored.campaigns() == []
    assert stored.countries() == []
    missing = asyncio.run(update_manual_entry(db_session, 1, "custom_2", entry_id, ManualEntryUpdate(spend=1), fx_cache))
    assert missing == (False, None)


def test_delete_source_only_for_custom_platforms(db_session, fx_cache, stored):
    _save(db_session, fx_cache, spend=Decimal("1"))
    _save(db_session, fx_cache, campaign_id="B", country_code=None, spend=Decimal("2"))

    with pytest.raises(ValueError):
        delete_source(db_session, 1, "meta")

    assert delete_source(db_session, 1, "custom_2") == (2, 1)
    assert stored.campaigns() == []
    assert stored.countries() == []
