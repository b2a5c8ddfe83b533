from datetime import timedelta
from decimal import Decimal

import pytest

from spendsync.exceptions import MergeError
from spendsync.models.db.enums import MergeMode
from spendsync.services.merge_engine import (
    delete_manual_entry,
    merge_manual_entry,
    merge_rows,
    move_manual_entry,
    purge_platform,
)


def test_overwrite_is_idempotent(db_session, row_factory, stored):
    rows = [
        row_factory(campaign_id="C1", country_code="US", spend=Decimal("10.50"), impressions=100, clicks=5),
        row_factory(campaign_id="C2", country_code="US", spend=Decimal("4.50"), impressions=50, clicks=1),
    ]
    merge_rows(db_session, 1, rows, MergeMode.OVERWRITE)
    merge_rows(db_session, 1, rows, MergeMode.OVERWRITE)

    campaigns = stored.campaigns()
    assert [(c.campaign_id, c.spend) for c in campaigns] == [("C1", Decimal("10.50")), ("C2", Decimal("4.50"))]
    countries = stored.countries()
    assert len(countries) == 1
    # campaigns sharing a country/day are summed before the overwrite
    assert countries[0].spend == Decimal("15.00")
    assert countries[0].impressions == 150
    assert countries[0].clicks == 6


def test_accumulate_adds_to_stored_values(db_session, row_factory, stored):
    row = row_factory(platform="revenuecat", campaign_id="pro_monthly", country_code="NO", revenue=Decimal("10.86"), purchases=1)
    merge_rows(db_session, 1, [row], MergeMode.ACCUMULATE)
    merge_rows(db_session, 1, [row], MergeMode.ACCUMULATE)

    [campaign] = stored.campaigns(platform="revenuecat")
    assert campaign.revenue == Decimal("21.72")
    assert campaign.purchases == 2
    [country] = stored.countries(platform="revenuecat")
    assert country.country_code == "NO"
    assert country.purchases == 2


def test_rows_without_country_only_reach_campaign_store(db_session, row_factory, stored):
    merge_rows(db_session, 1, [row_factory(platform="linkedin", country_code=None, spend=Decimal("7"))], MergeMode.OVERWRITE)

    [campaign] = stored.campaigns(platform="linkedin")
    assert campaign.country_code == ""
    assert stored.countries(platform="linkedin") == []


def test_empty_rows_are_discarded(db_session, row_factory, stored):
    summary = merge_rows(
        db_session,
        1,
        [row_factory(campaign_id="C1"), row_factory(campaign_id="C2", clicks=3)],
        MergeMode.OVERWRITE,
    )
    assert summary.received == 2
    assert summary.discarded_empty == 1
    assert summary.merged == 1
    assert [c.campaign_id for c in stored.campaigns()] == ["C2"]


def test_unconverted_rows_are_rejected_before_writing(db_session, row_factory, stored):
    rows = [row_factory(campaign_id="C1", spend=Decimal("5")), row_factory(campaign_id="C2", currency="EUR", spend=Decimal("5"))]
    with pytest.raises(ValueError):
        merge_rows(db_session, 1, rows, MergeMode.OVERWRITE)
    assert stored.campaigns() == []


def test_window_replaces_rows_that_disappeared(db_session, row_factory, stored, today):
    yesterday = today - timedelta(days=1)
    window = ("meta", yesterday, today)
    merge_rows(
        db_session,
        1,
        [row_factory(campaign_id="C1", day=yesterday, spend=Decimal("3")), row_factory(campaign_id="C2", spend=Decimal("2"))],
        MergeMode.OVERWRITE,
        window=window,
    )
    summary = merge_rows(db_session, 1, [row_factory(campaign_id="C2", spend=Decimal("2"))], MergeMode.OVERWRITE, window=window)

    assert summary.deleted_campaign_rows == 2
    assert [c.campaign_id for c in stored.campaigns()] == ["C2"]
    assert len(stored.countries()) == 1


def test_window_rejects_rows_outside_it(db_session, row_factory, today):
    with pytest.raises(ValueError):
        merge_rows(
            db_session,
            1,
            [row_factory(day=today - timedelta(days=5), spend=Decimal("1"))],
            MergeMode.OVERWRITE,
            window=("meta", today - timedelta(days=1), today),
        )
    with pytest.raises(ValueError):
        merge_rows(db_session, 1, [], MergeMode.ACCUMULATE, window=("meta", today, today))


def test_failed_batch_is_rolled_back(db_session, row_factory, stored, monkeypatch):
    import spendsync.services.merge_engine as merge_engine

    def _boom(*args, **kwargs):
        raise RuntimeError("disk full")

    merge_rows(db_session, 1, [row_factory(spend=Decimal("1"))], MergeMode.OVERWRITE)
    monkeypatch.setattr(merge_engine, "_upsert_country", _boom)
    with pytest.raises(MergeError):
        merge_rows(db_session, 1, [row_factory(spend=Decimal("99"))], MergeMode.OVERWRITE)

    [campaign] = stored.campaigns()
    assert campaign.spend == Decimal("1.00")


def test_manual_entry_rebuilds_country_key(db_session, row_factory, stored):
    merge_rows(
        db_session,
        1,
        [row_factory(platform="custom_1", campaign_id="A", spend=Decimal("10")), row_factory(platform="custom_1", campaign_id="B", spend=Decimal("5"))],
        MergeMode.OVERWRITE,
    )
    merge_manual_entry(db_session, 1, row_factory(platform="custom_1", campaign_id="A", spend=Decimal("2")))

    [country] = stored.countries(platform="custom_1")
    assert country.spend == Decimal("7.00")

    # all-zero entry removes the key
    merge_manual_entry(db_session, 1, row_factory(platform="custom_1", campaign_id="B"))
    assert [c.campaign_id for c in stored.campaigns(platform="custom_1")] == ["A"]
    assert stored.countries(platform="custom_1")[0].spend == Decimal("2.00")


def test_delete_manual_entry(db_session, row_factory, stored, today):
    merge_manual_entry(db_session, 1, row_factory(platform="custom_1", campaign_id="A", spend=Decimal("4")))

    assert delete_manual_entry(db_session, 1, "custom_1", "A", "us", today) is True
    assert stored.campaigns(platform="custom_1") == []
    assert stored.countries(platform="custom_1") == []
    assert delete_manual_entry(db_session, 1, "custom_1", "A", "US", today) is False


def test_users_do_not_share_rows(db_session, row_factory, stored):
    merge_rows(db_session, 1, [row_factory(spend=Decimal("1"))], MergeMode.OVERWRITE)
    merge_rows(db_session, 2, [row_factory(spend=Decimal("9"))], MergeMode.OVERWRITE)

    assert stored.campaigns(user_id=1)[0].spend == Decimal("1.00")
    assert stored.campaigns(user_id=2)[0].spend == Decimal("9.00")


def test_each_row_is_rounded_before_summing(db_session, row_factory, stored):
    row = row_factory(platform="revenuecat", campaign_id="pro_monthly", country_code="NO", revenue=Decimal("1.005"))
    merge_rows(db_session, 1, [row, row, row], MergeMode.ACCUMULATE)
    merge_rows(db_session, 1, [row], MergeMode.ACCUMULATE)

    # 1.005 rounds half up to 1.01 per row, however the rows are batched
    assert stored.campaigns(platform="revenuecat")[0].revenue == Decimal("4.04")
    assert stored.countries(platform="revenuecat")[0].revenue == Decimal("4.04")


def test_move_entry_rebuilds_old_and_new_country(db_session, row_factory, stored):
    merge_rows(db_session, 1, [
        row_factory(platform="custom_1", campaign_id="A", country_code="DE", spend=Decimal("10")),
        row_factory(platform="custom_1", campaign_id="B", country_code="DE", spend=Decimal("5")),
    ], MergeMode.OVERWRITE)
    entry = next(c for c in stored.campaigns(platform="custom_1") if c.campaign_id == "A")

    moved = move_manual_entry(db_session, 1, entry.id, row_factory(platform="custom_1", campaign_id="A", country_code="SE", spend=Decimal("10")))

    assert moved is True
    countries = {c.country_code: c.spend for c in stored.countries(platform="custom_1")}
    assert countries == {"DE": Decimal("5.00"), "SE": Decimal("10.00")}


def test_move_entry_refuses_a_taken_key(db_session, row_factory, stored):
    merge_rows(db_session, 1, [
        row_factory(platform="custom_1", campaign_id="A", country_code="DE", spend=Decimal("10")),
        row_factory(platform="custom_1", campaign_id="A", country_code="SE", spend=Decimal("5")),
    ], MergeMode.OVERWRITE)
    entry = next(c for c in stored.campaigns(platform="custom_1") if c.country_code == "DE")

    with pytest.raises(ValueError):
        move_manual_entry(db_session, 1, entry.id, row_factory(platform="custom_1", campaign_id="A", country_code="SE", spend=Decimal("1")))

    countries = {c.country_code: c.spend for c in stored.countries(platform="custom_1")}
    assert countries == {"DE": Decimal("10.00"), "SE": Decimal("5.00")}
    assert move_manual_entry(db_session, 1, 99999, row_factory(platform="custom_1", spend=Decimal("1"))) is False


def test_purge_platform_clears_both_stores(db_session, row_factory, stored):
    merge_rows(db_session, 1, [row_factory(platform="custom_1", spend=Decimal("1")), row_factory(platform="custom_2", spend=Decimal("2"))], MergeMode.OVERWRITE)

    assert purge_platform(db_session, 1, "custom_1") == (1, 1)
    assert stored.campaigns(platform="custom_1") == []
    assert stored.countries(platform="custom_1") == []
    assert len(stored.campaigns(platform="custom_2")) == 1
