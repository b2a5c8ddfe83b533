import os
import sys
from datetime import date, timedelta
from pathlib import Path
from typing import List, Optional
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure project root on sys.path so 'spendsync' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from spendsync.main import app  # type: ignore
from spendsync.database import Base  # type: ignore
from spendsync.api import deps  # type: ignore
"""Pytest fixtures and factories.

All model modules are imported through ``spendsync.models.db`` before
``Base.metadata.create_all()`` so every table exists.
"""
from spendsync.models.db import (
    CampaignDailyAggregate,
    CampaignAttributionSetting,
    ConnectedAccount,
    CountryDailyAggregate,
    SyncLog,
)
from spendsync.models.schemas.rows import CanonicalRow
from spendsync.utils.time import utc_now
from tests.helpers import StaticRateCache, TEST_RATES

# File-based SQLite so the TestClient thread and the test thread share data.
SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///./test_spendsync.db"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    try:
        os.remove("test_spendsync.db")
    except OSError:
        pass

@pytest.fixture(autouse=True)
def _clean_tables(create_test_db):
    """Every test starts from empty tables."""
    def _purge():
        with engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                conn.execute(table.delete())
    _purge()
    yield
    _purge()

@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

# Override dependency
def _override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

app.dependency_overrides[deps.get_db] = _override_get_db

@pytest.fixture()
def fx_cache():
    return StaticRateCache(rates=TEST_RATES)

@pytest.fixture()
def client(fx_cache):
    app.dependency_overrides[deps.get_fx_cache] = lambda: fx_cache
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(deps.get_fx_cache, None)

@pytest.fixture()
def today():
    return date(2026, 2, 10)

# ---------- Data factory helpers ----------

@pytest.fixture()
def row_factory(today):
    def _create(
        platform: str = "meta",
        campaign_id: str = "C1",
        country_code: Optional[str] = "US",
        day: Optional[date] = None,
        currency: str = "USD",
        **values,
    ) -> CanonicalRow:
        return CanonicalRow(
            platform=platform,
            campaign_id=campaign_id,
            country_code=country_code,
            date=day or today,
            currency_code=currency,
            **values,
        )
    return _create

@pytest.fixture()
def connection_factory(db_session):
    def _create(
        user_id: int = 1,
        platform: str = "meta",
        account_id: str = "act_123",
        access_token: str = "token-1",
        refresh_token: Optional[str] = None,
        expires_in: Optional[timedelta] = None,
        settings: Optional[dict] = None,
    ) -> ConnectedAccount:
        record = ConnectedAccount(
            user_id=user_id,
            platform=platform,
            account_id=account_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=utc_now() + expires_in if expires_in is not None else None,
            settings=settings,
        )
        db_session.add(record)
        db_session.commit()
        db_session.refresh(record)
        return record
    return _create

@pytest.fixture()
def attribution_factory(db_session):
    def _create(platform: str, campaign_id: str, mode: str, country_code: str = "", user_id: int = 1):
        setting = CampaignAttributionSetting(
            user_id=user_id, platform=platform, campaign_id=campaign_id, mode=mode, country_code=country_code
        )
        db_session.add(setting)
        db_session.commit()
        return setting
    return _create

@pytest.fixture()
def stored(db_session):
    """Read helpers for the aggregate tables."""
    class _Stored:
        def campaigns(self, user_id: int = 1, platform: Optional[str] = None) -> List[CampaignDailyAggregate]:
            db_session.expire_all()
            query = db_session.query(CampaignDailyAggregate).filter_by(user_id=user_id)
            if platform:
                query = query.filter_by(platform=platform)
            return query.order_by(CampaignDailyAggregate.campaign_id, CampaignDailyAggregate.date).all()

        def countries(self, user_id: int = 1, platform: Optional[str] = None) -> List[CountryDailyAggregate]:
            db_session.expire_all()
            query = db_session.query(CountryDailyAggregate).filter_by(user_id=user_id)
            if platform:
                query = query.filter_by(platform=platform)
            return query.order_by(CountryDailyAggregate.country_code, CountryDailyAggregate.date).all()

        def sync_log(self, platform: str, user_id: int = 1) -> Optional[SyncLog]:
            db_session.expire_all()
            return db_session.query(SyncLog).filter_by(user_id=user_id, platform=platform).first()
    return _Stored()
