import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from spendsync.exceptions import PlatformNotConnectedError, ProviderRequestError, ProviderTransientError
from spendsync.models.db.connected_accounts import ConnectedAccount
from spendsync.services.credentials import CredentialManager
from spendsync.utils.locks import SingleFlight
from spendsync.utils.time import as_utc, utc_now

OAUTH_CLIENTS = {
    "google_ads": {
        "token_url": "https://oauth.example/token",
        "client_id": "client-id",
        "client_secret": "client-secret",
        "body": "json",
    },
}


class CountingManager(CredentialManager):
    """Credential manager whose token exchange is answered locally."""

    def __init__(self, response=None, error=None, **kwargs):
        super().__init__(single_flight=kwargs.pop("single_flight", SingleFlight()), oauth_clients=OAUTH_CLIENTS)
        self.response = response or {}
        self.error = error
        self.exchanges = []

    async def _exchange(self, platform, client, refresh_token):
        self.exchanges.append(refresh_token)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return dict(self.response)


def test_fresh_token_is_returned_without_exchange(db_session, connection_factory):
    connection_factory(platform="google_ads", access_token="still-good", refresh_token="r1", expires_in=timedelta(hours=1))
    manager = CountingManager()

    token = asyncio.run(manager.ensure_valid_token(db_session, 1, "google_ads"))
    assert token == "still-good"
    assert manager.exchanges == []


def test_token_without_expiry_never_refreshes(db_session, connection_factory):
    connection_factory(platform="stripe", access_token="sk_test")
    manager = CountingManager()

    assert asyncio.run(manager.ensure_valid_token(db_session, 1, "stripe")) == "sk_test"


def test_missing_connection(db_session):
    with pytest.raises(PlatformNotConnectedError):
        asyncio.run(CountingManager().ensure_valid_token(db_session, 1, "meta"))


def test_expiring_token_without_refresh_token(db_session, connection_factory):
    connection_factory(platform="google_ads", access_token="old", expires_in=timedelta(minutes=1))

    with pytest.raises(PlatformNotConnectedError):
        asyncio.run(CountingManager().ensure_valid_token(db_session, 1, "google_ads"))


def test_provider_without_refresh_grant(db_session, connection_factory):
    connection_factory(platform="meta", access_token="old", refresh_token="r1", expires_in=timedelta(seconds=-5))

    with pytest.raises(PlatformNotConnectedError):
        asyncio.run(CountingManager().ensure_valid_token(db_session, 1, "meta"))


def test_refresh_persists_rotated_refresh_token(db_session, connection_factory):
    connection_factory(platform="google_ads", access_token="old", refresh_token="r1", expires_in=timedelta(minutes=2))
    manager = CountingManager(response={"access_token": "new", "expires_in": 7200, "refresh_token": "r2"})

    token = asyncio.run(manager.ensure_valid_token(db_session, 1, "google_ads"))

    assert token == "new"
    assert manager.exchanges == ["r1"]
    db_session.expire_all()
    record = db_session.query(ConnectedAccount).filter_by(user_id=1, platform="google_ads").one()
    assert record.access_token == "new"
    assert record.refresh_token == "r2"
    assert as_utc(record.expires_at) > utc_now() + timedelta(minutes=100)


def test_rejected_refresh_token_requires_reconnect(db_session, connection_factory):
    connection_factory(platform="google_ads", access_token="old", refresh_token="r1", expires_in=timedelta(minutes=2))
    manager = CountingManager(error=ProviderRequestError("google_ads", "invalid_grant", status_code=400))

    with pytest.raises(PlatformNotConnectedError):
        asyncio.run(manager.ensure_valid_token(db_session, 1, "google_ads"))


def test_transient_exchange_failure_propagates(db_session, connection_factory):
    connection_factory(platform="google_ads", access_token="old", refresh_token="r1", expires_in=timedelta(minutes=2))
    manager = CountingManager(error=ProviderTransientError("google_ads", "HTTP 503"))

    with pytest.raises(ProviderTransientError):
        asyncio.run(manager.ensure_valid_token(db_session, 1, "google_ads"))


def test_concurrent_callers_share_one_refresh(db_session, connection_factory):
    connection_factory(platform="google_ads", access_token="old", refresh_token="r1", expires_in=timedelta(minutes=2))
    manager = CountingManager(response={"access_token": "new", "expires_in": 3600, "refresh_token": "r2"})

    async def scenario():
        return await asyncio.gather(*(manager.ensure_valid_token(db_session, 1, "google_ads") for _ in range(3)))

    tokens = asyncio.run(scenario())
    assert tokens == ["new", "new", "new"]
    assert manager.exchanges == ["r1"]


def test_busy_redis_lease_is_transient(db_session, connection_factory):
    connection_factory(platform="google_ads", access_token="old", refresh_token="r1", expires_in=timedelta(minutes=2))
    redis_client = MagicMock()
    redis_client.set = AsyncMock(return_value=False)
    redis_client.eval = AsyncMock(return_value=0)
    manager = CountingManager(single_flight=SingleFlight(redis_client))

    import spendsync.utils.locks as locks
    settings = dict(locks.LOCK_SETTINGS, wait_timeout_seconds=0, poll_interval_ms=1)
    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(locks, "LOCK_SETTINGS", settings)
        with pytest.raises(ProviderTransientError):
            asyncio.run(manager.ensure_valid_token(db_session, 1, "google_ads"))
    assert manager.exchanges == []


def test_adapter_credentials_carry_settings(db_session, connection_factory):
    connection_factory(platform="posthog", access_token="phx_key", settings={"posthog_host": "https://eu.posthog.com"})

    credentials = asyncio.run(CountingManager().get_adapter_credentials(db_session, 1, "posthog"))
    assert credentials.access_token == "phx_key"
    assert credentials.settings["posthog_host"] == "https://eu.posthog.com"
