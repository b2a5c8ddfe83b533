"""Credential lifecycle: hand out a valid access token per (user, platform).

Tokens expiring within ``CREDENTIAL_SETTINGS['refresh_margin_seconds']`` are
refreshed through the provider's refresh-token grant before use. Refreshes are
single-flight per (user, platform): concurrent callers wait on one exchange and
then read the token it persisted, so a rotated refresh token is never spent
twice.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from spendsync.config import CREDENTIAL_SETTINGS, OAUTH_CLIENTS, PROVIDER_TIMEOUTS
from spendsync.exceptions import PlatformNotConnectedError, ProviderRequestError, ProviderTransientError
from spendsync.integrations.base import AdapterCredentials, request_json
from spendsync.models.db.connected_accounts import ConnectedAccount
from spendsync.utils import get_logger, log_business_event
from spendsync.utils.locks import SingleFlight, create_single_flight
from spendsync.utils.time import as_utc, utc_now

logger = get_logger(__name__)


def get_connection(session: Session, user_id: int, platform: str) -> Optional[ConnectedAccount]:
    return session.execute(
        select(ConnectedAccount).where(
            ConnectedAccount.user_id == user_id,
            ConnectedAccount.platform == platform,
        )
    ).scalar_one_or_none()


class CredentialManager:
    def __init__(
        self,
        single_flight: Optional[SingleFlight] = None,
        oauth_clients: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ):
        self.single_flight = single_flight or create_single_flight()
        self.oauth_clients = oauth_clients if oauth_clients is not None else OAUTH_CLIENTS

    def _is_fresh(self, record: ConnectedAccount) -> bool:
        if record.expires_at is None:
            return True
        margin = timedelta(seconds=CREDENTIAL_SETTINGS["refresh_margin_seconds"])
        return as_utc(record.expires_at) > utc_now() + margin

    def _require(self, session: Session, user_id: int, platform: str) -> ConnectedAccount:
        record = get_connection(session, user_id, platform)
        if record is None:
            raise PlatformNotConnectedError(platform, "no connection on record")
        return record

    async def ensure_valid_token(self, session: Session, user_id: int, platform: str) -> str:
        """Return a usable access token, refreshing it first when it is about to expire.

        Raises PlatformNotConnectedError when the user has to reconnect and
        ProviderTransientError when the exchange (or the refresh lock) timed out.
        """
        record = self._require(session, user_id, platform)
        if self._is_fresh(record):
            return record.access_token

        key = f"token:{user_id}:{platform}"
        try:
            async with self.single_flight.hold(key):
                # another caller may have refreshed while we waited
                session.expire(record)
                record = self._require(session, user_id, platform)
                if self._is_fresh(record):
                    logger.debug("Token refreshed by concurrent caller", user_id=user_id, platform=platform)
                    return record.access_token
                return await self._refresh(session, user_id, record)
        except TimeoutError as e:
            raise ProviderTransientError(platform, "token refresh lock timed out") from e

    async def get_adapter_credentials(self, session: Session, user_id: int, platform: str) -> AdapterCredentials:
        token = await self.ensure_valid_token(session, user_id, platform)
        record = self._require(session, user_id, platform)
        return AdapterCredentials(access_token=token, settings=dict(record.settings or {}))

    async def _exchange(self, platform: str, client: Mapping[str, Any], refresh_token: str) -> Dict[str, Any]:
        """POST the refresh-token grant to the provider token endpoint."""
        body = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": client.get("client_id") or "",
            "client_secret": client.get("client_secret") or "",
        }
        timeout = PROVIDER_TIMEOUTS["oauth"]
        if client.get("body") == "form":
            payload = await request_json(platform, "POST", str(client["token_url"]), timeout=timeout, data=body)
        else:
            payload = await request_json(platform, "POST", str(client["token_url"]), timeout=timeout, json=body)
        return payload if isinstance(payload, dict) else {}

    async def _refresh(self, session: Session, user_id: int, record: ConnectedAccount) -> str:
        platform = record.platform
        client = self.oauth_clients.get(platform)
        if client is None:
            raise PlatformNotConnectedError(platform, "access token expired and the provider has no refresh grant")
        if not record.refresh_token:
            raise PlatformNotConnectedError(platform, "no refresh token stored")
        if not client.get("client_id") or not client.get("client_secret"):
            raise PlatformNotConnectedError(platform, "OAuth client credentials are not configured")

        try:
            payload = await self._exchange(platform, client, record.refresh_token)
        except ProviderRequestError as e:
            # invalid_grant and friends: the stored refresh token is no longer usable
            raise PlatformNotConnectedError(platform, f"refresh token rejected ({e})") from e

        access_token = payload.get("access_token")
        if not access_token:
            raise PlatformNotConnectedError(platform, "refresh response carried no access token")

        lifetime = payload.get("expires_in") or CREDENTIAL_SETTINGS["default_lifetime_seconds"]
        now = utc_now()
        record.access_token = access_token
        expires_at = now + timedelta(seconds=int(lifetime))
        record.expires_at = expires_at
        record.updated_at = now
        rotated = bool(payload.get("refresh_token")) and payload.get("refresh_token") != record.refresh_token
        if rotated:
            record.refresh_token = payload["refresh_token"]

        try:
            session.commit()
        except Exception:
            session.rollback()
            raise

        log_business_event(
            "token_refreshed",
            {"platform": platform, "expires_at": expires_at.isoformat(), "rotated_refresh_token": rotated},
            user_id=user_id,
        )
        return access_token


_default_manager: Optional[CredentialManager] = None


def get_credential_manager() -> CredentialManager:
    global _default_manager
    if _default_manager is None:
        _default_manager = CredentialManager()
    return _default_manager


__all__ = ["CredentialManager", "get_connection", "get_credential_manager"]
