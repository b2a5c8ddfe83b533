"""Exception hierarchy for ingestion, credential and merge failures.

Data-shape anomalies (unmapped country, unknown currency, zero-effect events)
are handled where they occur and never surface as exceptions. What remains
here is what the caller has to act on.
"""
from __future__ import annotations


class SpendSyncError(Exception):
    """Base class for all domain errors."""


class ProviderTransientError(SpendSyncError):
    """Timeout, transport failure or 5xx from a provider. Safe to retry."""

    retryable = True

    def __init__(self, platform: str, message: str):
        self.platform = platform
        super().__init__(f"{platform}: {message}")


class ProviderRateLimitedError(ProviderTransientError):
    """Provider answered 429."""


class ProviderRequestError(SpendSyncError):
    """Provider rejected the request (4xx other than auth/rate limit, or an API-level error code)."""

    retryable = False

    def __init__(self, platform: str, message: str, status_code: int | None = None):
        self.platform = platform
        self.status_code = status_code
        super().__init__(f"{platform}: {message}")


class PlatformNotConnectedError(SpendSyncError):
    """Missing or revoked credentials. The user has to reconnect."""

    retryable = False

    def __init__(self, platform: str, detail: str | None = None):
        self.platform = platform
        message = f"{platform} not properly connected"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class MergeError(SpendSyncError):
    """The merge transaction failed and was rolled back."""


class SyncInProgressError(SpendSyncError):
    """Another sync holds the lock for this user/platform."""


class UnsupportedPlatformError(SpendSyncError):
    """No adapter is registered for the requested platform tag."""


__all__ = [
    "SpendSyncError",
    "ProviderTransientError",
    "ProviderRateLimitedError",
    "ProviderRequestError",
    "PlatformNotConnectedError",
    "MergeError",
    "SyncInProgressError",
    "UnsupportedPlatformError",
]
