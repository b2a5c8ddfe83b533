"""
Dependencies for database sessions, caller identity and shared services.
"""
from typing import Generator, Optional
from fastapi import HTTPException, status, Header
from sqlalchemy.orm import Session
from spendsync.database import SessionLocal
from spendsync.services.credentials import CredentialManager, get_credential_manager
from spendsync.services.currency import ExchangeRateCache, get_exchange_rate_cache
from spendsync.utils import get_logger

logger = get_logger(__name__)

def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.
    Ensures proper session lifecycle management with automatic cleanup.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()

def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> int:
    """
    Identify the data owner from the ``X-User-ID`` header.

    Authentication happens in front of this service; the header is trusted.

    Raises:
        HTTPException: 401 when the header is missing, 400 when it is not a positive integer
    """
    if x_user_id is None or not x_user_id.strip():
        logger.warning("Request without X-User-ID header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-ID header is required",
        )
    try:
        user_id = int(x_user_id)
    except ValueError:
        user_id = 0
    if user_id <= 0:
        logger.warning("Malformed X-User-ID header", value=x_user_id[:32])
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-ID must be a positive integer",
        )
    return user_id

def get_fx_cache() -> ExchangeRateCache:
    return get_exchange_rate_cache()

def get_credentials() -> CredentialManager:
    return get_credential_manager()

def get_bearer_token(authorization: Optional[str] = Header(None)) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header is required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    scheme, _, token = authorization.partition(" ")
    # RevenueCat sends the configured value verbatim, which may omit the scheme
    if scheme.lower() != "bearer" or not token.strip():
        return authorization.strip()
    return token.strip()
