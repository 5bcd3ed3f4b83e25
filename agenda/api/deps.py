"""
FastAPI Dependencies

Provides dependency injection for database sessions, the caller's identity
and the scheduling configuration.

Identity is a bearer JWT issued elsewhere; only its ``sub`` claim (the
customer id) is used here, for ownership checks.

SECURITY NOTES:
- JWT payloads are never logged
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated, Callable, Optional
import logging

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.config import SchedulingConfig, settings
from agenda.database import get_db
from agenda.exceptions import UnauthorizedError
from agenda.services.payments import PaymentProvider, get_payment_provider

logger = logging.getLogger(__name__)


# HTTP Bearer for JWT
security = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _decode_subject(token: str) -> Optional[str]:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        # Don't log the token or payload
        logger.debug("JWT validation failed")
        return None
    subject = payload.get("sub")
    return str(subject) if subject else None


async def get_current_customer_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> str:
    """Customer id of the caller; 401 when the token is missing or invalid."""
    if not credentials or not credentials.credentials:
        raise UnauthorizedError()
    customer_id = _decode_subject(credentials.credentials)
    if customer_id is None:
        raise UnauthorizedError("Could not validate credentials")
    return customer_id


async def get_optional_customer_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> Optional[str]:
    """Caller's customer id when a valid token is present, else None."""
    if not credentials or not credentials.credentials:
        return None
    return _decode_subject(credentials.credentials)


def get_scheduling_config() -> SchedulingConfig:
    return SchedulingConfig.from_settings(settings)


def get_provider_lookup() -> Callable[[Optional[str]], Optional[PaymentProvider]]:
    """Payment provider registry, as a dependency."""
    return get_payment_provider


# Type aliases for dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentCustomerId = Annotated[str, Depends(get_current_customer_id)]
OptionalCustomerId = Annotated[Optional[str], Depends(get_optional_customer_id)]
Config = Annotated[SchedulingConfig, Depends(get_scheduling_config)]
ProviderLookup = Annotated[Callable[[Optional[str]], Optional[PaymentProvider]], Depends(get_provider_lookup)]
