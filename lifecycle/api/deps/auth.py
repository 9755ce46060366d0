"""JWT validation and user authentication dependencies.

This module provides:
- JWT validation against Supabase JWKS
- The authenticated caller (id + email) taken from the token claims
- Account profile lookup for routes that need the full row
"""

import logging
import time
import uuid as uuid_pkg
from dataclasses import dataclass
from typing import Annotated, Any

import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from jose.backends import ECKey
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycle.config import settings
from lifecycle.core.database import get_db
from lifecycle.core.exceptions import NotFoundError
from lifecycle.domain.account_operations import account_ops
from lifecycle.models.account import Account

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

# Cache for JWKS with TTL to handle key rotation
_jwks_cache: dict[str, Any] = {}
_jwks_cache_timestamp: float = 0.0
_JWKS_CACHE_TTL_SECONDS: float = 3600.0  # 1 hour


@dataclass(frozen=True)
class AuthenticatedUser:
    """The caller as asserted by the identity provider's token."""

    id: uuid_pkg.UUID
    email: str | None = None


async def _fetch_jwks() -> dict[str, Any]:
    """Fetch JWKS from Supabase and update the cache."""
    global _jwks_cache_timestamp
    async with httpx.AsyncClient() as client:
        response = await client.get(settings.supabase_jwks_url)
        response.raise_for_status()
        jwks = response.json()
        _jwks_cache.clear()
        _jwks_cache.update(jwks)
        _jwks_cache_timestamp = time.monotonic()
        return jwks


async def get_jwks(force_refresh: bool = False) -> dict[str, Any]:
    """Fetch and cache JWKS from Supabase with a 1-hour TTL."""
    cache_age = time.monotonic() - _jwks_cache_timestamp
    if _jwks_cache and not force_refresh and cache_age < _JWKS_CACHE_TTL_SECONDS:
        return _jwks_cache

    return await _fetch_jwks()


def get_signing_key(jwks: dict[str, Any], token: str) -> ECKey:
    """Get the signing key from JWKS that matches the token's kid."""
    unverified_header = jwt.get_unverified_header(token)
    kid = unverified_header.get("kid")

    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return ECKey(key, algorithm="ES256")

    raise ValueError("Unable to find matching key in JWKS")


def _decode(token: str, jwks: dict[str, Any]) -> AuthenticatedUser:
    signing_key = get_signing_key(jwks, token)
    payload = jwt.decode(
        token,
        signing_key,
        algorithms=["ES256"],
        audience="authenticated",
    )
    user_id_str: str | None = payload.get("sub")
    if user_id_str is None:
        raise ValueError("Token has no subject")
    return AuthenticatedUser(id=uuid_pkg.UUID(user_id_str), email=payload.get("email"))


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> AuthenticatedUser:
    """Validate the Supabase JWT and return the caller."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    token = credentials.credentials

    try:
        return _decode(token, await get_jwks())
    except (JWTError, ValueError) as first_error:
        # Key rotation may have occurred: force a JWKS refresh and retry once
        try:
            logger.info("JWT validation failed with cached JWKS, forcing refresh")
            return _decode(token, await get_jwks(force_refresh=True))
        except (JWTError, ValueError, httpx.HTTPError):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Could not validate credentials",
            ) from first_error
    except httpx.HTTPError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from None


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]


async def get_current_account(db: DbSession, current_user: CurrentUser) -> Account:
    """The caller's profile row. 404 when the profile was never created or is gone."""
    account = await account_ops.get(db, current_user.id)
    if account is None:
        raise NotFoundError("Account")
    return account


CurrentAccount = Annotated[Account, Depends(get_current_account)]
