# app/core/auth/security.py

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.db.base import get_async_db_session
from app.core.swaps.engine import Actor
from app.core.users.models import User

from .schemas import TokenData

log = logging.getLogger(__name__)

# Real sign-in happens upstream; tokenUrl points at the development login
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/v1/auth/login/test")


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """
    Creates a JWT access token.

    Args:
        data (dict): Payload. A ``user_id`` key is moved to ``sub``.
        expires_delta (timedelta | None, optional): Token lifetime. Defaults
            to ``JWT_ACCESS_TOKEN_EXPIRE_MINUTES``.

    Returns:
        str: Encoded JWT.
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode["exp"] = expire
    if "user_id" in to_encode:
        to_encode["sub"] = str(to_encode.pop("user_id"))
    elif "sub" not in to_encode:
        raise ValueError("Missing 'user_id' or 'sub' in data for JWT")

    encoded_jwt = jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    log.debug("Created JWT token for sub: %s", to_encode.get("sub"))
    return encoded_jwt


async def verify_token(token: str, credentials_exception: HTTPException) -> TokenData:
    """
    Verifies a JWT and returns its data.

    Raises:
        HTTPException: ``credentials_exception`` if the token is invalid or
            expired (``jwt.decode`` checks ``exp``).
    """
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        user_id: str | None = payload.get("sub")
        if user_id is None:
            log.warning("Token verification failed: 'sub' (user_id) claim missing.")
            raise credentials_exception
        token_data = TokenData(user_id=user_id)
    except JWTError as e:
        log.warning("Token verification failed: JWTError - %s", e)
        raise credentials_exception from e
    except ValidationError as e:
        log.warning("Token verification failed: ValidationError - %s", e)
        raise credentials_exception from e

    log.debug("Token verified successfully for user_id: %s", user_id)
    return token_data


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_async_db_session)
) -> User:
    """
    FastAPI dependency: the authenticated user.

    Raises:
        HTTPException: 401 if the token is invalid, 404 if its user is gone.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    token_data = await verify_token(token, credentials_exception)

    user = await db.get(User, token_data.user_id)
    if user is None:
        log.error("User with id %s from valid token not found in DB.", token_data.user_id)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User with id {token_data.user_id} not found",
        )
    return user


async def get_current_actor(current_user: User = Depends(get_current_user)) -> Actor:
    """FastAPI dependency: the caller identity handed to the negotiation engine."""
    return Actor(user_id=current_user.id, name=current_user.name)
