# app/api/v1/auth.py

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status, Body
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.auth.schemas import Token, TestLoginRequest, UserOut
from app.core.auth.security import create_access_token, get_current_user
from app.core.users.models import User
from app.core.users.service import UsersService
from app.db.base import get_async_db_session

router = APIRouter(prefix="/v1/auth", tags=["Authentication & Testing"])
log = logging.getLogger(__name__)


@router.post(
    "/login/test",
    response_model=Token,
    summary="[Development Only] Get JWT for a user ID",
    description=(
        "**WARNING:** Use only for development/testing. "
        "Creates a user (if doesn't exist) and returns a JWT token "
        "for the given internal `user_id`. Disabled when ENVIRONMENT=prod."
    )
)
async def test_login_for_access_token(
    login_data: TestLoginRequest = Body(...),
    db: AsyncSession = Depends(get_async_db_session)
) -> Token:
    if settings.ENVIRONMENT == "prod":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    user_id = login_data.user_id
    log.warning("Executing TEST login for user_id: %s. Ensure this is NOT production!", user_id)
    try:
        user = await UsersService(db).get_or_create_user(user_id, name=login_data.name)
        await db.commit()
    except SQLAlchemyError as e:
        log.exception("Failed to ensure user during test login for user_id: %s", user_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Database error while ensuring user: {type(e).__name__}"
        ) from e
    access_token = create_access_token(data={"user_id": user.id})
    log.info("Generated test JWT for user_id: %s", user.id)
    return Token(access_token=access_token, token_type="bearer")


@router.get("/me", response_model=UserOut, summary="Current user")
async def read_me(current_user: User = Depends(get_current_user)) -> UserOut:
    return UserOut.model_validate(current_user)
