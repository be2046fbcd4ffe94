# tests/test_users_service.py
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.users.service import UsersService
from app.core.users.models import User
from app.db.base import async_session_context


@pytest.mark.asyncio
async def test_get_or_create_user_creates_new(db_session: AsyncSession):
    service = UsersService(db_session)

    user = await service.get_or_create_user("new_user_123", name="Newbie")
    await db_session.commit()

    assert user.id == "new_user_123"
    assert user.name == "Newbie"

    # Visible from a fresh session, so the commit went through
    async with async_session_context() as verify_session:
        fetched_user = await verify_session.get(User, "new_user_123")
        assert fetched_user is not None
        assert fetched_user.name == "Newbie"


@pytest.mark.asyncio
async def test_get_or_create_user_finds_existing(db_session: AsyncSession):
    db_session.add(User(id="existing_user_456", name="Old"))
    await db_session.commit()

    user = await UsersService(db_session).get_or_create_user("existing_user_456")

    assert user.id == "existing_user_456"
    # No name given, stored name is kept
    assert user.name == "Old"


@pytest.mark.asyncio
async def test_get_or_create_user_updates_changed_name(db_session: AsyncSession):
    db_session.add(User(id="renamed", name="Before"))
    await db_session.commit()

    user = await UsersService(db_session).get_or_create_user("renamed", name="After")
    await db_session.commit()

    assert user.name == "After"
    async with async_session_context() as verify_session:
        assert (await verify_session.get(User, "renamed")).name == "After"


@pytest.mark.asyncio
async def test_get_user_missing_returns_none(db_session: AsyncSession):
    assert await UsersService(db_session).get_user("nobody") is None
