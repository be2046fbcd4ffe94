# app/core/users/service.py

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.users.models import User

log = logging.getLogger(__name__)


class UsersService:
    """
    Async service for marketplace users.
    Works with internal user ids; authentication happens upstream.
    """
    model = User

    def __init__(self, db_session: AsyncSession):
        """
        Args:
            db_session (AsyncSession): Active SQLAlchemy session.
        """
        self.db: AsyncSession = db_session

    async def get_or_create_user(self, user_id: str, name: str | None = None) -> User:
        """
        Finds a user by internal id or creates one. When ``name`` is given and
        differs from the stored display name, the name is updated.

        Args:
            user_id (str): Internal user identifier.
            name (str | None, optional): Display name. Defaults to None.

        Returns:
            User: Found or created user (ORM model).
        """
        log.debug("Ensuring user by internal id=%s", user_id)
        user = await self.db.get(User, user_id)
        if not user:
            log.info("User with internal id=%s not found, creating.", user_id)
            user = User(id=user_id, name=name)
            self.db.add(user)
            await self.db.flush()
            await self.db.refresh(user)
        elif name and user.name != name:
            log.debug("Updating name for existing user %s", user.id)
            user.name = name
            await self.db.flush()
            await self.db.refresh(user)
        return user

    async def get_user(self, user_id: str) -> User | None:
        return await self.db.get(User, user_id)
