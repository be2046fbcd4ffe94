# app/core/users/models.py

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class User(Base):
    """Marketplace participant. Credentials live outside this service."""
    __tablename__ = 'users'

    id: Mapped[str] = mapped_column(String(64), primary_key=True, index=True, comment="Internal User ID")
    name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, comment="User display name")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User id={self.id!r} name={self.name!r}>"
