# app/core/slots/models.py

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Enum as SAEnum, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.types import UTCDateTime, utcnow

if TYPE_CHECKING:
    from app.core.users.models import User


class SlotStatus(str, enum.Enum):
    BUSY = "BUSY"
    SWAPPABLE = "SWAPPABLE"
    # Held by a pending swap request; only the engine sets or clears it
    LOCKED = "LOCKED"


class Slot(Base):
    """
    Calendar event that can be traded on the marketplace.

    ``version`` is bumped by the ORM on every UPDATE and checked in the
    WHERE clause, so a write based on a stale read fails instead of
    silently overwriting a concurrent change.
    """
    __tablename__ = 'slots'

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    owner_id: Mapped[str] = mapped_column(
        String(64), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[SlotStatus] = mapped_column(
        SAEnum(SlotStatus, name="slot_status", native_enum=False, length=16),
        default=SlotStatus.BUSY,
        nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    owner: Mapped["User"] = relationship("User", lazy="selectin")

    __table_args__ = (
        Index('ix_slots_status_start_time', 'status', 'start_time'),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Slot id={self.id!r} owner_id={self.owner_id!r} "
            f"status={self.status.value} v={self.version}>"
        )
