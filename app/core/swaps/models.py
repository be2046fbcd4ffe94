# app/core/swaps/models.py

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlalchemy import Enum as SAEnum, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.types import UTCDateTime, utcnow

if TYPE_CHECKING:
    from app.core.slots.models import Slot
    from app.core.users.models import User


class SwapStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not SwapStatus.PENDING


_PENDING_ONLY = text("status = 'PENDING'")


class SwapRequest(Base):
    """
    Proposal to exchange ``my_slot`` (owned by the requester) for
    ``their_slot`` (owned by the responder).

    Rows are never deleted. Slot ids are plain references rather than
    foreign keys so the audit trail survives a later deletion of a slot.
    """
    __tablename__ = 'swap_requests'

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    requester_id: Mapped[str] = mapped_column(
        String(64), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True
    )
    responder_id: Mapped[str] = mapped_column(
        String(64), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True
    )
    my_slot_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    their_slot_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    status: Mapped[SwapStatus] = mapped_column(
        SAEnum(SwapStatus, name="swap_status", native_enum=False, length=16),
        default=SwapStatus.PENDING,
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False, index=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    requester: Mapped["User"] = relationship("User", foreign_keys=[requester_id], lazy="selectin")
    responder: Mapped["User"] = relationship("User", foreign_keys=[responder_id], lazy="selectin")
    my_slot: Mapped[Optional["Slot"]] = relationship(
        "Slot",
        primaryjoin="foreign(SwapRequest.my_slot_id) == Slot.id",
        viewonly=True,
        lazy="selectin",
    )
    their_slot: Mapped[Optional["Slot"]] = relationship(
        "Slot",
        primaryjoin="foreign(SwapRequest.their_slot_id) == Slot.id",
        viewonly=True,
        lazy="selectin",
    )

    # A slot can back at most one PENDING request on each side; the LOCKED
    # slot status covers the cross-side case.
    __table_args__ = (
        Index(
            'uq_swap_requests_pending_my_slot', 'my_slot_id', unique=True,
            sqlite_where=_PENDING_ONLY, postgresql_where=_PENDING_ONLY,
        ),
        Index(
            'uq_swap_requests_pending_their_slot', 'their_slot_id', unique=True,
            sqlite_where=_PENDING_ONLY, postgresql_where=_PENDING_ONLY,
        ),
    )

    @property
    def slot_ids(self) -> tuple[str, str]:
        return self.my_slot_id, self.their_slot_id

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<SwapRequest id={self.id!r} {self.requester_id}:{self.my_slot_id} <-> "
            f"{self.responder_id}:{self.their_slot_id} status={self.status.value}>"
        )
