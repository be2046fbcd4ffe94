# app/core/swaps/ledger.py

"""Service-layer for swap requests (proposal lifecycle)."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    InvalidTransition,
    NotOwner,
    RequestNotFound,
    SelfSwap,
    SlotUnavailable,
)
from app.core.slots.models import Slot, SlotStatus
from app.core.slots.service import SlotStore
from app.db.types import utcnow

from .models import SwapRequest, SwapStatus

log = logging.getLogger(__name__)


class SwapLedger:
    """
    Stores swap requests and enforces their structural validity.

    Status changes go through :meth:`set_status`, which refuses to touch a
    terminal request. Like :class:`SlotStore` it never commits.
    """

    def __init__(self, db_session: AsyncSession, slots: SlotStore) -> None:
        self.db: AsyncSession = db_session
        self.slots = slots

    async def validate_proposal(
        self, requester_id: str, my_slot_id: str, their_slot_id: str
    ) -> tuple[Slot, Slot]:
        """
        Checks, in order: both slots exist, they have different owners,
        the requester owns ``my_slot``, both are SWAPPABLE.

        Returns:
            tuple[Slot, Slot]: ``(my_slot, their_slot)``, row-locked.

        Raises:
            SlotNotFound, SelfSwap, NotOwner, SlotUnavailable
        """
        my_slot = await self.slots.get(my_slot_id, for_update=True)
        their_slot = await self.slots.get(their_slot_id, for_update=True)

        if my_slot.id == their_slot.id or my_slot.owner_id == their_slot.owner_id:
            raise SelfSwap("Both slots belong to the same user")
        if my_slot.owner_id != requester_id:
            raise NotOwner(f"Slot {my_slot.id} is not owned by {requester_id}")
        for slot in (my_slot, their_slot):
            if slot.status != SlotStatus.SWAPPABLE:
                raise SlotUnavailable(
                    f"Slot '{slot.title}' is not swappable (status {slot.status.value})"
                )
        return my_slot, their_slot

    async def propose(
        self, requester_id: str, my_slot_id: str, their_slot_id: str
    ) -> SwapRequest:
        """
        Validates both slots and records a PENDING request; the responder is
        the current owner of ``their_slot``. Locking the two slots is the
        negotiation engine's job and happens in the same unit of work.
        """
        my_slot, their_slot = await self.validate_proposal(requester_id, my_slot_id, their_slot_id)
        request = SwapRequest(
            requester_id=requester_id,
            responder_id=their_slot.owner_id,
            my_slot_id=my_slot.id,
            their_slot_id=their_slot.id,
            status=SwapStatus.PENDING,
            created_at=utcnow(),
        )
        self.db.add(request)
        log.debug(
            "Recorded swap request %s -> %s (%s <-> %s)",
            requester_id, their_slot.owner_id, my_slot.id, their_slot.id,
        )
        return request

    async def get(self, request_id: str, for_update: bool = False) -> SwapRequest:
        stmt = select(SwapRequest).where(SwapRequest.id == request_id)
        if for_update:
            stmt = stmt.with_for_update(of=SwapRequest).execution_options(populate_existing=True)
        request = (await self.db.scalars(stmt)).one_or_none()
        if request is None:
            raise RequestNotFound(f"Swap request {request_id} not found")
        return request

    async def list_incoming(self, user_id: str) -> Sequence[SwapRequest]:
        """Requests where ``user_id`` is the responder, newest first."""
        stmt = (
            select(SwapRequest)
            .where(SwapRequest.responder_id == user_id)
            .order_by(SwapRequest.created_at.desc(), SwapRequest.id)
        )
        return (await self.db.scalars(stmt)).all()

    async def list_outgoing(self, user_id: str) -> Sequence[SwapRequest]:
        """Requests where ``user_id`` is the requester, newest first."""
        stmt = (
            select(SwapRequest)
            .where(SwapRequest.requester_id == user_id)
            .order_by(SwapRequest.created_at.desc(), SwapRequest.id)
        )
        return (await self.db.scalars(stmt)).all()

    async def pending_for_slots(
        self, slot_ids: Iterable[str], exclude_request_id: str | None = None
    ) -> Sequence[SwapRequest]:
        """
        Slot -> pending request lookup. Answered from the indexed
        ``my_slot_id`` / ``their_slot_id`` columns, never stored on the slot.
        """
        ids = list(set(slot_ids))
        if not ids:
            return []
        stmt = (
            select(SwapRequest)
            .where(SwapRequest.status == SwapStatus.PENDING)
            .where(or_(SwapRequest.my_slot_id.in_(ids), SwapRequest.their_slot_id.in_(ids)))
            .order_by(SwapRequest.created_at, SwapRequest.id)
        )
        if exclude_request_id is not None:
            stmt = stmt.where(SwapRequest.id != exclude_request_id)
        return (await self.db.scalars(stmt)).all()

    def set_status(self, request: SwapRequest, new_status: SwapStatus) -> SwapRequest:
        """
        Moves a PENDING request to a terminal status.

        Raises:
            InvalidTransition: the request is already terminal, or
                ``new_status`` is PENDING.
        """
        if request.status.is_terminal:
            raise InvalidTransition(
                f"Swap request {request.id} is already {request.status.value}"
            )
        if not new_status.is_terminal:
            raise InvalidTransition("A swap request cannot be moved back to PENDING")
        request.status = new_status
        request.resolved_at = utcnow()
        log.debug("Swap request %s -> %s", request.id, new_status.value)
        return request
