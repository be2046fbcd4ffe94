# app/core/slots/service.py

"""Service-layer for Slots."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from sqlalchemy import exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    InvalidRange,
    InvalidTransition,
    NotOwner,
    SlotNotFound,
    SlotReferenced,
)
from app.core.swaps.models import SwapRequest, SwapStatus
from app.core.users.models import User
from app.db.types import as_utc

from .models import Slot, SlotStatus

log = logging.getLogger(__name__)

# Statuses an owner may request directly
OWNER_SETTABLE_STATUSES = frozenset({SlotStatus.BUSY, SlotStatus.SWAPPABLE})


def _check_range(start_time: datetime, end_time: datetime) -> None:
    if as_utc(start_time) >= as_utc(end_time):
        raise InvalidRange(
            f"Start time {start_time.isoformat()} must be before end time {end_time.isoformat()}"
        )


class SlotStore:
    """
    Async store of slots and their availability state.

    Owner-facing methods check ``acting_user_id`` against the slot owner.
    ``transfer_ownership`` and ``set_status`` are reserved for the
    negotiation engine, which calls them inside its own unit of work.
    Nothing here commits; the caller owns the transaction.
    """

    def __init__(self, db_session: AsyncSession) -> None:
        self.db: AsyncSession = db_session

    # ------------------------------------------------------------------ #
    #                              Reads                                 #
    # ------------------------------------------------------------------ #

    async def get(self, slot_id: str, for_update: bool = False) -> Slot:
        """
        Loads a slot by id.

        Args:
            slot_id (str): Slot identifier.
            for_update (bool): Take a row lock where the database supports it.

        Raises:
            SlotNotFound: No slot with this id.
        """
        stmt = select(Slot).where(Slot.id == slot_id)
        if for_update:
            stmt = stmt.with_for_update(of=Slot)
            # Re-read even if the slot is already in the identity map
            stmt = stmt.execution_options(populate_existing=True)
        slot = (await self.db.scalars(stmt)).one_or_none()
        if slot is None:
            raise SlotNotFound(f"Slot {slot_id} not found")
        return slot

    async def list_by_owner(self, owner_id: str) -> Sequence[Slot]:
        stmt = (
            select(Slot)
            .where(Slot.owner_id == owner_id)
            .order_by(Slot.start_time, Slot.id)
        )
        return (await self.db.scalars(stmt)).all()

    async def list_swappable_excluding(self, owner_id: str) -> Sequence[Slot]:
        """Marketplace browse: every SWAPPABLE slot not owned by ``owner_id``."""
        stmt = (
            select(Slot)
            .where(Slot.status == SlotStatus.SWAPPABLE)
            .where(Slot.owner_id != owner_id)
            .order_by(Slot.start_time, Slot.id)
        )
        return (await self.db.scalars(stmt)).all()

    async def is_referenced(self, slot_id: str) -> bool:
        """True if a non-terminal swap request points at the slot."""
        stmt = select(
            exists().where(
                SwapRequest.status == SwapStatus.PENDING,
                or_(SwapRequest.my_slot_id == slot_id, SwapRequest.their_slot_id == slot_id),
            )
        )
        return bool(await self.db.scalar(stmt))

    # ------------------------------------------------------------------ #
    #                        Owner-facing writes                         #
    # ------------------------------------------------------------------ #

    async def create_slot(
        self,
        owner_id: str,
        title: str,
        start_time: datetime,
        end_time: datetime,
        status: SlotStatus = SlotStatus.BUSY,
    ) -> Slot:
        """
        Creates a slot for ``owner_id``.

        Raises:
            InvalidRange: ``start_time`` is not before ``end_time``.
            InvalidTransition: ``status`` is LOCKED.
        """
        _check_range(start_time, end_time)
        if status not in OWNER_SETTABLE_STATUSES:
            raise InvalidTransition(f"A slot cannot be created as {status.value}")

        owner = await self.db.get(User, owner_id)
        if owner is None:
            raise NotOwner(f"User {owner_id} does not exist")

        slot = Slot(
            owner=owner,
            title=title,
            start_time=as_utc(start_time),
            end_time=as_utc(end_time),
            status=status,
        )
        self.db.add(slot)
        await self.db.flush()
        await self.db.refresh(slot)
        log.info("Created slot id=%s owner=%s status=%s", slot.id, owner_id, status.value)
        return slot

    async def update_status(
        self, slot_id: str, requested_status: SlotStatus, acting_user_id: str
    ) -> Slot:
        """
        Owner toggles a slot between BUSY and SWAPPABLE.

        Raises:
            SlotNotFound, NotOwner, InvalidTransition
        """
        slot = await self._owned_slot(slot_id, acting_user_id)
        if requested_status not in OWNER_SETTABLE_STATUSES:
            raise InvalidTransition(f"Status {requested_status.value} cannot be set directly")
        if slot.status == SlotStatus.LOCKED:
            raise InvalidTransition("Slot is locked by a pending swap request")
        if slot.status != requested_status:
            slot.status = requested_status
            await self.db.flush()
            log.info("Slot id=%s status -> %s", slot.id, requested_status.value)
        return slot

    async def update_details(
        self,
        slot_id: str,
        acting_user_id: str,
        title: str | None = None,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> Slot:
        """
        Edits title and/or times of an owned slot. A LOCKED slot is frozen:
        its terms are what the pending request was made for.
        """
        slot = await self._owned_slot(slot_id, acting_user_id)
        if title is None and start_time is None and end_time is None:
            return slot
        if slot.status == SlotStatus.LOCKED:
            raise InvalidTransition("Slot is locked by a pending swap request")

        new_start = start_time if start_time is not None else slot.start_time
        new_end = end_time if end_time is not None else slot.end_time
        _check_range(new_start, new_end)

        if title is not None:
            slot.title = title
        slot.start_time = as_utc(new_start)
        slot.end_time = as_utc(new_end)
        await self.db.flush()
        log.info("Updated details of slot id=%s", slot.id)
        return slot

    async def delete_slot(self, slot_id: str, acting_user_id: str) -> None:
        """
        Raises:
            SlotNotFound, NotOwner
            SlotReferenced: a pending swap request still points at the slot.
        """
        slot = await self._owned_slot(slot_id, acting_user_id)
        if await self.is_referenced(slot.id):
            raise SlotReferenced(f"Slot {slot.id} is part of a pending swap request")
        await self.db.delete(slot)
        await self.db.flush()
        log.info("Deleted slot id=%s", slot_id)

    # ------------------------------------------------------------------ #
    #                     Engine-internal primitives                     #
    # ------------------------------------------------------------------ #

    async def transfer_ownership(self, slot: Slot, new_owner_id: str) -> Slot:
        """Reassigns the owner and resets the status to BUSY. ``slot`` is row-locked by the caller."""
        new_owner = await self.db.get(User, new_owner_id)
        if new_owner is None:
            raise NotOwner(f"User {new_owner_id} does not exist")
        previous_owner_id = slot.owner_id
        slot.owner = new_owner
        slot.owner_id = new_owner.id
        slot.status = SlotStatus.BUSY
        log.debug("Slot id=%s owner %s -> %s", slot.id, previous_owner_id, new_owner_id)
        return slot

    def set_status(self, slot: Slot, status: SlotStatus) -> Slot:
        """Lock/unlock primitive. Changes are flushed with the engine's unit."""
        log.debug("Slot id=%s status %s -> %s", slot.id, slot.status.value, status.value)
        slot.status = status
        return slot

    # ------------------------------------------------------------------ #

    async def _owned_slot(self, slot_id: str, acting_user_id: str) -> Slot:
        slot = await self.get(slot_id, for_update=True)
        if slot.owner_id != acting_user_id:
            raise NotOwner(f"Slot {slot_id} is not owned by {acting_user_id}")
        return slot
