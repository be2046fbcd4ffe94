# app/core/swaps/engine.py

"""
Swap negotiation engine.

The only component allowed to change slot ownership, slot status and
swap-request status. Each mutating call is one unit of work:

    1. take the per-slot locks (ascending id order, bounded wait),
    2. open a session, validate everything, apply the changes,
    3. commit once, or roll back everything.

Nothing is visible to other callers until step 3 succeeds.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Callable, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import (
    AlreadyResolved,
    Conflict,
    NotRequester,
    NotResponder,
    PersistenceFailure,
    SlotNotFound,
    SwapError,
)
from app.core.slots.models import Slot, SlotStatus
from app.core.slots.service import SlotStore
from app.core.swaps.ledger import SwapLedger
from app.core.swaps.locks import SlotLocks, lock_order
from app.core.swaps.models import SwapRequest, SwapStatus

log = logging.getLogger(__name__)

_REQUEST_RELATIONS = ["requester", "responder", "my_slot", "their_slot"]


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, as vouched for by the boundary layer."""
    user_id: str
    name: str | None = None


class NegotiationEngine:
    """
    Orchestrates slot and swap-request mutations.

    Args:
        session_factory: Callable returning a fresh ``AsyncSession``.
        locks: Per-slot lock backend.
        lock_timeout (float): Seconds to wait for each slot lock before
            failing with ``Busy``.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        locks: SlotLocks,
        lock_timeout: float = 5.0,
    ) -> None:
        self.session_factory = session_factory
        self.locks = locks
        self.lock_timeout = lock_timeout

    # ------------------------------------------------------------------ #
    #                         Unit of work                               #
    # ------------------------------------------------------------------ #

    @contextlib.asynccontextmanager
    async def _unit_of_work(self, operation: str) -> AsyncIterator[AsyncSession]:
        session = self.session_factory()
        try:
            yield session
            await session.commit()
            log.debug("%s committed", operation)
        except SwapError:
            await session.rollback()
            raise
        except StaleDataError as exc:
            await session.rollback()
            log.warning("%s lost a version check, rolled back: %s", operation, exc)
            raise Conflict("Slot was modified concurrently, try again") from exc
        except IntegrityError as exc:
            await session.rollback()
            log.warning("%s violated a constraint, rolled back: %s", operation, exc.orig)
            raise Conflict("Slot is already part of a pending swap request") from exc
        except SQLAlchemyError as exc:
            log.exception("%s failed to persist, rolling back", operation)
            await session.rollback()
            raise PersistenceFailure(f"Could not save changes for {operation}") from exc
        finally:
            # Rolls back whatever is still open
            await session.close()

    def _hold(self, slot_ids: Sequence[str]) -> contextlib.AbstractAsyncContextManager[None]:
        return self.locks.hold(slot_ids, self.lock_timeout)

    async def _peek_request_slots(self, request_id: str) -> tuple[str, str]:
        """Slot ids of a request, read before locking. They never change."""
        async with self.session_factory() as session:
            request = await SwapLedger(session, SlotStore(session)).get(request_id)
            return request.slot_ids

    async def _peek_respond_slots(self, request_id: str) -> list[str]:
        """
        Every slot an answer to ``request_id`` may touch, read before locking.

        While the request is PENDING its pair stays LOCKED, so no new request
        can join it and the set read here only shrinks once the locks are held.
        """
        async with self.session_factory() as session:
            slots = SlotStore(session)
            ledger = SwapLedger(session, slots)
            request = await ledger.get(request_id)
            others = await ledger.pending_for_slots(request.slot_ids, exclude_request_id=request.id)
            return lock_order([*request.slot_ids, *(sid for other in others for sid in other.slot_ids)])

    # ------------------------------------------------------------------ #
    #                            Slots                                   #
    # ------------------------------------------------------------------ #

    async def create_slot(
        self,
        actor: Actor,
        title: str,
        start_time: datetime,
        end_time: datetime,
        status: SlotStatus = SlotStatus.BUSY,
    ) -> Slot:
        async with self._unit_of_work("create_slot") as session:
            return await SlotStore(session).create_slot(
                actor.user_id, title, start_time, end_time, status=status
            )

    async def update_slot_status(self, actor: Actor, slot_id: str, status: SlotStatus) -> Slot:
        async with self._hold([slot_id]):
            async with self._unit_of_work("update_slot_status") as session:
                return await SlotStore(session).update_status(slot_id, status, actor.user_id)

    async def update_slot(
        self,
        actor: Actor,
        slot_id: str,
        title: str | None = None,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        status: SlotStatus | None = None,
    ) -> Slot:
        """Details first, then status, both in one commit."""
        async with self._hold([slot_id]):
            async with self._unit_of_work("update_slot") as session:
                store = SlotStore(session)
                slot = await store.update_details(
                    slot_id, actor.user_id, title=title, start_time=start_time, end_time=end_time
                )
                if status is not None:
                    slot = await store.update_status(slot_id, status, actor.user_id)
                return slot

    async def delete_slot(self, actor: Actor, slot_id: str) -> None:
        async with self._hold([slot_id]):
            async with self._unit_of_work("delete_slot") as session:
                await SlotStore(session).delete_slot(slot_id, actor.user_id)

    # ------------------------------------------------------------------ #
    #                          Proposals                                 #
    # ------------------------------------------------------------------ #

    async def propose(self, actor: Actor, my_slot_id: str, their_slot_id: str) -> SwapRequest:
        """
        Offers ``my_slot`` in exchange for ``their_slot``.

        Both slots become LOCKED in the same commit that records the PENDING
        request, so neither can be offered in a second request meanwhile.

        Raises:
            SlotNotFound, SelfSwap, NotOwner, SlotUnavailable, Busy,
            Conflict, PersistenceFailure
        """
        async with self._hold([my_slot_id, their_slot_id]):
            async with self._unit_of_work("propose") as session:
                slots = SlotStore(session)
                ledger = SwapLedger(session, slots)
                request = await ledger.propose(actor.user_id, my_slot_id, their_slot_id)
                for slot_id in request.slot_ids:
                    slots.set_status(await slots.get(slot_id), SlotStatus.LOCKED)
                await session.flush()
                await session.refresh(request, attribute_names=_REQUEST_RELATIONS)
        log.info(
            "Swap request %s created: %s offers slot %s for slot %s of %s",
            request.id, actor.user_id, my_slot_id, their_slot_id, request.responder_id,
        )
        return request

    async def respond(self, actor: Actor, request_id: str, accept: bool) -> SwapRequest:
        """
        Responder accepts or rejects a PENDING request.

        Reject: request REJECTED, both slots back to SWAPPABLE, owners kept.
        Accept: owners exchanged, both slots BUSY, request ACCEPTED, then
        every other PENDING request touching either slot is CANCELLED and its
        remaining slot returned to SWAPPABLE.

        Raises:
            RequestNotFound, NotResponder, AlreadyResolved, Conflict, Busy,
            PersistenceFailure
        """
        if accept:
            held = await self._peek_respond_slots(request_id)
        else:
            held = lock_order(await self._peek_request_slots(request_id))
        cancelled: list[str] = []
        async with self._hold(held):
            async with self._unit_of_work("respond") as session:
                slots = SlotStore(session)
                ledger = SwapLedger(session, slots)
                request = await ledger.get(request_id, for_update=True)
                if request.responder_id != actor.user_id:
                    raise NotResponder(f"Swap request {request_id} is addressed to another user")
                if request.status.is_terminal:
                    raise AlreadyResolved(
                        f"Swap request {request_id} is already {request.status.value}"
                    )

                if accept:
                    await self._exchange(slots, ledger, request)
                    cancelled = await self._cascade(slots, ledger, request, held)
                else:
                    ledger.set_status(request, SwapStatus.REJECTED)
                    await self._release(slots, request.slot_ids)

                await session.flush()
                await session.refresh(request, attribute_names=_REQUEST_RELATIONS)

        if accept:
            log.info(
                "Swap request %s accepted by %s; cascade-cancelled %d request(s): %s",
                request_id, actor.user_id, len(cancelled), cancelled,
            )
        else:
            log.info("Swap request %s rejected by %s", request_id, actor.user_id)
        return request

    async def cancel(self, actor: Actor, request_id: str) -> SwapRequest:
        """
        Requester withdraws a PENDING request; both slots back to SWAPPABLE.

        Raises:
            RequestNotFound, NotRequester, AlreadyResolved, Busy,
            PersistenceFailure
        """
        slot_ids = await self._peek_request_slots(request_id)
        async with self._hold(slot_ids):
            async with self._unit_of_work("cancel") as session:
                slots = SlotStore(session)
                ledger = SwapLedger(session, slots)
                request = await ledger.get(request_id, for_update=True)
                if request.requester_id != actor.user_id:
                    raise NotRequester(f"Swap request {request_id} was sent by another user")
                if request.status.is_terminal:
                    raise AlreadyResolved(
                        f"Swap request {request_id} is already {request.status.value}"
                    )
                ledger.set_status(request, SwapStatus.CANCELLED)
                await self._release(slots, request.slot_ids)
                await session.flush()
                await session.refresh(request, attribute_names=_REQUEST_RELATIONS)
        log.info("Swap request %s cancelled by %s", request_id, actor.user_id)
        return request

    # ------------------------------------------------------------------ #
    #                           Internals                                #
    # ------------------------------------------------------------------ #

    async def _exchange(self, slots: SlotStore, ledger: SwapLedger, request: SwapRequest) -> None:
        my_slot = await slots.get(request.my_slot_id, for_update=True)
        their_slot = await slots.get(request.their_slot_id, for_update=True)

        # Holds by construction; a failure here means the state was corrupted elsewhere
        if (
            my_slot.status != SlotStatus.LOCKED
            or their_slot.status != SlotStatus.LOCKED
            or my_slot.owner_id != request.requester_id
            or their_slot.owner_id != request.responder_id
        ):
            log.error(
                "Swap request %s no longer matches its slots: %r %r", request.id, my_slot, their_slot
            )
            raise Conflict("Slots changed since the swap was proposed")

        await slots.transfer_ownership(my_slot, request.responder_id)
        await slots.transfer_ownership(their_slot, request.requester_id)
        ledger.set_status(request, SwapStatus.ACCEPTED)

    async def _cascade(
        self,
        slots: SlotStore,
        ledger: SwapLedger,
        accepted: SwapRequest,
        held: Sequence[str],
    ) -> list[str]:
        """Cancels PENDING requests that share a slot with ``accepted``."""
        others = await ledger.pending_for_slots(accepted.slot_ids, exclude_request_id=accepted.id)
        if not others:
            return []

        pair = set(accepted.slot_ids)
        freed = {sid for other in others for sid in other.slot_ids} - pair
        unlocked = freed - set(held)
        if unlocked:
            # Only reachable if a request joined the pair after the peek
            log.error(
                "Cascade for request %s reached slots outside the held locks: %s",
                accepted.id, sorted(unlocked),
            )
            raise Conflict(f"Pending requests on swap request {accepted.id} changed; retry")

        for other in others:
            ledger.set_status(other, SwapStatus.CANCELLED)
            log.info(
                "Swap request %s cancelled: slot ownership changed by request %s",
                other.id, accepted.id,
            )
        await self._release(slots, freed)
        return [other.id for other in others]

    async def _release(self, slots: SlotStore, slot_ids) -> None:
        """LOCKED -> SWAPPABLE for each slot; anything else is left alone."""
        for slot_id in slot_ids:
            try:
                slot = await slots.get(slot_id, for_update=True)
            except SlotNotFound:
                log.warning("Slot %s vanished while still referenced by a pending request", slot_id)
                continue
            if slot.status == SlotStatus.LOCKED:
                slots.set_status(slot, SlotStatus.SWAPPABLE)


__all__ = ["Actor", "NegotiationEngine"]
