# tests/test_negotiation_engine.py
import asyncio

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import (
    AlreadyResolved,
    Busy,
    Conflict,
    InvalidRange,
    InvalidTransition,
    NotRequester,
    NotResponder,
    PersistenceFailure,
    RequestNotFound,
    SlotReferenced,
    SlotUnavailable,
    SwapError,
)
from app.core.slots.models import Slot, SlotStatus
from app.core.swaps.engine import NegotiationEngine
from app.core.swaps.locks import LocalSlotLocks
from app.core.swaps.models import SwapRequest, SwapStatus
from app.db import base as db_base
from app.db.base import async_session_context

from conftest import at


async def fetch_slot(slot_id: str) -> Slot:
    async with async_session_context() as session:
        return await session.get(Slot, slot_id)


async def fetch_request(request_id: str) -> SwapRequest:
    async with async_session_context() as session:
        return await session.get(SwapRequest, request_id)


async def count_requests() -> int:
    async with async_session_context() as session:
        return await session.scalar(select(func.count()).select_from(SwapRequest))


@pytest_asyncio.fixture
async def pair(make_slot, alice, bob):
    """alice's a1 and bob's b1, both SWAPPABLE."""
    a1 = await make_slot(alice, "Alice standup", hours=0)
    b1 = await make_slot(bob, "Bob review", hours=2)
    return a1, b1


# --------------------------------------------------------------------------- #
#                                 Proposals                                   #
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_propose_locks_both_slots(engine, pair, alice):
    a1, b1 = pair

    request = await engine.propose(alice, a1.id, b1.id)

    assert request.status == SwapStatus.PENDING
    assert request.responder_id == "bob"
    assert request.my_slot.id == a1.id
    assert request.their_slot.owner.name == "Bob"
    assert (await fetch_slot(a1.id)).status == SlotStatus.LOCKED
    assert (await fetch_slot(b1.id)).status == SlotStatus.LOCKED


@pytest.mark.asyncio
async def test_locked_slot_cannot_be_offered_again(engine, pair, make_slot, alice, carol):
    a1, b1 = pair
    await engine.propose(alice, a1.id, b1.id)
    c1 = await make_slot(carol, "Carol 1:1", hours=4)

    with pytest.raises(SlotUnavailable):
        await engine.propose(carol, c1.id, b1.id)
    with pytest.raises(SlotUnavailable):
        await engine.propose(alice, a1.id, c1.id)
    assert await count_requests() == 1
    assert (await fetch_slot(c1.id)).status == SlotStatus.SWAPPABLE


@pytest.mark.asyncio
async def test_locked_slot_is_frozen_for_its_owner(engine, pair, alice, bob):
    a1, b1 = pair
    await engine.propose(alice, a1.id, b1.id)

    with pytest.raises(InvalidTransition):
        await engine.update_slot_status(bob, b1.id, SlotStatus.BUSY)
    with pytest.raises(InvalidTransition):
        await engine.update_slot(bob, b1.id, title="Moved")
    with pytest.raises(SlotReferenced):
        await engine.delete_slot(bob, b1.id)
    assert (await fetch_slot(b1.id)).status == SlotStatus.LOCKED


# --------------------------------------------------------------------------- #
#                               Responses                                     #
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_accept_exchanges_owners(engine, pair, alice, bob):
    a1, b1 = pair
    request = await engine.propose(alice, a1.id, b1.id)

    resolved = await engine.respond(bob, request.id, accept=True)

    assert resolved.status == SwapStatus.ACCEPTED
    assert resolved.resolved_at is not None
    assert resolved.my_slot.owner_id == "bob"
    assert resolved.their_slot.owner.name == "Alice"

    a1_after, b1_after = await fetch_slot(a1.id), await fetch_slot(b1.id)
    assert (a1_after.owner_id, a1_after.status) == ("bob", SlotStatus.BUSY)
    assert (b1_after.owner_id, b1_after.status) == ("alice", SlotStatus.BUSY)
    # Times and titles travel with the slot
    assert b1_after.title == "Bob review"
    assert b1_after.start_time == b1.start_time
    assert b1_after.version > b1.version


@pytest.mark.asyncio
async def test_reject_restores_availability(engine, pair, alice, bob):
    a1, b1 = pair
    request = await engine.propose(alice, a1.id, b1.id)

    resolved = await engine.respond(bob, request.id, accept=False)

    assert resolved.status == SwapStatus.REJECTED
    a1_after, b1_after = await fetch_slot(a1.id), await fetch_slot(b1.id)
    assert (a1_after.owner_id, a1_after.status) == ("alice", SlotStatus.SWAPPABLE)
    assert (b1_after.owner_id, b1_after.status) == ("bob", SlotStatus.SWAPPABLE)


@pytest.mark.asyncio
async def test_only_responder_may_respond(engine, pair, alice, carol):
    a1, b1 = pair
    request = await engine.propose(alice, a1.id, b1.id)

    for intruder in (alice, carol):
        with pytest.raises(NotResponder):
            await engine.respond(intruder, request.id, accept=True)

    assert (await fetch_request(request.id)).status == SwapStatus.PENDING
    assert (await fetch_slot(b1.id)).owner_id == "bob"


@pytest.mark.asyncio
@pytest.mark.parametrize("second_accept", [True, False])
async def test_second_response_is_already_resolved(engine, pair, alice, bob, second_accept):
    a1, b1 = pair
    request = await engine.propose(alice, a1.id, b1.id)
    await engine.respond(bob, request.id, accept=True)

    with pytest.raises(AlreadyResolved):
        await engine.respond(bob, request.id, accept=second_accept)

    # Exchange is not undone or repeated
    assert (await fetch_slot(a1.id)).owner_id == "bob"
    assert (await fetch_slot(b1.id)).owner_id == "alice"
    assert (await fetch_request(request.id)).status == SwapStatus.ACCEPTED


@pytest.mark.asyncio
async def test_unknown_request(engine, users, alice, bob):
    with pytest.raises(RequestNotFound):
        await engine.respond(bob, "missing", accept=True)
    with pytest.raises(RequestNotFound):
        await engine.cancel(alice, "missing")


@pytest.mark.asyncio
async def test_accept_rechecks_slots(engine, pair, alice, bob, carol):
    a1, b1 = pair
    request = await engine.propose(alice, a1.id, b1.id)
    # State changed behind the engine's back
    async with async_session_context() as session:
        slot = await session.get(Slot, a1.id)
        slot.owner_id = "carol"

    with pytest.raises(Conflict):
        await engine.respond(bob, request.id, accept=True)

    assert (await fetch_request(request.id)).status == SwapStatus.PENDING
    assert (await fetch_slot(b1.id)).owner_id == "bob"


@pytest.mark.asyncio
async def test_exchanged_slot_can_be_offered_again(engine, pair, make_slot, alice, bob, carol):
    a1, b1 = pair
    request = await engine.propose(alice, a1.id, b1.id)
    await engine.respond(bob, request.id, accept=True)
    c1 = await make_slot(carol, "Carol", hours=6)

    await engine.update_slot_status(alice, b1.id, SlotStatus.SWAPPABLE)
    again = await engine.propose(alice, b1.id, c1.id)

    assert again.responder_id == "carol"
    assert again.my_slot_id == b1.id


# --------------------------------------------------------------------------- #
#                                  Cancel                                     #
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_requester_cancels(engine, pair, alice, bob):
    a1, b1 = pair
    request = await engine.propose(alice, a1.id, b1.id)

    with pytest.raises(NotRequester):
        await engine.cancel(bob, request.id)

    cancelled = await engine.cancel(alice, request.id)
    assert cancelled.status == SwapStatus.CANCELLED
    assert cancelled.resolved_at is not None
    assert (await fetch_slot(a1.id)).status == SlotStatus.SWAPPABLE
    assert (await fetch_slot(b1.id)).status == SlotStatus.SWAPPABLE

    with pytest.raises(AlreadyResolved):
        await engine.cancel(alice, request.id)
    with pytest.raises(AlreadyResolved):
        await engine.respond(bob, request.id, accept=True)


@pytest.mark.asyncio
async def test_cancel_after_accept_is_already_resolved(engine, pair, alice, bob):
    a1, b1 = pair
    request = await engine.propose(alice, a1.id, b1.id)
    await engine.respond(bob, request.id, accept=True)

    with pytest.raises(AlreadyResolved):
        await engine.cancel(alice, request.id)
    assert (await fetch_slot(a1.id)).status == SlotStatus.BUSY


# --------------------------------------------------------------------------- #
#                                  Cascade                                    #
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_accept_cancels_other_pending_requests_on_the_pair(engine, pair, make_slot, alice, bob, carol):
    a1, b1 = pair
    request = await engine.propose(alice, a1.id, b1.id)
    c1 = await make_slot(carol, "Carol sync", hours=4)

    # A pending request that predates the one-request-per-slot rule
    legacy_id = await _seed_legacy_request(b1, c1)

    await engine.respond(bob, request.id, accept=True)

    legacy_after = await fetch_request(legacy_id)
    assert legacy_after.status == SwapStatus.CANCELLED
    assert legacy_after.resolved_at is not None
    c1_after = await fetch_slot(c1.id)
    assert (c1_after.owner_id, c1_after.status) == ("carol", SlotStatus.SWAPPABLE)
    # The accepted pair stays BUSY
    assert (await fetch_slot(b1.id)).status == SlotStatus.BUSY
    assert engine.locks.tracked == 0


class RecordingSlotLocks(LocalSlotLocks):
    """Remembers every set of slot ids passed to ``hold``."""

    def __init__(self) -> None:
        super().__init__()
        self.holds: list[list[str]] = []

    def hold(self, slot_ids, timeout):
        slot_ids = list(slot_ids)
        self.holds.append(slot_ids)
        return super().hold(slot_ids, timeout)


async def _seed_legacy_request(b1: Slot, c1: Slot) -> str:
    async with async_session_context() as session:
        legacy = SwapRequest(
            requester_id="bob", responder_id="carol", my_slot_id=b1.id, their_slot_id=c1.id
        )
        session.add(legacy)
        (await session.get(Slot, c1.id)).status = SlotStatus.LOCKED
        await session.flush()
        return legacy.id


@pytest.mark.asyncio
async def test_accept_takes_every_slot_lock_in_one_ordered_pass(pair, make_slot, alice, bob, carol):
    a1, b1 = pair
    recording = NegotiationEngine(db_base.async_session_factory, RecordingSlotLocks(), lock_timeout=1.0)
    request = await recording.propose(alice, a1.id, b1.id)
    c1 = await make_slot(carol, "Carol sync", hours=4)
    await _seed_legacy_request(b1, c1)
    recording.locks.holds.clear()

    await recording.respond(bob, request.id, accept=True)

    assert recording.locks.holds == [sorted({a1.id, b1.id, c1.id})]
    assert recording.locks.tracked == 0


@pytest.mark.asyncio
async def test_cascade_outside_held_locks_is_a_conflict(engine, pair, make_slot, alice, bob, carol, monkeypatch):
    a1, b1 = pair
    request = await engine.propose(alice, a1.id, b1.id)
    c1 = await make_slot(carol, "Carol sync", hours=4)
    legacy_id = await _seed_legacy_request(b1, c1)

    # Lock set read before the legacy request existed
    async def pair_only(request_id):
        return sorted([a1.id, b1.id])

    monkeypatch.setattr(engine, "_peek_respond_slots", pair_only)

    with pytest.raises(Conflict):
        await engine.respond(bob, request.id, accept=True)

    assert (await fetch_request(request.id)).status == SwapStatus.PENDING
    assert (await fetch_request(legacy_id)).status == SwapStatus.PENDING
    assert (await fetch_slot(a1.id)).owner_id == "alice"
    assert (await fetch_slot(c1.id)).status == SlotStatus.LOCKED
    assert engine.locks.tracked == 0


# --------------------------------------------------------------------------- #
#                                Slot edits                                   #
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_update_slot_is_all_or_nothing(engine, make_slot, alice):
    slot = await make_slot(alice, "Planning", status=SlotStatus.BUSY)

    with pytest.raises(InvalidRange):
        await engine.update_slot(
            alice, slot.id, title="Bad", start_time=slot.end_time, status=SlotStatus.SWAPPABLE
        )
    unchanged = await fetch_slot(slot.id)
    assert (unchanged.title, unchanged.status) == ("Planning", SlotStatus.BUSY)

    start, end = at(8)
    updated = await engine.update_slot(
        alice, slot.id, title="Planning v2", start_time=start, end_time=end, status=SlotStatus.SWAPPABLE
    )
    assert (updated.title, updated.status, updated.start_time) == ("Planning v2", SlotStatus.SWAPPABLE, start)


@pytest.mark.asyncio
async def test_delete_slot_keeps_resolved_history(engine, pair, alice, bob):
    a1, b1 = pair
    request = await engine.propose(alice, a1.id, b1.id)
    await engine.respond(bob, request.id, accept=False)

    await engine.delete_slot(bob, b1.id)

    assert await fetch_slot(b1.id) is None
    history = await fetch_request(request.id)
    assert history.status == SwapStatus.REJECTED
    assert history.their_slot is None


# --------------------------------------------------------------------------- #
#                          Contention & failures                              #
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_concurrent_offers_for_the_same_slot(engine, make_slot, alice, bob, carol):
    a1 = await make_slot(alice, "A")
    b1 = await make_slot(bob, "B")
    c1 = await make_slot(carol, "C")

    results = await asyncio.gather(
        engine.propose(alice, a1.id, c1.id),
        engine.propose(bob, b1.id, c1.id),
        return_exceptions=True,
    )

    won = [r for r in results if isinstance(r, SwapRequest)]
    lost = [r for r in results if isinstance(r, SwapError)]
    assert len(won) == 1
    assert len(lost) == 1 and isinstance(lost[0], SlotUnavailable)
    assert await count_requests() == 1
    loser_slot = b1 if won[0].requester_id == "alice" else a1
    assert (await fetch_slot(loser_slot.id)).status == SlotStatus.SWAPPABLE
    assert engine.locks.tracked == 0


@pytest.mark.asyncio
async def test_busy_when_slot_lock_is_held(engine, pair, alice):
    a1, b1 = pair
    engine.lock_timeout = 0.05

    async with engine.locks.hold([b1.id], timeout=1.0):
        with pytest.raises(Busy) as exc_info:
            await engine.propose(alice, a1.id, b1.id)

    assert exc_info.value.retryable
    assert await count_requests() == 0
    assert (await fetch_slot(a1.id)).status == SlotStatus.SWAPPABLE
    # Succeeds once the holder is gone
    await engine.propose(alice, a1.id, b1.id)


def _engine_failing_on_commit(exc: Exception) -> NegotiationEngine:
    class _FailingCommitSession(AsyncSession):
        async def commit(self):
            raise exc

    factory = async_sessionmaker(bind=db_base.engine, class_=_FailingCommitSession, expire_on_commit=False)
    return NegotiationEngine(factory, LocalSlotLocks(), lock_timeout=1.0)


@pytest.mark.asyncio
async def test_storage_failure_rolls_back_everything(pair, alice):
    a1, b1 = pair
    failing = _engine_failing_on_commit(OperationalError("COMMIT", None, Exception("disk I/O error")))

    with pytest.raises(PersistenceFailure) as exc_info:
        await failing.propose(alice, a1.id, b1.id)

    assert exc_info.value.retryable
    assert await count_requests() == 0
    assert (await fetch_slot(a1.id)).status == SlotStatus.SWAPPABLE
    assert (await fetch_slot(b1.id)).status == SlotStatus.SWAPPABLE
    assert failing.locks.tracked == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exc",
    [
        StaleDataError("UPDATE statement on table 'slots' expected to update 1 row(s); 0 were matched."),
        IntegrityError("INSERT", None, Exception("UNIQUE constraint failed")),
    ],
)
async def test_lost_races_surface_as_conflict(pair, alice, exc):
    a1, b1 = pair
    failing = _engine_failing_on_commit(exc)

    with pytest.raises(Conflict):
        await failing.propose(alice, a1.id, b1.id)
    assert await count_requests() == 0
