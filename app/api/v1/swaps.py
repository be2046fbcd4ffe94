# app/api/v1/swaps.py

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_negotiation_engine
from app.core.errors import RequestNotFound
from app.core.auth.security import get_current_actor, get_current_user
from app.core.slots.schemas import SlotOut
from app.core.slots.service import SlotStore
from app.core.swaps.engine import Actor, NegotiationEngine
from app.core.swaps.ledger import SwapLedger
from app.core.swaps.schemas import SwapRequestCreate, SwapRequestOut, SwapResponseIn
from app.db.base import get_async_db_session

router = APIRouter(
    prefix="/v1/swaps",
    tags=["Swaps"],
    dependencies=[Depends(get_current_user)],
)
log = logging.getLogger(__name__)


@router.get(
    "/swappable-slots",
    response_model=List[SlotOut],
    summary="Browse the marketplace",
    description="All SWAPPABLE slots owned by other users, earliest first.",
)
async def list_swappable_slots(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_async_db_session),
) -> List[SlotOut]:
    slots = await SlotStore(db).list_swappable_excluding(actor.user_id)
    log.debug("API: %d swappable slots visible to %s", len(slots), actor.user_id)
    return [SlotOut.model_validate(slot) for slot in slots]


@router.post(
    "/swap-request",
    response_model=SwapRequestOut,
    status_code=status.HTTP_201_CREATED,
    summary="Propose a swap",
    description="Offers one of my SWAPPABLE slots for another user's SWAPPABLE slot. Both become LOCKED.",
)
async def create_swap_request(
    payload: SwapRequestCreate = Body(...),
    actor: Actor = Depends(get_current_actor),
    engine: NegotiationEngine = Depends(get_negotiation_engine),
) -> SwapRequestOut:
    request = await engine.propose(actor, payload.my_slot_id, payload.their_slot_id)
    return SwapRequestOut.model_validate(request)


@router.get(
    "/incoming",
    response_model=List[SwapRequestOut],
    summary="Requests addressed to me",
)
async def list_incoming(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_async_db_session),
) -> List[SwapRequestOut]:
    requests = await SwapLedger(db, SlotStore(db)).list_incoming(actor.user_id)
    return [SwapRequestOut.model_validate(r) for r in requests]


@router.get(
    "/outgoing",
    response_model=List[SwapRequestOut],
    summary="Requests I sent",
)
async def list_outgoing(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_async_db_session),
) -> List[SwapRequestOut]:
    requests = await SwapLedger(db, SlotStore(db)).list_outgoing(actor.user_id)
    return [SwapRequestOut.model_validate(r) for r in requests]


@router.get(
    "/swap-request/{request_id}",
    response_model=SwapRequestOut,
    summary="One request I sent or received",
)
async def get_swap_request(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_async_db_session),
) -> SwapRequestOut:
    request = await SwapLedger(db, SlotStore(db)).get(request_id)
    if actor.user_id not in (request.requester_id, request.responder_id):
        # Do not reveal requests between other users
        raise RequestNotFound(f"Swap request {request_id} not found")
    return SwapRequestOut.model_validate(request)


@router.post(
    "/swap-response/{request_id}",
    response_model=SwapRequestOut,
    summary="Accept or reject a request addressed to me",
)
async def respond_to_swap(
    request_id: str,
    payload: SwapResponseIn = Body(...),
    actor: Actor = Depends(get_current_actor),
    engine: NegotiationEngine = Depends(get_negotiation_engine),
) -> SwapRequestOut:
    request = await engine.respond(actor, request_id, payload.accept)
    return SwapRequestOut.model_validate(request)


@router.post(
    "/swap-request/{request_id}/cancel",
    response_model=SwapRequestOut,
    summary="Withdraw a request I sent",
)
async def cancel_swap_request(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    engine: NegotiationEngine = Depends(get_negotiation_engine),
) -> SwapRequestOut:
    request = await engine.cancel(actor, request_id)
    return SwapRequestOut.model_validate(request)
