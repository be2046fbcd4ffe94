# app/api/v1/events.py

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_negotiation_engine
from app.core.auth.security import get_current_actor, get_current_user
from app.core.slots.schemas import SlotCreate, SlotOut, SlotUpdate
from app.core.slots.service import SlotStore
from app.core.swaps.engine import Actor, NegotiationEngine
from app.db.base import get_async_db_session

router = APIRouter(
    prefix="/v1/events",
    tags=["Events"],
    dependencies=[Depends(get_current_user)],
)
log = logging.getLogger(__name__)


@router.get(
    "",
    response_model=List[SlotOut],
    summary="List my slots",
)
async def list_my_events(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_async_db_session),
) -> List[SlotOut]:
    log.debug("API: user %s listing own slots", actor.user_id)
    slots = await SlotStore(db).list_by_owner(actor.user_id)
    return [SlotOut.model_validate(slot) for slot in slots]


@router.post(
    "",
    response_model=SlotOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a slot",
)
async def create_event(
    payload: SlotCreate = Body(...),
    actor: Actor = Depends(get_current_actor),
    engine: NegotiationEngine = Depends(get_negotiation_engine),
) -> SlotOut:
    slot = await engine.create_slot(
        actor, payload.title, payload.start_time, payload.end_time, status=payload.status
    )
    return SlotOut.model_validate(slot)


@router.put(
    "/{slot_id}",
    response_model=SlotOut,
    summary="Update a slot",
    description="Changes title/times and/or toggles BUSY <-> SWAPPABLE. Locked slots cannot be changed.",
)
async def update_event(
    slot_id: str,
    payload: SlotUpdate = Body(...),
    actor: Actor = Depends(get_current_actor),
    engine: NegotiationEngine = Depends(get_negotiation_engine),
) -> SlotOut:
    slot = await engine.update_slot(
        actor,
        slot_id,
        title=payload.title,
        start_time=payload.start_time,
        end_time=payload.end_time,
        status=payload.status,
    )
    return SlotOut.model_validate(slot)


@router.delete("/{slot_id}", summary="Delete a slot")
async def delete_event(
    slot_id: str,
    actor: Actor = Depends(get_current_actor),
    engine: NegotiationEngine = Depends(get_negotiation_engine),
) -> dict[str, str]:
    await engine.delete_slot(actor, slot_id)
    return {"message": "Event deleted"}
