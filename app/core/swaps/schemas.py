# app/core/swaps/schemas.py
"""
Pydantic schemas for swap requests.

Listings embed both slots and both users so a client can explain a request
("They want ..., they offer ...") without extra lookups. A slot deleted after
the request was resolved shows up as ``null``.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.core.auth.schemas import UserOut
from app.core.slots.schemas import SlotOut

from .models import SwapStatus


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class SwapRequestCreate(_CamelModel):
    my_slot_id: str = Field(..., min_length=1, description="Caller's SWAPPABLE slot offered in exchange")
    their_slot_id: str = Field(..., min_length=1, description="Other user's SWAPPABLE slot wanted")


class SwapResponseIn(_CamelModel):
    accept: bool = Field(..., description="true to accept, false to reject")


class SwapRequestOut(_CamelModel):
    id: str
    status: SwapStatus
    requester_id: str
    responder_id: str
    requester: UserOut | None = None
    responder: UserOut | None = None
    my_slot_id: str
    their_slot_id: str
    my_slot: SlotOut | None = None
    their_slot: SlotOut | None = None
    created_at: datetime
    resolved_at: datetime | None = None


__all__: list[str] = ["SwapRequestCreate", "SwapResponseIn", "SwapRequestOut"]
