# app/core/slots/schemas.py
"""
Pydantic schemas for slots (calendar events).

Field names are snake_case in Python and camelCase on the wire
(``startTime``, ``ownerId``); input accepts both.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.core.auth.schemas import UserOut

from .models import SlotStatus


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class SlotCreate(_CamelModel):
    title: str = Field(..., min_length=1, max_length=200, description="Event title")
    start_time: datetime = Field(..., description="Start instant (timezone-aware, naive means UTC)")
    end_time: datetime = Field(..., description="End instant, after start_time")
    status: SlotStatus = Field(SlotStatus.BUSY, description="BUSY or SWAPPABLE")


class SlotUpdate(_CamelModel):
    """Partial update; omitted fields are left unchanged."""
    title: str | None = Field(None, min_length=1, max_length=200)
    start_time: datetime | None = None
    end_time: datetime | None = None
    status: SlotStatus | None = None


class SlotOut(_CamelModel):
    id: str
    owner_id: str
    owner: UserOut | None = None
    title: str
    start_time: datetime
    end_time: datetime
    status: SlotStatus
    created_at: datetime
    updated_at: datetime


__all__: list[str] = ["SlotCreate", "SlotUpdate", "SlotOut"]
