# app/core/auth/schemas.py

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Token(BaseModel):
    """JWT returned to the client."""
    access_token: str
    token_type: str = "bearer"


class TokenData(BaseModel):
    """Data carried inside the JWT; ``sub`` holds the user id."""
    user_id: str | None = Field(None, description="User ID within our application")


class TestLoginRequest(BaseModel):
    """Body of the development-only login endpoint."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str = Field(..., min_length=1, max_length=64, description="User ID to login as (for testing)")
    name: str | None = Field(None, max_length=128, description="Display name to store for the user")


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str | None = None
