# app/api/v1/health.py

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.swaps.locks import RedisSlotLocks
from app.db.base import engine

router = APIRouter(prefix="/v1", tags=["Health"])
log = logging.getLogger(__name__)


@router.get("/healthz")
async def healthz(request: Request) -> dict[str, str]:
    out: dict[str, str] = {}

    # DB
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        out["db"] = "ok"
    except SQLAlchemyError as exc:
        log.exception("DB health check failed")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="db error") from exc

    # Redis, only when slot locks live there
    locks = request.app.state.negotiation_engine.locks
    if isinstance(locks, RedisSlotLocks):
        try:
            if not await locks.client.ping():
                raise RedisError("PING returned a falsy reply")
            out["locks"] = "ok"
        except RedisError as exc:
            log.exception("Redis health check failed")
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="lock backend error") from exc
    else:
        out["locks"] = "local"

    return out
