# app/core/swaps/factory.py

from __future__ import annotations

import logging

from app.config import settings
from app.db.base import async_session_factory

from .engine import NegotiationEngine
from .locks import LocalSlotLocks, RedisSlotLocks, SlotLocks

log = logging.getLogger(__name__)

_LOCKS = {
    "local": lambda: LocalSlotLocks(),
    "redis": lambda: RedisSlotLocks.from_url(settings.REDIS_URL),
}


def build_slot_locks(backend: str | None = None) -> SlotLocks:
    """
    Returns the slot lock backend named by ``backend``
    (default: ``settings.SLOT_LOCK_BACKEND``).
    """
    key = (backend or settings.SLOT_LOCK_BACKEND).lower()
    loader = _LOCKS.get(key)
    if loader is None:
        raise ValueError(f"Unknown slot lock backend: {key}")
    log.info("Using '%s' slot locks", key)
    return loader()


def build_negotiation_engine(locks: SlotLocks | None = None) -> NegotiationEngine:
    """
    Builds the engine over the application's session factory. The caller
    owns the instance (the FastAPI app keeps it on ``app.state``).
    """
    return NegotiationEngine(
        session_factory=async_session_factory,
        locks=locks or build_slot_locks(),
        lock_timeout=settings.SLOT_LOCK_TIMEOUT_SECONDS,
    )
