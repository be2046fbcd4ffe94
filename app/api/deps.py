# app/api/deps.py

from __future__ import annotations

from fastapi import Request

from app.core.swaps.engine import NegotiationEngine


def get_negotiation_engine(request: Request) -> NegotiationEngine:
    """FastAPI dependency: the engine owned by the running application."""
    return request.app.state.negotiation_engine
