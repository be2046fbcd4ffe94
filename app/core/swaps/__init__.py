# app/core/swaps/__init__.py
"""
Swap requests and the negotiation engine.

Submodules:
    * models : SwapRequest ORM model and SwapStatus
    * ledger : SwapLedger, proposal storage and validation
    * locks  : per-slot lock backends (in-process, Redis)
    * engine : NegotiationEngine, the single mutation gateway
    * factory: wiring from settings

Nothing is imported here so that ``app.core.slots`` can use the models
without an import cycle.
"""
__all__: list[str] = ["models", "ledger", "locks", "engine", "factory"]
