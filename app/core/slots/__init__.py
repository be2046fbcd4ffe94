# app/core/slots/__init__.py
"""
Slot store: authoritative record of calendar slots, their owner and status.

Import from the submodules directly (``app.core.slots.service``); the
package itself stays empty so the slot and swap packages can reference each
other's models without import cycles.
"""
__all__: list[str] = ["models", "service"]
