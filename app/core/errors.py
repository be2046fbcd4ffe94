# app/core/errors.py

"""
Error taxonomy of the swap negotiation engine.

Every failure leaves the engine as a :class:`SwapError` subclass carrying a
stable ``kind``; the API layer maps kinds to HTTP status codes.
"""

from __future__ import annotations


class SwapError(Exception):
    """Base class for all engine failures."""

    kind: str = "SwapError"
    default_message: str = "Swap operation failed"
    retryable: bool = False

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<{self.kind} {self.message!r}>"


# --- Malformed input / disallowed state change ---

class InvalidRange(SwapError):
    kind = "InvalidRange"
    default_message = "Start time must be before end time"


class InvalidTransition(SwapError):
    kind = "InvalidTransition"
    default_message = "Status change is not allowed"


# --- Authorization mismatch ---

class NotOwner(SwapError):
    kind = "NotOwner"
    default_message = "You do not own this slot"


class NotResponder(SwapError):
    kind = "NotResponder"
    default_message = "Only the recipient of a swap request may respond to it"


class NotRequester(SwapError):
    kind = "NotRequester"
    default_message = "Only the sender of a swap request may cancel it"


# --- Business rules ---

class SelfSwap(SwapError):
    kind = "SelfSwap"
    default_message = "Cannot swap slots that belong to the same user"


class SlotUnavailable(SwapError):
    kind = "SlotUnavailable"
    default_message = "Slot is no longer swappable"


class AlreadyResolved(SwapError):
    kind = "AlreadyResolved"
    default_message = "Swap request has already been resolved"


class SlotReferenced(SwapError):
    kind = "SlotReferenced"
    default_message = "Slot is part of a pending swap request"


class SlotNotFound(SwapError):
    kind = "SlotNotFound"
    default_message = "Slot not found"


class RequestNotFound(SwapError):
    kind = "RequestNotFound"
    default_message = "Swap request not found"


# --- Transient contention / storage ---

class Busy(SwapError):
    kind = "Busy"
    default_message = "Slot is busy with another operation, try again"
    retryable = True


class Conflict(SwapError):
    kind = "Conflict"
    default_message = "Concurrent modification detected, try again"
    retryable = True


class PersistenceFailure(SwapError):
    kind = "PersistenceFailure"
    default_message = "Could not save changes"
    retryable = True


__all__ = [
    "SwapError",
    "InvalidRange", "InvalidTransition",
    "NotOwner", "NotResponder", "NotRequester",
    "SelfSwap", "SlotUnavailable", "AlreadyResolved", "SlotReferenced",
    "SlotNotFound", "RequestNotFound",
    "Busy", "Conflict", "PersistenceFailure",
]
