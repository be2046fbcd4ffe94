# app/api/errors.py

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core import errors

log = logging.getLogger(__name__)
# Engine error kind -> HTTP status. Transport codes are decided here only.
STATUS_BY_KIND: dict[str, int] = {
    errors.InvalidRange.kind: status.HTTP_422_UNPROCESSABLE_ENTITY,
    errors.InvalidTransition.kind: status.HTTP_422_UNPROCESSABLE_ENTITY,
    errors.NotOwner.kind: status.HTTP_403_FORBIDDEN,
    errors.NotResponder.kind: status.HTTP_403_FORBIDDEN,
    errors.NotRequester.kind: status.HTTP_403_FORBIDDEN,
    errors.SlotNotFound.kind: status.HTTP_404_NOT_FOUND,
    errors.RequestNotFound.kind: status.HTTP_404_NOT_FOUND,
    errors.SelfSwap.kind: status.HTTP_409_CONFLICT,
    errors.SlotUnavailable.kind: status.HTTP_409_CONFLICT,
    errors.AlreadyResolved.kind: status.HTTP_409_CONFLICT,
    errors.SlotReferenced.kind: status.HTTP_409_CONFLICT,
    errors.Busy.kind: status.HTTP_409_CONFLICT,
    errors.Conflict.kind: status.HTTP_409_CONFLICT,
    errors.PersistenceFailure.kind: status.HTTP_503_SERVICE_UNAVAILABLE,
}


async def swap_error_handler(request: Request, exc: errors.SwapError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_400_BAD_REQUEST)
    log.warning("%s %s -> %d %s: %s", request.method, request.url.path, status_code, exc.kind, exc.message)
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=status_code,
        content={"message": exc.message, "kind": exc.kind, "retryable": exc.retryable},
        headers=headers,
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Every error body carries a human readable ``message``; ``detail`` stays for FastAPI clients
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": message, "detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    log.info("%s %s -> 422 invalid request: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"message": "Invalid request", "detail": jsonable_encoder(exc.errors())},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(errors.SwapError, swap_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
