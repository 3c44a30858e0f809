# Business-rule rejections raised by the lifecycle managers, plus the infrastructure failure type.
# Route handlers let these propagate; the handlers below render them as JSON with a stable error code.
from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger("flatrent.errors")


class DomainError(Exception):
    """Terminal, user-facing rejection. Never retried."""

    code = "domain_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(DomainError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class Forbidden(DomainError):
    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class InvalidState(DomainError):
    code = "invalid_state"
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidInput(DomainError):
    code = "invalid_input"
    status_code = status.HTTP_400_BAD_REQUEST


class Conflict(DomainError):
    code = "conflict"
    status_code = status.HTTP_409_CONFLICT


class PersistenceError(Exception):
    """The store rejected or lost a transaction; nothing from it is visible."""

    code = "persistence_failure"


async def _domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": exc.code})


async def _persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error("persistence.failure", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "The operation could not be stored, please try again", "error": exc.code},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, _domain_error_handler)
    app.add_exception_handler(PersistenceError, _persistence_error_handler)
