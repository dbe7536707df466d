from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse

from notifier.errors import NotificationError
from notifier.schemas.notification import ErrorResponse


logger = logging.getLogger(__name__)


def error_response(status_code: int, error: str, message: str) -> ORJSONResponse:
    body = ErrorResponse(timestamp=datetime.now(timezone.utc), status=status_code, error=error, message=message)
    return ORJSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def _describe_validation_errors(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(item) for item in err.get("loc", ()) if item != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts) or "Malformed request"


async def handle_notification_error(request: Request, exc: NotificationError) -> ORJSONResponse:
    logger.warning("Exception handled [%d] %s %s: %s", exc.status_code, request.method, request.url.path, exc)
    return error_response(exc.status_code, exc.error, str(exc))


async def handle_validation_error(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    message = _describe_validation_errors(exc)
    logger.warning("Rejected malformed request %s %s: %s", request.method, request.url.path, message)
    return error_response(status.HTTP_400_BAD_REQUEST, "Bad Request", message)


async def handle_unexpected_error(request: Request, exc: Exception) -> ORJSONResponse:
    logger.error("Unhandled exception on %s %s", request.method, request.url.path, exc_info=exc)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error", "An unexpected error occurred."
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(NotificationError, handle_notification_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
