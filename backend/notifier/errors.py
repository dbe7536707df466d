from __future__ import annotations

from fastapi import status


class NotificationError(Exception):
    """Base error for the notification service.

    ``status_code`` and ``error`` are what the HTTP layer renders; the
    exception message becomes the response ``message``.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error: str = "Internal Server Error"


class AuthorizationDenied(NotificationError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "Access Denied"


class ValidationFailed(NotificationError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Bad Request"


class NotFound(NotificationError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not Found"


class PersistenceFailure(NotificationError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "Internal Server Error"


class DownstreamUnavailable(NotificationError):
    """An enrichment lookup failed. Recovered inside the enrichment client set."""

    status_code = status.HTTP_502_BAD_GATEWAY
    error = "Bad Gateway"


class PublishFailure(NotificationError):
    """A persisted record could not be handed to the broadcast hub."""
