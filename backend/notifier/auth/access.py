from __future__ import annotations

import logging
from dataclasses import dataclass

from notifier.errors import AuthorizationDenied
from notifier.models.enums import UserRole


logger = logging.getLogger(__name__)

PRODUCER_ROLES = (UserRole.ADMIN, UserRole.MANAGER)


@dataclass(frozen=True)
class Caller:
    """Identity forwarded by the gateway. Nothing here is verified locally."""

    subject_id: str | None
    role: UserRole | None
    authorization: str | None = None
    raw_role: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def ensure_producer(caller: Caller) -> None:
    if caller.role not in PRODUCER_ROLES:
        logger.warning("Access denied: %s (%s) attempted to push a notification", caller.subject_id, caller.raw_role)
        raise AuthorizationDenied("Not authorized to create notifications.")


def ensure_admin(caller: Caller) -> None:
    if not caller.is_admin:
        logger.warning("Access denied: %s (%s) attempted to list all notifications", caller.subject_id, caller.raw_role)
        raise AuthorizationDenied("Only ADMIN users can list all notifications.")


def ensure_owner_or_admin(caller: Caller, owner_id: str, *, action: str = "view these notifications") -> None:
    if caller.is_admin:
        return
    if caller.subject_id is None or caller.subject_id != owner_id:
        logger.warning(
            "Access denied: %s (%s) attempted to %s of user %s", caller.subject_id, caller.raw_role, action, owner_id
        )
        raise AuthorizationDenied(f"You are not authorized to {action}.")


def ensure_stream_owner(caller: Caller, stream_user_id: str) -> None:
    # Live streams are owner-only; admins get no elevated visibility here.
    if caller.subject_id is None or caller.subject_id != stream_user_id:
        logger.warning("Access denied: %s attempted to stream notifications of user %s", caller.subject_id, stream_user_id)
        raise AuthorizationDenied("You are not authorized to stream these notifications.")
