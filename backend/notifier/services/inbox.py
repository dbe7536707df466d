from __future__ import annotations

import logging

from notifier.auth.access import Caller, ensure_admin, ensure_owner_or_admin
from notifier.errors import AuthorizationDenied, NotFound
from notifier.models.notification import parse_notification_id
from notifier.schemas.notification import NotificationOut
from notifier.services.store import NotificationStore


logger = logging.getLogger(__name__)


class NotificationInbox:
    """Read-history and read-flag operations over the store, with ownership checks."""

    def __init__(self, store: NotificationStore) -> None:
        self.store = store

    async def list_for_user(self, user_id: str, caller: Caller, *, unread_only: bool = False) -> list[NotificationOut]:
        logger.info("Listing notifications for user %s by requester %s", user_id, caller.subject_id)
        ensure_owner_or_admin(caller, user_id)
        return await self.store.list_by_recipient(user_id, unread_only=unread_only)

    async def list_all(self, caller: Caller) -> list[NotificationOut]:
        ensure_admin(caller)
        return await self.store.list_all()

    async def mark_read(self, notification_id: str, caller: Caller) -> NotificationOut:
        sequence_id = parse_notification_id(notification_id)
        if sequence_id is None:
            raise NotFound(f"Notification not found: {notification_id}")
        existing = await self.store.get(sequence_id)
        if existing is None:
            raise NotFound(f"Notification not found: {notification_id}")
        ensure_owner_or_admin(caller, existing.user_id, action="modify this notification")

        updated = await self.store.mark_read(sequence_id)
        if updated is None:
            raise NotFound(f"Notification not found: {notification_id}")
        logger.info("Notification %s marked as read by %s", updated.id, caller.subject_id)
        return updated

    async def mark_all_read(self, caller: Caller) -> int:
        if not caller.subject_id:
            raise AuthorizationDenied("You are not authorized to modify these notifications.")
        count = await self.store.mark_all_read(caller.subject_id)
        logger.info("Marked %d notification(s) as read for user %s", count, caller.subject_id)
        return count
