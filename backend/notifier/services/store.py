from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from notifier.errors import PersistenceFailure
from notifier.models.notification import Notification
from notifier.schemas.notification import NotificationOut


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationCandidate:
    user_id: str
    message: str
    metadata: str | None
    created_at: datetime


def notification_to_out(n: Notification) -> NotificationOut:
    return NotificationOut(
        id=n.id,
        sequence_id=n.sequence_id,
        user_id=n.user_id,
        message=n.message,
        metadata=n.metadata_,
        read=n.is_read,
        created_at=n.created_at,
    )


class NotificationStore:
    """Durable notification records keyed by a database-assigned sequence.

    The sequence number is the table's autoincrement primary key, so concurrent
    appends never compute ids themselves and never collide.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, action: str) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as db:
            try:
                yield db
            except SQLAlchemyError as exc:
                logger.exception("Notification store failed to %s", action)
                raise PersistenceFailure(f"Could not {action}.") from exc

    async def append(self, candidate: NotificationCandidate) -> NotificationOut:
        async with self._session(f"save notification for user {candidate.user_id}") as db:
            n = Notification(
                user_id=candidate.user_id,
                message=candidate.message,
                is_read=False,
                metadata_=candidate.metadata,
                created_at=candidate.created_at,
            )
            db.add(n)
            await db.commit()
            logger.info("Notification %s saved for user %s", n.id, n.user_id)
            return notification_to_out(n)

    async def list_by_recipient(
        self,
        user_id: str,
        *,
        unread_only: bool = False,
        limit: int | None = None,
    ) -> list[NotificationOut]:
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc(), Notification.sequence_id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session(f"list notifications for user {user_id}") as db:
            notifications = (await db.execute(stmt)).scalars().all()
        return [notification_to_out(n) for n in notifications]

    async def list_all(self, *, limit: int | None = None) -> list[NotificationOut]:
        stmt = select(Notification).order_by(Notification.created_at.desc(), Notification.sequence_id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session("list notifications") as db:
            notifications = (await db.execute(stmt)).scalars().all()
        return [notification_to_out(n) for n in notifications]

    async def get(self, sequence_id: int) -> NotificationOut | None:
        async with self._session(f"load notification {sequence_id}") as db:
            n = await db.get(Notification, sequence_id)
            return notification_to_out(n) if n is not None else None

    async def mark_read(self, sequence_id: int) -> NotificationOut | None:
        async with self._session(f"mark notification {sequence_id} as read") as db:
            n = await db.get(Notification, sequence_id)
            if n is None:
                return None
            if not n.is_read:
                n.is_read = True
                await db.commit()
            return notification_to_out(n)

    async def mark_all_read(self, user_id: str) -> int:
        async with self._session(f"mark notifications of user {user_id} as read") as db:
            result = await db.execute(
                update(Notification)
                .where(Notification.user_id == user_id, Notification.is_read.is_(False))
                .values(is_read=True)
            )
            await db.commit()
            return result.rowcount or 0
