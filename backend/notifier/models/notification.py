from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String, Text, false
from sqlalchemy.orm import Mapped, mapped_column

from notifier.db import Base


NOTIFICATION_ID_PREFIX = "NF-"


def format_notification_id(sequence_id: int) -> str:
    return f"{NOTIFICATION_ID_PREFIX}{sequence_id:03d}"


def parse_notification_id(raw: str) -> int | None:
    """Return the sequence number behind ``NF-007`` or ``7``; None if it is not one."""
    value = raw.strip()
    if value.upper().startswith(NOTIFICATION_ID_PREFIX):
        value = value[len(NOTIFICATION_ID_PREFIX):]
    if not (value.isascii() and value.isdigit()):
        return None
    return int(value)


class Notification(Base):
    __tablename__ = "notifications"

    # SQLite only autoincrements INTEGER primary keys.
    sequence_id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    user_id: Mapped[str] = mapped_column(String(50), index=True, nullable=False)
    message: Mapped[str] = mapped_column(String(255), nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    # "metadata" is reserved on declarative classes.
    metadata_: Mapped[str | None] = mapped_column("metadata", Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @property
    def id(self) -> str | None:
        if self.sequence_id is None:
            return None
        return format_notification_id(self.sequence_id)
