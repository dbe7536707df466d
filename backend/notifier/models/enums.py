from __future__ import annotations

import enum


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    USER = "USER"

    @classmethod
    def parse(cls, raw: str | None) -> UserRole | None:
        """Accept gateway values such as ``ROLE_ADMIN`` as well as bare names."""
        if not raw:
            return None
        value = raw.strip().upper()
        if value.startswith("ROLE_"):
            value = value[len("ROLE_"):]
        try:
            return cls(value)
        except ValueError:
            return None


class EventType(str, enum.Enum):
    TASK_CREATED = "TASK_CREATED"
    TASK_UPDATED = "TASK_UPDATED"
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_STATUS_CHANGED = "TASK_STATUS_CHANGED"
    PROJECT_CREATED = "PROJECT_CREATED"
    PROJECT_MEMBER_ADDED = "PROJECT_MEMBER_ADDED"
    PROJECT_MEMBER_REMOVED = "PROJECT_MEMBER_REMOVED"
    PROJECT_UPDATED = "PROJECT_UPDATED"
    PROJECT_DELETED = "PROJECT_DELETED"
    GENERIC = "GENERIC"
