from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from notifier.models.enums import EventType


class NotificationCreate(BaseModel):
    """Event pushed by a producer service.

    Producers send camelCase keys::

        {"eventType": "TASK_ASSIGNED", "taskId": "TF-001", "projectId": "PF-001",
         "recipientUserId": "U002", "initiatorUserId": "U005", "title": "Fix bug"}
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event_type: EventType | None = None
    task_id: str | None = Field(default=None, max_length=50)
    project_id: str | None = Field(default=None, max_length=50)
    recipient_user_id: str = Field(min_length=1, max_length=50)
    initiator_user_id: str | None = Field(default=None, max_length=50)
    title: str | None = Field(default=None, max_length=300)
    payload: dict[str, Any] | None = None
    occurred_at: datetime | None = None


class NotificationOut(BaseModel):
    id: str
    sequence_id: int
    user_id: str
    message: str
    metadata: str | None = None
    read: bool = False
    created_at: datetime


class ErrorResponse(BaseModel):
    timestamp: datetime
    status: int
    error: str
    message: str
