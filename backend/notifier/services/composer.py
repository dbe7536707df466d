from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from notifier.models.enums import EventType
from notifier.schemas.notification import NotificationCreate
from notifier.services.enrichment import EnrichmentResult


DEFAULT_MESSAGE = "You have a new notification"
DEFAULT_MAX_LENGTH = 255
ELLIPSIS = "..."


def coalesce(*values: Any) -> str:
    """First non-blank value as a string, or ``""``."""
    for value in values:
        if value is None:
            continue
        text = str(value)
        if text.strip():
            return text
    return ""


def _task_label(request: NotificationCreate, enrichment: EnrichmentResult) -> str:
    return coalesce(request.title, enrichment.task.get("title"), "Task")


def _project_label(request: NotificationCreate, enrichment: EnrichmentResult) -> str:
    return coalesce(enrichment.project.get("name"), request.project_id)


def _task_created(request: NotificationCreate, enrichment: EnrichmentResult) -> str:
    project = coalesce(request.project_id, enrichment.project.get("name"))
    return f"Task '{_task_label(request, enrichment)}' created in project {project}"


def _task_assigned(request: NotificationCreate, enrichment: EnrichmentResult) -> str:
    initiator = coalesce(request.initiator_user_id, "someone")
    return f"You were assigned to '{_task_label(request, enrichment)}' by {initiator}"


def _task_updated(request: NotificationCreate, enrichment: EnrichmentResult) -> str:
    return f"Task '{_task_label(request, enrichment)}' updated"


def _task_status_changed(request: NotificationCreate, enrichment: EnrichmentResult) -> str:
    payload = request.payload or {}
    new_status = coalesce(payload.get("to"))
    if not new_status:
        return "Task status updated"
    return f"Task '{_task_label(request, enrichment)}' status changed to {new_status}"


def _project_member_added(request: NotificationCreate, enrichment: EnrichmentResult) -> str:
    return f"You were added to project {_project_label(request, enrichment)}"


def _project_updated(request: NotificationCreate, enrichment: EnrichmentResult) -> str:
    return f"Project {_project_label(request, enrichment)} has been updated"


def _project_deleted(request: NotificationCreate, enrichment: EnrichmentResult) -> str:
    return f"Project {coalesce(request.title, _project_label(request, enrichment))} has been deleted"


def _generic(request: NotificationCreate, enrichment: EnrichmentResult) -> str:
    return coalesce(request.title, DEFAULT_MESSAGE)


MESSAGE_BUILDERS: dict[EventType, Callable[[NotificationCreate, EnrichmentResult], str]] = {
    EventType.TASK_CREATED: _task_created,
    EventType.TASK_ASSIGNED: _task_assigned,
    EventType.TASK_UPDATED: _task_updated,
    EventType.TASK_STATUS_CHANGED: _task_status_changed,
    EventType.PROJECT_CREATED: _generic,
    EventType.PROJECT_MEMBER_ADDED: _project_member_added,
    EventType.PROJECT_MEMBER_REMOVED: _generic,
    EventType.PROJECT_UPDATED: _project_updated,
    EventType.PROJECT_DELETED: _project_deleted,
    EventType.GENERIC: _generic,
}


def truncate(message: str, max_length: int) -> str:
    if len(message) <= max_length:
        return message
    return message[: max(max_length - len(ELLIPSIS), 0)] + ELLIPSIS


def build_message(
    request: NotificationCreate,
    enrichment: EnrichmentResult,
    *,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> str:
    builder = MESSAGE_BUILDERS.get(request.event_type or EventType.GENERIC, _generic)
    return truncate(builder(request, enrichment), max_length)


def build_metadata(request: NotificationCreate) -> str:
    """Compact JSON snapshot of the event, used by clients for deep links only."""
    data: dict[str, Any] = {}
    if request.task_id is not None:
        data["taskId"] = request.task_id
    if request.project_id is not None:
        data["projectId"] = request.project_id
    if request.initiator_user_id is not None:
        data["initiator"] = request.initiator_user_id
    data["event"] = (request.event_type or EventType.GENERIC).value
    data["rawPayloadPresent"] = request.payload is not None
    return json.dumps(data, separators=(",", ":"))
