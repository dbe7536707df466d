from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from notifier.api.deps import get_caller, get_services
from notifier.auth.access import Caller, ensure_stream_owner
from notifier.container import ServiceContainer
from notifier.realtime.streams import sse_events
from notifier.schemas.notification import NotificationCreate, NotificationOut


router = APIRouter()


@router.post("", response_model=NotificationOut)
async def push_notification(
    payload: NotificationCreate,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> NotificationOut:
    return await services.pipeline.ingest(payload, caller)


@router.get("", response_model=list[NotificationOut])
async def list_all_notifications(
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> list[NotificationOut]:
    return await services.inbox.list_all(caller)


@router.post("/read-all")
async def mark_all_read(
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    updated = await services.inbox.mark_all_read(caller)
    return {"status": "ok", "updated": updated}


@router.get("/stream/{user_id}")
async def stream_notifications(
    user_id: str,
    request: Request,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> StreamingResponse:
    ensure_stream_owner(caller, user_id)
    return StreamingResponse(
        sse_events(
            services.hub,
            user_id,
            keepalive=services.settings.STREAM_KEEPALIVE_SECONDS,
            is_disconnected=request.is_disconnected,
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/{user_id}", response_model=list[NotificationOut])
async def list_notifications(
    user_id: str,
    unread_only: bool = False,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> list[NotificationOut]:
    return await services.inbox.list_for_user(user_id, caller, unread_only=unread_only)


@router.put("/{notification_id}/read", response_model=NotificationOut)
async def mark_read(
    notification_id: str,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> NotificationOut:
    return await services.inbox.mark_read(notification_id, caller)
