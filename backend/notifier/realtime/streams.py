from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from fastapi import WebSocket, WebSocketDisconnect

from notifier.realtime.filters import open_recipient_stream
from notifier.realtime.hub import BroadcastHub, Subscription
from notifier.schemas.notification import NotificationOut


logger = logging.getLogger(__name__)

KEEPALIVE_COMMENT = ": keep-alive\n\n"


def format_sse(record: NotificationOut) -> str:
    return f"id: {record.id}\nevent: notification\ndata: {record.model_dump_json()}\n\n"


async def sse_events(
    hub: BroadcastHub,
    subject_id: str,
    *,
    keepalive: float,
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
) -> AsyncIterator[str]:
    """Render ``subject_id``'s live notifications as server-sent events.

    The subscription only exists while the body is being iterated and is closed
    when the stream ends for any reason, including cancellation after the
    client goes away. A response whose body never starts never subscribes.
    """
    subscription = open_recipient_stream(hub, subject_id)
    try:
        while True:
            try:
                record = await asyncio.wait_for(anext(subscription), timeout=keepalive)
            except asyncio.TimeoutError:
                if is_disconnected is not None and await is_disconnected():
                    break
                yield KEEPALIVE_COMMENT
                continue
            except StopAsyncIteration:
                break
            yield format_sse(record)
    finally:
        subscription.close()
        logger.debug("Live stream closed")


def notification_to_message(record: NotificationOut) -> dict:
    return {"type": "notification", **record.model_dump(mode="json")}


async def serve_websocket(websocket: WebSocket, subscription: Subscription) -> None:
    """Accept ``websocket`` and forward ``subscription`` to it until either side stops."""

    async def _pump() -> None:
        async for record in subscription:
            await websocket.send_json(notification_to_message(record))

    pump = None
    try:
        await websocket.accept()
        pump = asyncio.create_task(_pump())
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        subscription.close()
        if pump is not None:
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass
            except (WebSocketDisconnect, RuntimeError) as exc:
                logger.debug("Websocket closed while sending: %s", exc)
