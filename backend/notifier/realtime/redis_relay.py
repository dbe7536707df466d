from __future__ import annotations

import asyncio
import json
import logging
import uuid

from pydantic import ValidationError
from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError

from notifier.errors import PublishFailure
from notifier.realtime.hub import BroadcastHub
from notifier.schemas.notification import NotificationOut


logger = logging.getLogger(__name__)

RECONNECT_DELAY_SECONDS = 2.0


def create_redis_async(url: str) -> AsyncRedis:
    return AsyncRedis.from_url(url, decode_responses=True)


class RedisRelay:
    """Share hub traffic between service instances over a Redis channel.

    Records persisted here are published to the channel tagged with this
    instance's id; records from other instances are fed into the local hub.
    """

    def __init__(
        self,
        hub: BroadcastHub,
        *,
        url: str,
        channel: str,
        instance_id: str | None = None,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
    ) -> None:
        self._hub = hub
        self._url = url
        self.channel = channel
        self.instance_id = instance_id or uuid.uuid4().hex
        self._reconnect_delay = reconnect_delay
        self._publisher: AsyncRedis | None = None
        self._listener: asyncio.Task | None = None

    def encode(self, record: NotificationOut) -> str:
        return json.dumps({"origin": self.instance_id, "notification": record.model_dump(mode="json")})

    async def publish(self, record: NotificationOut) -> None:
        try:
            if self._publisher is None:
                self._publisher = create_redis_async(self._url)
            await self._publisher.publish(self.channel, self.encode(record))
        except (RedisError, OSError, ValueError):
            logger.exception("Failed to relay notification %s to channel %s", record.id, self.channel)

    def handle_message(self, raw: str) -> bool:
        """Feed one channel message into the local hub; True if it was delivered."""
        payload = json.loads(raw)
        if payload.get("origin") == self.instance_id:
            return False
        record = NotificationOut.model_validate(payload["notification"])
        self._hub.publish(record)
        return True

    async def listen(self) -> None:
        while True:
            pubsub = None
            client = None
            try:
                client = create_redis_async(self._url)
                pubsub = client.pubsub()
                await pubsub.subscribe(self.channel)
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    raw = message.get("data")
                    if not raw:
                        continue
                    try:
                        self.handle_message(raw)
                    except (ValueError, KeyError, ValidationError, PublishFailure):
                        logger.exception("Failed to process relayed notification message")
            except asyncio.CancelledError:
                break
            except (RedisError, OSError, ValueError):
                logger.exception("Redis relay listener failed; retrying soon")
            finally:
                await _close_quietly(pubsub, client, channel=self.channel)
            await asyncio.sleep(self._reconnect_delay)

    def start(self) -> asyncio.Task:
        if self._listener is None:
            self._listener = asyncio.create_task(self.listen())
        return self._listener

    async def stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._publisher is not None:
            await self._publisher.aclose()
            self._publisher = None


async def _close_quietly(pubsub, client, *, channel: str) -> None:
    try:
        if pubsub is not None:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
    except (RedisError, OSError) as exc:
        logger.debug("Ignoring error while closing pubsub: %s", exc)
    try:
        if client is not None:
            await client.aclose()
    except (RedisError, OSError) as exc:
        logger.debug("Ignoring error while closing redis client: %s", exc)
