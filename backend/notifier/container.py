from __future__ import annotations

from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from notifier.config import Settings
from notifier.realtime.hub import BroadcastHub
from notifier.realtime.redis_relay import RedisRelay
from notifier.services.enrichment import EnrichmentClientSet
from notifier.services.inbox import NotificationInbox
from notifier.services.pipeline import NotificationPipeline
from notifier.services.store import NotificationStore


@dataclass
class ServiceContainer:
    """Process-wide components, created once in the app lifespan."""

    settings: Settings
    hub: BroadcastHub
    store: NotificationStore
    pipeline: NotificationPipeline
    inbox: NotificationInbox
    relay: RedisRelay | None = None


def build_services(
    settings: Settings,
    *,
    session_factory: async_sessionmaker[AsyncSession],
    http_client: httpx.AsyncClient,
    hub: BroadcastHub | None = None,
) -> ServiceContainer:
    hub = hub or BroadcastHub(buffer_size=settings.HUB_SUBSCRIBER_BUFFER, overflow_policy=settings.HUB_OVERFLOW_POLICY)
    store = NotificationStore(session_factory)
    relay = None
    if settings.REDIS_ENABLED:
        relay = RedisRelay(hub, url=settings.REDIS_URL, channel=settings.REDIS_CHANNEL)
    pipeline = NotificationPipeline(
        enricher=EnrichmentClientSet.from_settings(http_client, settings),
        store=store,
        hub=hub,
        relay=relay,
        message_max_length=settings.MESSAGE_MAX_LENGTH,
    )
    return ServiceContainer(
        settings=settings,
        hub=hub,
        store=store,
        pipeline=pipeline,
        inbox=NotificationInbox(store),
        relay=relay,
    )
