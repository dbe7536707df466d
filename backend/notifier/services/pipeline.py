from __future__ import annotations

import enum
import logging
from datetime import datetime, timezone
from typing import Protocol

from notifier.auth.access import Caller, ensure_producer
from notifier.errors import PublishFailure, ValidationFailed
from notifier.realtime.hub import BroadcastHub
from notifier.schemas.notification import NotificationCreate, NotificationOut
from notifier.services.composer import DEFAULT_MAX_LENGTH, build_message, build_metadata
from notifier.services.enrichment import EnrichmentClientSet, EnrichmentResult
from notifier.services.store import NotificationCandidate, NotificationStore


logger = logging.getLogger(__name__)


class IngestionStage(str, enum.Enum):
    RECEIVED = "RECEIVED"
    AUTHORIZING = "AUTHORIZING"
    ENRICHING = "ENRICHING"
    COMPOSING = "COMPOSING"
    PERSISTING = "PERSISTING"
    BROADCASTING = "BROADCASTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Relay(Protocol):
    async def publish(self, record: NotificationOut) -> None: ...


class IngestionRun:
    """Stage history of one ``ingest`` call."""

    def __init__(self, request: NotificationCreate, caller: Caller) -> None:
        self.request = request
        self.caller = caller
        self.stages: list[IngestionStage] = [IngestionStage.RECEIVED]

    @property
    def stage(self) -> IngestionStage:
        return self.stages[-1]

    def advance(self, stage: IngestionStage) -> None:
        logger.debug(
            "Ingestion %s -> %s (event=%s recipient=%s)",
            self.stage.value,
            stage.value,
            self.request.event_type,
            self.request.recipient_user_id,
        )
        self.stages.append(stage)


def validate_request(request: NotificationCreate) -> None:
    if not request.recipient_user_id or not request.recipient_user_id.strip():
        raise ValidationFailed("recipientUserId is required.")


def _created_at(request: NotificationCreate) -> datetime:
    if request.occurred_at is None:
        return datetime.now(timezone.utc)
    if request.occurred_at.tzinfo is None:
        return request.occurred_at.replace(tzinfo=timezone.utc)
    return request.occurred_at


class NotificationPipeline:
    """Turn a producer event into a persisted, broadcast notification.

    Stages run in order: authorize and validate, enrich (concurrent, best
    effort), compose, persist, broadcast. A failure before or during
    persistence aborts the run without publishing anything. A failure to
    broadcast is logged only; the record is already durable.
    """

    def __init__(
        self,
        *,
        enricher: EnrichmentClientSet,
        store: NotificationStore,
        hub: BroadcastHub,
        relay: Relay | None = None,
        message_max_length: int = DEFAULT_MAX_LENGTH,
    ) -> None:
        self.enricher = enricher
        self.store = store
        self.hub = hub
        self.relay = relay
        self.message_max_length = message_max_length

    async def ingest(
        self,
        request: NotificationCreate,
        caller: Caller,
        *,
        run: IngestionRun | None = None,
    ) -> NotificationOut:
        run = run or IngestionRun(request, caller)
        try:
            run.advance(IngestionStage.AUTHORIZING)
            ensure_producer(caller)
            validate_request(request)

            run.advance(IngestionStage.ENRICHING)
            enrichment = await self.enricher.enrich(request, caller)

            run.advance(IngestionStage.COMPOSING)
            candidate = self.compose(request, enrichment)

            run.advance(IngestionStage.PERSISTING)
            saved = await self.store.append(candidate)
        except Exception as exc:
            failed_at = run.stage
            run.advance(IngestionStage.FAILED)
            log = logger.warning if getattr(exc, "status_code", 500) < 500 else logger.error
            log(
                "Error creating notification at %s for recipient %s: %s",
                failed_at.value,
                request.recipient_user_id,
                exc,
            )
            raise

        run.advance(IngestionStage.BROADCASTING)
        await self.broadcast(saved)
        run.advance(IngestionStage.COMPLETED)
        return saved

    def compose(self, request: NotificationCreate, enrichment: EnrichmentResult) -> NotificationCandidate:
        return NotificationCandidate(
            user_id=request.recipient_user_id,
            message=build_message(request, enrichment, max_length=self.message_max_length),
            metadata=build_metadata(request),
            created_at=_created_at(request),
        )

    async def broadcast(self, saved: NotificationOut) -> None:
        try:
            delivered = self.hub.publish(saved)
        except PublishFailure:
            logger.error("Failed to emit notification %s to live subscribers", saved.id, exc_info=True)
        else:
            logger.info("Notification emitted: %s -> user %s (%d live)", saved.id, saved.user_id, delivered)
        if self.relay is not None:
            await self.relay.publish(saved)
