import unittest
from datetime import datetime, timezone

import httpx

from notifier.auth.access import Caller
from notifier.errors import AuthorizationDenied, PersistenceFailure, PublishFailure, ValidationFailed
from notifier.models.enums import UserRole
from notifier.models.notification import format_notification_id
from notifier.realtime.hub import BroadcastHub
from notifier.realtime.redis_relay import RedisRelay
from notifier.schemas.notification import NotificationCreate, NotificationOut
from notifier.services.enrichment import EnrichmentClientSet, EnrichmentResult, ServiceLookup
from notifier.services.pipeline import IngestionRun, IngestionStage, NotificationPipeline


MANAGER = Caller(subject_id="U5", role=UserRole.MANAGER, raw_role="ROLE_MANAGER")
PLAIN_USER = Caller(subject_id="U7", role=UserRole.USER, raw_role="ROLE_USER")


class FakeStore:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.appended = []

    async def append(self, candidate) -> NotificationOut:
        if self.fail:
            raise PersistenceFailure("Could not save notification.")
        self.appended.append(candidate)
        sequence_id = len(self.appended)
        return NotificationOut(
            id=format_notification_id(sequence_id),
            sequence_id=sequence_id,
            user_id=candidate.user_id,
            message=candidate.message,
            metadata=candidate.metadata,
            read=False,
            created_at=candidate.created_at,
        )


class FakeEnricher:
    def __init__(self, result: EnrichmentResult | None = None) -> None:
        self.result = result or EnrichmentResult()
        self.calls = 0

    async def enrich(self, request, caller) -> EnrichmentResult:
        self.calls += 1
        return self.result


class FakeRelay:
    def __init__(self) -> None:
        self.published = []

    async def publish(self, record) -> None:
        self.published.append(record.id)


class ClosedHub(BroadcastHub):
    def publish(self, record) -> int:
        raise PublishFailure("hub down")


def _unreachable_enricher() -> EnrichmentClientSet:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    lookups = {
        key: ServiceLookup(client, name=key, base_url="http://down:1", resource=f"{key}s", timeout=1)
        for key in ("task", "user", "project")
    }
    return EnrichmentClientSet(tasks=lookups["task"], users=lookups["user"], projects=lookups["project"])


def _request(**overrides) -> NotificationCreate:
    data = {
        "eventType": "TASK_ASSIGNED",
        "taskId": "T1",
        "projectId": "P1",
        "recipientUserId": "U2",
        "initiatorUserId": "U5",
        "title": "Fix bug",
    }
    data.update(overrides)
    return NotificationCreate.model_validate(data)


class TestNotificationPipeline(unittest.IsolatedAsyncioTestCase):
    async def test_happy_path_persists_then_broadcasts(self) -> None:
        hub = BroadcastHub()
        stream = hub.subscribe()
        store = FakeStore()
        relay = FakeRelay()
        pipeline = NotificationPipeline(enricher=FakeEnricher(), store=store, hub=hub, relay=relay)
        run = IngestionRun(_request(), MANAGER)

        saved = await pipeline.ingest(_request(), MANAGER, run=run)

        self.assertEqual(saved.id, "NF-001")
        self.assertEqual(saved.message, "You were assigned to 'Fix bug' by U5")
        self.assertEqual(
            run.stages,
            [
                IngestionStage.RECEIVED,
                IngestionStage.AUTHORIZING,
                IngestionStage.ENRICHING,
                IngestionStage.COMPOSING,
                IngestionStage.PERSISTING,
                IngestionStage.BROADCASTING,
                IngestionStage.COMPLETED,
            ],
        )
        self.assertEqual((await anext(stream)).id, "NF-001")
        self.assertEqual(relay.published, ["NF-001"])

    async def test_unauthorized_caller_stops_before_enrichment(self) -> None:
        enricher = FakeEnricher()
        store = FakeStore()
        pipeline = NotificationPipeline(enricher=enricher, store=store, hub=BroadcastHub())
        run = IngestionRun(_request(), PLAIN_USER)

        with self.assertRaises(AuthorizationDenied):
            await pipeline.ingest(_request(), PLAIN_USER, run=run)

        self.assertEqual(enricher.calls, 0)
        self.assertEqual(store.appended, [])
        self.assertEqual(run.stages[-2:], [IngestionStage.AUTHORIZING, IngestionStage.FAILED])

    async def test_missing_role_is_denied(self) -> None:
        pipeline = NotificationPipeline(enricher=FakeEnricher(), store=FakeStore(), hub=BroadcastHub())
        with self.assertRaises(AuthorizationDenied):
            await pipeline.ingest(_request(), Caller(subject_id="U5", role=None))

    async def test_blank_recipient_is_rejected(self) -> None:
        enricher = FakeEnricher()
        pipeline = NotificationPipeline(enricher=enricher, store=FakeStore(), hub=BroadcastHub())
        with self.assertRaises(ValidationFailed):
            await pipeline.ingest(_request(recipientUserId="   "), MANAGER)
        self.assertEqual(enricher.calls, 0)

    async def test_persistence_failure_publishes_nothing(self) -> None:
        hub = BroadcastHub()
        stream = hub.subscribe()
        relay = FakeRelay()
        pipeline = NotificationPipeline(enricher=FakeEnricher(), store=FakeStore(fail=True), hub=hub, relay=relay)
        run = IngestionRun(_request(), MANAGER)

        with self.assertRaises(PersistenceFailure):
            await pipeline.ingest(_request(), MANAGER, run=run)

        self.assertEqual(stream.pending, 0)
        self.assertEqual(relay.published, [])
        self.assertEqual(run.stages[-2:], [IngestionStage.PERSISTING, IngestionStage.FAILED])

    async def test_unreachable_enrichment_still_persists(self) -> None:
        store = FakeStore()
        pipeline = NotificationPipeline(enricher=_unreachable_enricher(), store=store, hub=BroadcastHub())
        saved = await pipeline.ingest(_request(title=None), MANAGER)
        self.assertEqual(saved.message, "You were assigned to 'Task' by U5")
        self.assertEqual(len(store.appended), 1)

    async def test_enriched_fields_fill_gaps(self) -> None:
        enricher = FakeEnricher(EnrichmentResult(project={"name": "Apollo"}))
        pipeline = NotificationPipeline(enricher=enricher, store=FakeStore(), hub=BroadcastHub())
        saved = await pipeline.ingest(_request(eventType="PROJECT_MEMBER_ADDED"), MANAGER)
        self.assertEqual(saved.message, "You were added to project Apollo")

    async def test_broadcast_failure_does_not_fail_the_request(self) -> None:
        store = FakeStore()
        pipeline = NotificationPipeline(enricher=FakeEnricher(), store=store, hub=ClosedHub())
        run = IngestionRun(_request(), MANAGER)

        saved = await pipeline.ingest(_request(), MANAGER, run=run)

        self.assertEqual(saved.id, "NF-001")
        self.assertEqual(run.stage, IngestionStage.COMPLETED)

    async def test_relay_failure_does_not_fail_the_request(self) -> None:
        hub = BroadcastHub()
        relay = RedisRelay(hub, url="not-a-redis-url", channel="test")
        store = FakeStore()
        pipeline = NotificationPipeline(enricher=FakeEnricher(), store=store, hub=hub, relay=relay)

        with self.assertLogs("notifier.realtime.redis_relay", level="ERROR"):
            saved = await pipeline.ingest(_request(), MANAGER)

        self.assertEqual(saved.id, "NF-001")
        self.assertEqual(len(store.appended), 1)

    async def test_created_at_defaults_to_now_and_honours_occurred_at(self) -> None:
        pipeline = NotificationPipeline(enricher=FakeEnricher(), store=FakeStore(), hub=BroadcastHub())

        before = datetime.now(timezone.utc)
        saved = await pipeline.ingest(_request(), MANAGER)
        self.assertGreaterEqual(saved.created_at, before)

        occurred = await pipeline.ingest(_request(occurredAt="2024-05-01T10:00:00"), MANAGER)
        self.assertEqual(occurred.created_at, datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc))

    async def test_message_length_is_configurable(self) -> None:
        pipeline = NotificationPipeline(
            enricher=FakeEnricher(), store=FakeStore(), hub=BroadcastHub(), message_max_length=20
        )
        saved = await pipeline.ingest(_request(eventType="GENERIC", title="y" * 100), MANAGER)
        self.assertEqual(saved.message, "y" * 17 + "...")


if __name__ == "__main__":
    unittest.main()
