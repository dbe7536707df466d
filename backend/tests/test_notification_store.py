import asyncio
import tempfile
import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy import text

from notifier.db import create_engine, create_session_factory, init_models
from notifier.errors import PersistenceFailure
from notifier.services.store import NotificationCandidate, NotificationStore


BASE_TIME = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def _candidate(user_id: str, message: str = "hello", *, minutes: int = 0) -> NotificationCandidate:
    return NotificationCandidate(
        user_id=user_id,
        message=message,
        metadata='{"event":"GENERIC","rawPayloadPresent":false}',
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )


class TestNotificationStore(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.engine = create_engine(f"sqlite+aiosqlite:///{self._tmp.name}/notifications.db")
        await init_models(self.engine)
        self.store = NotificationStore(create_session_factory(self.engine))

    async def asyncTearDown(self) -> None:
        await self.engine.dispose()
        self._tmp.cleanup()

    async def test_append_assigns_formatted_id_and_unread(self) -> None:
        saved = await self.store.append(_candidate("U2", "You were assigned"))
        self.assertEqual(saved.sequence_id, 1)
        self.assertEqual(saved.id, "NF-001")
        self.assertEqual(saved.user_id, "U2")
        self.assertFalse(saved.read)
        self.assertEqual(saved.metadata, '{"event":"GENERIC","rawPayloadPresent":false}')

    async def test_concurrent_appends_get_distinct_increasing_ids(self) -> None:
        saved = await asyncio.gather(*(self.store.append(_candidate("U2", f"m{i}")) for i in range(10)))
        ids = sorted(s.sequence_id for s in saved)
        self.assertEqual(ids, list(range(ids[0], ids[0] + 10)))
        self.assertEqual(len({s.id for s in saved}), 10)

        later = await self.store.append(_candidate("U3"))
        self.assertGreater(later.sequence_id, ids[-1])

    async def test_two_recipients_appending_concurrently(self) -> None:
        u1, u2 = await asyncio.gather(self.store.append(_candidate("U1")), self.store.append(_candidate("U2")))
        self.assertEqual(sorted([u1.sequence_id, u2.sequence_id]), [1, 2])
        self.assertEqual([r.user_id for r in await self.store.list_by_recipient("U1")], ["U1"])
        self.assertEqual([r.user_id for r in await self.store.list_by_recipient("U2")], ["U2"])

    async def test_list_by_recipient_is_newest_first_and_scoped(self) -> None:
        await self.store.append(_candidate("U2", "first", minutes=0))
        await self.store.append(_candidate("U9", "other", minutes=1))
        await self.store.append(_candidate("U2", "second", minutes=2))

        records = await self.store.list_by_recipient("U2")
        self.assertEqual([r.message for r in records], ["second", "first"])
        self.assertEqual(await self.store.list_by_recipient("nobody"), [])

    async def test_list_by_recipient_unread_only(self) -> None:
        first = await self.store.append(_candidate("U2", "first"))
        await self.store.append(_candidate("U2", "second", minutes=1))
        await self.store.mark_read(first.sequence_id)

        unread = await self.store.list_by_recipient("U2", unread_only=True)
        self.assertEqual([r.message for r in unread], ["second"])

    async def test_list_all_spans_recipients(self) -> None:
        await self.store.append(_candidate("U2", minutes=0))
        await self.store.append(_candidate("U3", minutes=1))
        records = await self.store.list_all()
        self.assertEqual([r.user_id for r in records], ["U3", "U2"])
        self.assertEqual(len(await self.store.list_all(limit=1)), 1)

    async def test_mark_read_is_idempotent(self) -> None:
        saved = await self.store.append(_candidate("U2"))
        first = await self.store.mark_read(saved.sequence_id)
        second = await self.store.mark_read(saved.sequence_id)
        self.assertTrue(first.read)
        self.assertTrue(second.read)
        self.assertEqual(first.id, second.id)
        self.assertTrue((await self.store.get(saved.sequence_id)).read)

    async def test_missing_record(self) -> None:
        self.assertIsNone(await self.store.get(404))
        self.assertIsNone(await self.store.mark_read(404))

    async def test_mark_all_read_only_touches_one_recipient(self) -> None:
        await self.store.append(_candidate("U2"))
        await self.store.append(_candidate("U2", minutes=1))
        await self.store.append(_candidate("U3", minutes=2))

        self.assertEqual(await self.store.mark_all_read("U2"), 2)
        self.assertEqual(await self.store.mark_all_read("U2"), 0)
        self.assertEqual(len(await self.store.list_by_recipient("U3", unread_only=True)), 1)

    async def test_database_errors_become_persistence_failures(self) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(text("DROP TABLE notifications"))

        with self.assertRaises(PersistenceFailure) as ctx:
            await self.store.append(_candidate("U2"))
        self.assertEqual(ctx.exception.status_code, 500)


if __name__ == "__main__":
    unittest.main()
