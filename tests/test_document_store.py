import asyncio
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from docere.core.time_provider import TimeProvider
from docere.db import Base
from docere.store import (
    SERVER_TIMESTAMP,
    DocumentNotFound,
    DocumentStoreError,
    MemoryDocumentStore,
    PreconditionFailed,
    Query,
    SqlDocumentStore,
)
from docere.store.sql import decode_document, encode_document


class MutableTimeProvider(TimeProvider):
    def __init__(self, frozen_dt: datetime):
        self._frozen_dt = frozen_dt

    def now(self) -> datetime:
        return self._frozen_dt

    def advance(self, seconds: float) -> None:
        self._frozen_dt = self._frozen_dt + timedelta(seconds=seconds)


class DocumentStoreContract:
    """Behaviour shared by every backend; mixed into a TestCase per backend."""

    def make_store(self, clock: TimeProvider):
        raise NotImplementedError

    def setUp(self):
        self.clock = MutableTimeProvider(datetime(2026, 10, 16, 9, 0, 0, tzinfo=timezone.utc))
        self.store = self.make_store(self.clock)

    def test_set_get_and_merge(self):
        async def scenario():
            await self.store.set('notices', 'current', {'text': 'hello', 'pinned': True})
            await self.store.set('notices', 'current', {'text': 'updated'}, merge=True)
            merged = await self.store.get('notices', 'current')
            await self.store.set('notices', 'current', {'text': 'replaced'})
            replaced = await self.store.get('notices', 'current')
            missing = await self.store.get('notices', 'other')
            return merged, replaced, missing

        merged, replaced, missing = asyncio.run(scenario())
        self.assertEqual(merged.data, {'text': 'updated', 'pinned': True})
        self.assertEqual(merged.version, 2)
        self.assertEqual(replaced.data, {'text': 'replaced'})
        self.assertFalse(missing.exists)
        self.assertEqual(missing.get('text', 'fallback'), 'fallback')

    def test_server_timestamp_resolves_to_store_clock(self):
        async def scenario():
            await self.store.set('notices', 'current', {'text': 'hi', 'timestamp': SERVER_TIMESTAMP})
            return await self.store.get('notices', 'current')

        snapshot = asyncio.run(scenario())
        self.assertEqual(snapshot.get('timestamp'), self.clock.now())
        self.assertEqual(snapshot.update_time, self.clock.now())

    def test_update_requires_existing_document(self):
        async def scenario():
            await self.store.update('parentMessages', 'missing', {'read': True})

        with self.assertRaises(DocumentNotFound):
            asyncio.run(scenario())

    def test_create_is_create_if_absent(self):
        async def scenario():
            first = await self.store.create('submissions', '2026-10-20:Alice', {'content': 'v1'})
            second = await self.store.create('submissions', '2026-10-20:Alice', {'content': 'v2'})
            snapshot = await self.store.get('submissions', '2026-10-20:Alice')
            return first, second, snapshot

        first, second, snapshot = asyncio.run(scenario())
        self.assertTrue(first)
        self.assertFalse(second)
        self.assertEqual(snapshot.get('content'), 'v1')

    def test_add_generates_distinct_keys(self):
        async def scenario():
            one = await self.store.add('parentMessages', {'message': 'a'})
            two = await self.store.add('parentMessages', {'message': 'b'})
            rows = await self.store.query('parentMessages')
            return one, two, rows

        one, two, rows = asyncio.run(scenario())
        self.assertNotEqual(one, two)
        self.assertEqual({row.key for row in rows}, {one, two})

    def test_array_union_reports_only_added_values(self):
        async def scenario():
            await self.store.set('attendance', '2026-10-16', {'status': 'open', 'students': ['Alice']})
            added = await self.store.array_union('attendance', '2026-10-16', 'students', ['Alice', 'Bob', 'Bob'])
            again = await self.store.array_union('attendance', '2026-10-16', 'students', ['Bob'])
            snapshot = await self.store.get('attendance', '2026-10-16')
            return added, again, snapshot

        added, again, snapshot = asyncio.run(scenario())
        self.assertEqual(added, ['Bob'])
        self.assertEqual(again, [])
        self.assertEqual(snapshot.get('students'), ['Alice', 'Bob'])

    def test_array_union_precondition_and_missing_document(self):
        async def scenario():
            await self.store.set('attendance', '2026-10-16', {'status': 'closed', 'students': []})
            with self.assertRaises(PreconditionFailed):
                await self.store.array_union(
                    'attendance', '2026-10-16', 'students', ['Alice'], expected={'status': 'open'}
                )
            with self.assertRaises(DocumentNotFound):
                await self.store.array_union('attendance', '2026-10-17', 'students', ['Alice'])
            return await self.store.get('attendance', '2026-10-16')

        snapshot = asyncio.run(scenario())
        self.assertEqual(snapshot.get('students'), [])

    def test_compare_and_merge_only_applies_on_match(self):
        end_time = self.clock.now() + timedelta(seconds=30)

        async def scenario():
            await self.store.set('attendance', 'current', {'status': 'open', 'endTime': end_time})
            stale = await self.store.compare_and_merge(
                'attendance', 'current', {'endTime': end_time - timedelta(seconds=1)}, {'status': 'closed'}
            )
            fresh = await self.store.compare_and_merge(
                'attendance', 'current', {'status': 'open', 'endTime': end_time}, {'status': 'closed'}
            )
            missing = await self.store.compare_and_merge('attendance', 'nope', {}, {'status': 'closed'})
            snapshot = await self.store.get('attendance', 'current')
            return stale, fresh, missing, snapshot

        stale, fresh, missing, snapshot = asyncio.run(scenario())
        self.assertFalse(stale)
        self.assertTrue(fresh)
        self.assertFalse(missing)
        self.assertEqual(snapshot.get('status'), 'closed')
        self.assertEqual(snapshot.get('endTime'), end_time)

    def test_query_filters_orders_and_limits(self):
        async def scenario():
            for index, name in enumerate(['Alice', 'Bob', 'Cara']):
                self.clock.advance(1)
                await self.store.set(
                    'submissions',
                    f'2026-10-20:{name}',
                    {'studentName': name, 'deadlineDate': '2026-10-20', 'timestamp': SERVER_TIMESTAMP},
                )
            await self.store.set('submissions', '2026-10-27:Alice', {'studentName': 'Alice', 'deadlineDate': '2026-10-27'})
            query = Query(where=(('deadlineDate', '2026-10-20'),), order_by='timestamp', descending=True, limit=2)
            return await self.store.query('submissions', query)

        rows = asyncio.run(scenario())
        self.assertEqual([row.get('studentName') for row in rows], ['Cara', 'Bob'])

    def test_subscribe_delivers_current_state_then_changes(self):
        seen = []

        async def on_change(snapshot):
            seen.append((snapshot.version, snapshot.get('text')))

        async def scenario():
            subscription = await self.store.subscribe('notices', 'current', on_change)
            await self.store.set('notices', 'current', {'text': 'first'})
            await self.store.set('notices', 'current', {'text': 'second'})
            subscription.unsubscribe()
            subscription.unsubscribe()
            await self.store.set('notices', 'current', {'text': 'third'})
            return subscription

        subscription = asyncio.run(scenario())
        self.assertEqual(seen, [(0, None), (1, 'first'), (2, 'second')])
        self.assertFalse(subscription.active)
        self.assertEqual(self.store.listener_count(), 0)

    def test_failing_listener_does_not_reach_writer(self):
        delivered = []

        async def broken(_snapshot):
            raise RuntimeError('listener blew up')

        async def healthy(snapshot):
            delivered.append(snapshot.get('text'))

        async def scenario():
            await self.store.subscribe('notices', 'current', broken)
            await self.store.subscribe('notices', 'current', healthy)
            return await self.store.set('notices', 'current', {'text': 'still written'})

        with self.assertLogs('docere.store.base', level='ERROR'):
            snapshot = asyncio.run(scenario())
        self.assertEqual(snapshot.get('text'), 'still written')
        self.assertEqual(delivered, [None, 'still written'])

    def test_query_subscription_refreshes_on_collection_writes(self):
        batches = []

        async def on_rows(rows):
            batches.append([row.get('message') for row in rows])

        async def scenario():
            await self.store.subscribe_query('parentMessages', on_rows, Query(order_by='timestamp', descending=True))
            self.clock.advance(1)
            await self.store.add('parentMessages', {'message': 'hello', 'timestamp': SERVER_TIMESTAMP})
            self.clock.advance(1)
            await self.store.add('parentMessages', {'message': 'again', 'timestamp': SERVER_TIMESTAMP})
            await self.store.set('notices', 'current', {'text': 'unrelated'})

        asyncio.run(scenario())
        self.assertEqual(batches, [[], ['hello'], ['again', 'hello']])


class MemoryDocumentStoreTests(DocumentStoreContract, unittest.TestCase):
    def make_store(self, clock):
        return MemoryDocumentStore(clock)

    def test_listener_skips_versions_older_than_last_delivered(self):
        seen = []

        async def on_change(snapshot):
            seen.append(snapshot.version)

        async def scenario():
            await self.store.subscribe('notices', 'current', on_change)
            await self.store.set('notices', 'current', {'text': 'one'})
            stale = await self.store.get('notices', 'current')
            await self.store.set('notices', 'current', {'text': 'two'})
            listener = next(iter(self.store._listeners.values()))
            await listener.deliver_document(stale)

        asyncio.run(scenario())
        self.assertEqual(seen, [0, 1, 2])


class SqlDocumentStoreTests(DocumentStoreContract, unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_document_store.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def make_store(self, clock):
        Base.metadata.drop_all(bind=self._engine)
        Base.metadata.create_all(bind=self._engine)
        return SqlDocumentStore(self._session_factory, clock)

    def test_datetimes_survive_encoding(self):
        moment = datetime(2026, 10, 16, 9, 0, 2, tzinfo=timezone.utc)
        raw = encode_document({'endTime': moment, 'students': ['Alice'], 'nested': {'ok': True}})
        decoded = decode_document(raw)
        self.assertEqual(decoded['endTime'], moment)
        self.assertEqual(decoded['students'], ['Alice'])
        self.assertEqual(decoded['nested'], {'ok': True})

    def test_backend_failures_raise_document_store_error(self):
        broken_engine = create_engine('sqlite://', connect_args={'check_same_thread': False})
        store = SqlDocumentStore(sessionmaker(bind=broken_engine), self.clock)

        with self.assertLogs('docere.store.sql', level='ERROR'):
            with self.assertRaises(DocumentStoreError):
                asyncio.run(store.get('notices', 'current'))
        broken_engine.dispose()

    def test_ping_succeeds_with_table_present(self):
        self.store.ping()


if __name__ == '__main__':
    unittest.main()
