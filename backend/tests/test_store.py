"""
문서 저장소 + 변경 피드 테스트 (인메모리 SQLite)
"""

import asyncio

import pytest

from entregas.core.errors import ConcurrencyConflict, NotFound
from entregas.store.change_feed import ChangeFeed, ChangeType, field_equals, state_in

COLLECTION = "shipments"


async def next_event(subscription, timeout=1.0):
    return await asyncio.wait_for(subscription.get(), timeout=timeout)


class TestDocumentStore:
    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        document_id = await store.create_document(COLLECTION, {"state": "CREATED", "city": "Santos"})

        document = await store.get_document(COLLECTION, document_id)

        assert document["id"] == document_id
        assert document["version"] == 1
        assert document["city"] == "Santos"

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store):
        assert await store.get_document(COLLECTION, "nope") is None

    @pytest.mark.asyncio
    async def test_get_from_other_collection_returns_none(self, store):
        document_id = await store.create_document("users", {"name": "Ana"})
        assert await store.get_document(COLLECTION, document_id) is None

    @pytest.mark.asyncio
    async def test_update_merges_and_bumps_version(self, store):
        document_id = await store.create_document(COLLECTION, {"state": "CREATED", "city": "Santos"})

        version = await store.update_document(COLLECTION, document_id, {"state": "OFFERED"})

        document = await store.get_document(COLLECTION, document_id)
        assert version == 2
        assert document["state"] == "OFFERED"
        assert document["city"] == "Santos"
        assert document["version"] == 2

    @pytest.mark.asyncio
    async def test_conditional_update_rejects_stale_version(self, store):
        document_id = await store.create_document(COLLECTION, {"state": "CREATED"})
        await store.update_document(COLLECTION, document_id, {"state": "OFFERED"}, expected_version=1)

        with pytest.raises(ConcurrencyConflict):
            await store.update_document(COLLECTION, document_id, {"state": "CANCELLED"}, expected_version=1)

        document = await store.get_document(COLLECTION, document_id)
        assert document["state"] == "OFFERED"

    @pytest.mark.asyncio
    async def test_update_missing_document(self, store):
        with pytest.raises(NotFound):
            await store.update_document(COLLECTION, "missing", {"state": "CREATED"})

    @pytest.mark.asyncio
    async def test_query_where(self, store):
        await store.create_document(COLLECTION, {"state": "CREATED", "clienteUid": "a"})
        await store.create_document(COLLECTION, {"state": "OFFERED", "clienteUid": "a"})
        await store.create_document(COLLECTION, {"state": "CREATED", "clienteUid": "b"})

        created = await store.query_where(COLLECTION, state_in(["CREATED"]))
        mine = await store.query_where(COLLECTION, field_equals("clienteUid", "a"))
        limited = await store.query_where(COLLECTION, state_in(["CREATED"]), limit=1)

        assert len(created) == 2
        assert len(mine) == 2
        assert len(limited) == 1

    @pytest.mark.asyncio
    async def test_delete_document(self, store):
        document_id = await store.create_document(COLLECTION, {"state": "CREATED"})
        await store.delete_document(COLLECTION, document_id)
        assert await store.get_document(COLLECTION, document_id) is None

    def test_ping(self, store):
        assert store.ping() is True


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_existing_matches_are_delivered_as_added(self, store):
        existing = await store.create_document(COLLECTION, {"state": "CREATED"})
        await store.create_document(COLLECTION, {"state": "DELIVERED"})

        subscription = await store.subscribe(COLLECTION, state_in(["CREATED"]))

        event = await next_event(subscription)
        assert event.type == ChangeType.ADDED
        assert event.document_id == existing
        assert subscription.pending() == 0
        subscription.close()

    @pytest.mark.asyncio
    async def test_added_modified_removed(self, store):
        subscription = await store.subscribe(COLLECTION, state_in(["CREATED", "COUNTER_OFFER"]))

        document_id = await store.create_document(COLLECTION, {"state": "CREATED"})
        await store.update_document(COLLECTION, document_id, {"state": "COUNTER_OFFER"})
        await store.update_document(COLLECTION, document_id, {"state": "ACCEPTED_OFFER"})
        await store.update_document(COLLECTION, document_id, {"state": "PAID"})

        added = await next_event(subscription)
        modified = await next_event(subscription)
        removed = await next_event(subscription)

        assert added.type == ChangeType.ADDED
        assert modified.type == ChangeType.MODIFIED
        assert modified.document["state"] == "COUNTER_OFFER"
        assert removed.type == ChangeType.REMOVED
        assert removed.document["state"] == "ACCEPTED_OFFER"
        # 구독 범위 밖에서의 변경은 전달되지 않음
        assert subscription.pending() == 0
        subscription.close()

    @pytest.mark.asyncio
    async def test_delete_is_removed_event(self, store):
        document_id = await store.create_document(COLLECTION, {"state": "CREATED"})
        subscription = await store.subscribe(COLLECTION, state_in(["CREATED"]))
        await next_event(subscription)

        await store.delete_document(COLLECTION, document_id)

        event = await next_event(subscription)
        assert event.type == ChangeType.REMOVED
        assert event.document_id == document_id
        subscription.close()

    @pytest.mark.asyncio
    async def test_close_ends_iteration(self, store):
        subscription = await store.subscribe(COLLECTION, state_in(["CREATED"]))
        received = []

        async def consume():
            async for event in subscription:
                received.append(event)

        task = asyncio.create_task(consume())
        await store.create_document(COLLECTION, {"state": "CREATED"})
        await asyncio.sleep(0.01)
        subscription.close()
        await asyncio.wait_for(task, timeout=1.0)

        assert len(received) == 1
        assert subscription.closed
        assert store.feed.subscriber_count(COLLECTION) == 0

    @pytest.mark.asyncio
    async def test_closed_subscription_receives_nothing(self, store):
        subscription = await store.subscribe(COLLECTION, state_in(["CREATED"]))
        subscription.close()

        await store.create_document(COLLECTION, {"state": "CREATED"})

        assert await next_event(subscription) is None

    @pytest.mark.asyncio
    async def test_write_during_snapshot_read_is_delivered(self, store, monkeypatch):
        """스냅샷 조회 직후 커밋된 변경도 구독에 도착하고, 낡은 스냅샷 행은 버려진다"""
        # Given: 스냅샷 조회가 끝난 직후 다른 쓰기가 커밋/발행되도록 끼워 넣음
        document_id = await store.create_document(COLLECTION, {"state": "CREATED"})
        original_run = store._run

        async def run_with_concurrent_write(fn, *args):
            result = await original_run(fn, *args)
            if fn == store._all:
                await store.update_document(COLLECTION, document_id, {"state": "COUNTER_OFFER"})
            return result

        monkeypatch.setattr(store, "_run", run_with_concurrent_write)

        # When
        subscription = await store.subscribe(COLLECTION, state_in(["CREATED", "COUNTER_OFFER"]))

        # Then
        event = await next_event(subscription)
        assert event.type == ChangeType.MODIFIED
        assert event.document["state"] == "COUNTER_OFFER"
        assert event.document["version"] == 2
        assert subscription.pending() == 0
        subscription.close()


class TestChangeFeed:
    def test_failing_predicate_is_treated_as_no_match(self):
        feed = ChangeFeed()

        def broken(document):
            raise KeyError("state")

        subscription = feed.subscribe(COLLECTION, broken)
        feed.publish(COLLECTION, "x", None, {"state": "CREATED"})

        assert subscription.pending() == 0

    def test_full_queue_drops_oldest(self):
        feed = ChangeFeed()
        subscription = feed.subscribe(COLLECTION, state_in(["CREATED"]))
        subscription._queue = asyncio.Queue(maxsize=2)

        for i in range(3):
            feed.publish(COLLECTION, f"doc-{i}", None, {"state": "CREATED"})

        assert subscription.pending() == 2
        assert subscription._queue.get_nowait().document_id == "doc-1"

    def test_seed_skips_rows_older_than_delivered_events(self):
        feed = ChangeFeed()
        subscription = feed.subscribe(COLLECTION, state_in(["CREATED"]))
        feed.publish(COLLECTION, "a", {"state": "CREATED", "version": 1}, {"state": "CREATED", "version": 2})
        feed.publish(COLLECTION, "b", {"state": "CREATED", "version": 1}, None)

        delivered = subscription.seed([
            ("a", {"state": "CREATED", "version": 1}),
            ("b", {"state": "CREATED", "version": 1}),
            ("c", {"state": "CREATED", "version": 4}),
        ])

        assert delivered == 1
        events = [subscription._queue.get_nowait() for _ in range(subscription.pending())]
        assert [(e.type, e.document_id) for e in events] == [
            (ChangeType.MODIFIED, "a"),
            (ChangeType.REMOVED, "b"),
            (ChangeType.ADDED, "c"),
        ]
