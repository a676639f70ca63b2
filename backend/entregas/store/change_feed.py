"""
변경 피드 — 문서 저장소 구독을 명시적인 채널로 제공한다.

subscribe(collection, predicate)가 돌려주는 Subscription은 ChangeEvent의
async iterator이며, close()가 구독 해제다.
쿼리 리스너와 동일하게 쓰기 전/후 문서가 조건에 맞는지로 이벤트 종류를 결정한다:
  - 전 X / 후 O → added
  - 전 O / 후 O → modified
  - 전 O / 후 X → removed (삭제되었거나 조건에서 벗어남)
같은 문서의 이벤트는 커밋 순서대로 전달되며, 문서 간 순서는 보장하지 않는다.
"""

import asyncio
import enum
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Iterable

logger = logging.getLogger(__name__)

Predicate = Callable[[dict], bool]


class ChangeType(str, enum.Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class ChangeEvent:
    type: ChangeType
    document_id: str
    document: dict | None = None


def state_in(states: Iterable) -> Predicate:
    """state 필드가 주어진 상태 중 하나인 문서"""
    values = {getattr(s, "value", s) for s in states}
    return lambda doc: doc.get("state") in values


def field_equals(field: str, value) -> Predicate:
    return lambda doc: doc.get(field) == value


def _matches(predicate: Predicate, document: dict | None) -> bool:
    if document is None:
        return False
    try:
        return bool(predicate(document))
    except Exception as e:
        logger.error(f"구독 조건 평가 실패 ({document.get('id')}): {e}")
        return False


class Subscription:
    """단일 구독 채널 (asyncio.Queue 기반)"""

    def __init__(self, feed: "ChangeFeed", collection: str, predicate: Predicate,
                 maxsize: int = 10000):
        self.collection = collection
        self.predicate = predicate
        self._feed = feed
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        # 문서별 마지막으로 전달한 version
        self._versions: dict[str, int] = {}

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._queue.qsize()

    def push(self, event: ChangeEvent | None):
        """이벤트 적재. 큐가 가득 차면 가장 오래된 이벤트를 버린다."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"구독 큐 포화 ({self.collection}) — 오래된 이벤트 폐기")
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            self._queue.put_nowait(event)

    def deliver(self, event: ChangeEvent) -> bool:
        """
        문서 version 기준으로 이미 전달한 것보다 오래된 이벤트는 버린다.
        removed는 항상 전달하고, 이후 같은 version 이하의 스냅샷 행이 되살아나지 않게 기록만 남긴다.
        """
        version = (event.document or {}).get("version")
        if version is not None:
            seen = self._versions.get(event.document_id)
            if event.type != ChangeType.REMOVED and seen is not None and version <= seen:
                return False
            self._versions[event.document_id] = version if seen is None else max(version, seen)
        self.push(event)
        return True

    def seed(self, documents: Iterable[tuple[str, dict]]) -> int:
        """등록 이후 읽은 스냅샷 중 조건에 맞는 문서를 added로 전달"""
        delivered = 0
        for document_id, document in documents:
            if _matches(self.predicate, document):
                delivered += self.deliver(ChangeEvent(ChangeType.ADDED, document_id, document))
        return delivered

    async def get(self) -> ChangeEvent | None:
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self):
        """구독 해제 — 대기 중인 iterator도 종료된다"""
        if self._closed:
            return
        self._closed = True
        self._feed.remove(self)
        self.push(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class ChangeFeed:
    """컬렉션별 구독 관리 및 변경 이벤트 분배"""

    def __init__(self):
        self._subscriptions: dict[str, list[Subscription]] = defaultdict(list)

    def subscribe(self, collection: str, predicate: Predicate,
                  initial: Iterable[tuple[str, dict]] = ()) -> Subscription:
        """구독 생성. initial 중 조건에 맞는 문서는 즉시 added로 전달된다."""
        subscription = Subscription(self, collection, predicate)
        self._subscriptions[collection].append(subscription)
        subscription.seed(initial)
        logger.debug(f"구독 등록: {collection} ({len(self._subscriptions[collection])}개 활성)")
        return subscription

    def remove(self, subscription: Subscription):
        subs = self._subscriptions.get(subscription.collection, [])
        if subscription in subs:
            subs.remove(subscription)

    def publish(self, collection: str, document_id: str,
                before: dict | None, after: dict | None):
        """쓰기 전/후 문서로 각 구독에 맞는 이벤트를 결정해 전달"""
        for subscription in list(self._subscriptions.get(collection, [])):
            was = _matches(subscription.predicate, before)
            now = _matches(subscription.predicate, after)
            if not was and now:
                event = ChangeEvent(ChangeType.ADDED, document_id, after)
            elif was and now:
                event = ChangeEvent(ChangeType.MODIFIED, document_id, after)
            elif was and not now:
                event = ChangeEvent(ChangeType.REMOVED, document_id, after or before)
            else:
                continue
            subscription.deliver(event)

    def subscriber_count(self, collection: str) -> int:
        return len(self._subscriptions.get(collection, []))
