"""
비동기 이벤트 버스 — pub/sub 패턴
- Redis Streams 사용 시도, 실패 시 인메모리 asyncio.Queue로 fallback
- redis_url=None이면 처음부터 인메모리 모드 (테스트/단일 프로세스)
- 토픽 기반 구독/발행
"""

import asyncio
import json
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

# 지원하는 토픽 목록
TOPICS = [
    "shipments.created",          # 새 배송 요청
    "shipments.state_changed",    # 배송 상태 전이
    "shipments.offer_proposed",   # 기사 오퍼/역제안
    "shipments.notified",         # 기사에게 배송 알림 발송
]

# 핸들러 타입: async callable(topic, data)
Handler = Callable[[str, dict], Coroutine[Any, Any, None]]

QUEUE_MAXSIZE = 10000


class AsyncEventBus:
    """
    비동기 이벤트 버스 — Redis Streams 기반, 인메모리 fallback.

    사용법:
        bus = AsyncEventBus(redis_url="redis://localhost:6379")
        await bus.subscribe("shipments.created", my_handler)
        await bus.start()  # 구독자 루프 시작
        await bus.publish("shipments.created", {"shipment_id": "..."})
    """

    def __init__(self, redis_url: str | None = "redis://localhost:6379"):
        self._redis_url = redis_url
        self._redis = None
        self._use_redis = False

        # 토픽별 핸들러 목록
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

        # 인메모리 큐 (fallback)
        self._queues: dict[str, asyncio.Queue] = {}

        # 최근 이벤트 저장 (조회용)
        self._recent_events: dict[str, list[dict]] = defaultdict(list)
        self._max_recent = 500

        # 상태
        self._running = False
        self._consumer_tasks: dict[str, asyncio.Task] = {}

    @property
    def is_redis(self) -> bool:
        return self._use_redis

    @property
    def is_running(self) -> bool:
        return self._running

    async def _try_connect_redis(self):
        """Redis 연결 시도"""
        if not self._redis_url:
            logger.info("AsyncEventBus: Redis 미설정 — 인메모리 모드")
            return
        try:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
            await self._redis.ping()
            self._use_redis = True
            logger.info("AsyncEventBus: Redis 연결 성공")
        except Exception as e:
            logger.warning(f"AsyncEventBus: Redis 연결 실패 ({e}) — 인메모리 모드")
            if self._redis:
                await self._redis.aclose()
            self._redis = None
            self._use_redis = False

    def _queue(self, topic: str) -> asyncio.Queue:
        if topic not in self._queues:
            self._queues[topic] = asyncio.Queue(maxsize=QUEUE_MAXSIZE)
        return self._queues[topic]

    async def subscribe(self, topic: str, handler: Handler):
        """토픽에 핸들러를 구독 등록한다. 실행 중이면 소비자도 바로 띄운다."""
        self._handlers[topic].append(handler)
        self._queue(topic)
        if self._running and topic not in self._consumer_tasks:
            self._start_consumer(topic)
        logger.debug(f"구독 등록: {topic} → {handler.__qualname__}")

    async def unsubscribe(self, topic: str, handler: Handler):
        handlers = self._handlers.get(topic, [])
        if handler in handlers:
            handlers.remove(handler)

    async def publish(self, topic: str, data: dict):
        """이벤트를 토픽에 발행한다."""
        event = {
            "topic": topic,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        # 최근 이벤트 저장
        self._recent_events[topic].append(event)
        if len(self._recent_events[topic]) > self._max_recent:
            self._recent_events[topic] = self._recent_events[topic][-self._max_recent:]

        if self._use_redis and self._redis:
            try:
                await self._redis.xadd(
                    topic,
                    {"data": json.dumps(data, ensure_ascii=False, default=str),
                     "_timestamp": event["timestamp"]},
                    maxlen=1000,
                )
            except Exception as e:
                logger.error(f"Redis publish 실패 ({topic}): {e}")
                # fallback으로 인메모리 큐에 넣기
                self._enqueue_inmemory(topic, event)
        else:
            self._enqueue_inmemory(topic, event)

    def _enqueue_inmemory(self, topic: str, event: dict):
        """인메모리 큐에 이벤트를 넣는다. 구독자가 없는 토픽은 최근 이벤트로만 남긴다."""
        if topic not in self._handlers:
            return
        queue = self._queue(topic)
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            # 오래된 이벤트 버리고 새 이벤트 추가
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            queue.put_nowait(event)

    async def _inmemory_consumer(self, topic: str):
        """인메모리 큐 소비자 루프"""
        queue = self._queue(topic)
        while self._running:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=1.0)
                await self._dispatch(topic, event["data"])
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"인메모리 소비자 에러 ({topic}): {e}")
                await asyncio.sleep(0.1)

    async def _redis_consumer(self, topic: str):
        """Redis Streams 소비자 루프"""
        last_id = "$"  # 새 메시지만 구독
        while self._running:
            try:
                results = await self._redis.xread(
                    {topic: last_id}, count=10, block=1000
                )
                for stream_name, messages in results:
                    for msg_id, msg_data in messages:
                        last_id = msg_id
                        try:
                            data = json.loads(msg_data.get("data", "{}"))
                        except json.JSONDecodeError as e:
                            logger.error(f"잘못된 메시지 무시 ({topic}, {msg_id}): {e}")
                            continue
                        await self._dispatch(topic, data)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Redis 소비자 에러 ({topic}): {e}")
                await asyncio.sleep(1.0)

    async def _dispatch(self, topic: str, data: dict):
        """핸들러들에게 이벤트를 전달한다."""
        for handler in list(self._handlers.get(topic, [])):
            try:
                await handler(topic, data)
            except Exception as e:
                logger.error(f"핸들러 에러 ({topic}, {handler.__qualname__}): {e}")

    def _start_consumer(self, topic: str):
        if self._use_redis:
            consumer = self._redis_consumer(topic)
            name = f"redis-consumer-{topic}"
        else:
            consumer = self._inmemory_consumer(topic)
            name = f"inmemory-consumer-{topic}"
        self._consumer_tasks[topic] = asyncio.create_task(consumer, name=name)

    async def start(self):
        """이벤트 버스 시작 — 구독자 루프를 생성한다."""
        if self._running:
            return
        await self._try_connect_redis()
        self._running = True

        # 구독이 등록된 토픽마다 소비자 태스크 생성
        for topic in list(self._handlers):
            self._start_consumer(topic)

        logger.info(
            f"AsyncEventBus 시작: {len(self._consumer_tasks)}개 소비자 "
            f"({'Redis' if self._use_redis else '인메모리'})"
        )

    async def stop(self):
        """이벤트 버스 중지"""
        self._running = False
        tasks = list(self._consumer_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._consumer_tasks = {}

        if self._redis:
            await self._redis.aclose()
            self._redis = None
        self._use_redis = False

        logger.info("AsyncEventBus 중지 완료")

    def get_recent(self, topic: str, count: int = 10) -> list[dict]:
        """최근 이벤트 조회 (동기)"""
        return self._recent_events.get(topic, [])[-count:]
