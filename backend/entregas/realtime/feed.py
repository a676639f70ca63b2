"""
뷰어 피드 — 인증 세션, 문서 저장소 구독, 조정 계층을 묶는다.

세션이 바뀌면 (로그인/로그아웃/역할 전환):
  1. 기존 구독 해제 + 소비 태스크 종료
  2. 처리 키/로컬 뷰 초기화, 알림 큐 비우기
  3. 새 세션이 있으면 역할에 맞는 쿼리로 다시 구독
"""

import asyncio
import logging

from entregas.realtime.reconciler import COURIER_FEED_STATES, ShipmentCallback, ShipmentReconciler
from entregas.services.identity import Session, UserRole
from entregas.services.location import resolve_city
from entregas.services.shipment_service import COLLECTION
from entregas.store.change_feed import Subscription, field_equals, state_in

logger = logging.getLogger(__name__)


def _any_document(document: dict) -> bool:
    return True


class ViewerFeed:
    def __init__(self, identity, store, notifier=None, location=None,
                 default_city: str = "São Paulo",
                 on_accepted: ShipmentCallback | None = None,
                 on_offer: ShipmentCallback | None = None):
        self.identity = identity
        self.store = store
        self.notifier = notifier
        self.location = location
        self.default_city = default_city
        self.on_accepted = on_accepted
        self.on_offer = on_offer

        self.reconciler: ShipmentReconciler | None = None
        self._subscription: Subscription | None = None
        self._task: asyncio.Task | None = None
        self._unsubscribe_session = None

    @property
    def is_bound(self) -> bool:
        return self._subscription is not None

    async def start(self):
        self._unsubscribe_session = self.identity.on_session_changed(self._on_session_changed)
        await self._bind(self.identity.get_session())

    async def stop(self):
        if self._unsubscribe_session:
            self._unsubscribe_session()
            self._unsubscribe_session = None
        await self._teardown()

    async def _on_session_changed(self, session: Session | None):
        await self._teardown()
        if self.notifier:
            self.notifier.clear_notification_queue()
        await self._bind(session)

    async def _bind(self, session: Session | None):
        if session is None:
            return

        city = None
        if session.role == UserRole.COURIER:
            predicate = state_in(COURIER_FEED_STATES)
            states = COURIER_FEED_STATES
            city = await resolve_city(self.location, self.default_city)
        elif session.role == UserRole.CLIENTE:
            predicate = field_equals("clienteUid", session.user_id)
            states = None
        else:
            predicate = _any_document
            states = None

        self.reconciler = ShipmentReconciler(
            session.user_id, session.role,
            states=states,
            notifier=self.notifier if session.role == UserRole.COURIER else None,
            city=city,
            on_accepted=self.on_accepted,
            on_offer=self.on_offer,
        )
        self._subscription = await self.store.subscribe(COLLECTION, predicate)
        self._task = asyncio.create_task(
            self._consume(self._subscription, self.reconciler),
            name=f"viewer-feed-{session.user_id}",
        )
        logger.info(f"뷰어 피드 구독: {session.user_id} ({session.role.value}, city={city})")

    async def _consume(self, subscription: Subscription, reconciler: ShipmentReconciler):
        try:
            async for event in subscription:
                await reconciler.handle(event)
        except asyncio.CancelledError:
            pass

    async def _teardown(self):
        if self._subscription:
            self._subscription.close()
            self._subscription = None
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        if self.reconciler:
            self.reconciler.reset()
