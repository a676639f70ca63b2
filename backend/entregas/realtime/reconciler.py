"""
실시간 조정 계층 — 변경 이벤트 스트림을 뷰어별 로컬 뷰로 접는다.

- processed 키 집합으로 부수효과를 최대 1회로 제한
    <id>              : 신규 배송 알림 (기사)
    accepted_<id>     : 수락된 오퍼 → 운행 화면 전환 트리거 (기사)
    offer_<id>_<n>    : n번째 오퍼 도착 알림 (고객)
- removed, 또는 구독 상태 집합을 벗어난 modified는 로컬 뷰에서 제거
- 기사 뷰어에게는 본인이 포기한 배송을 조용히 제외
- 잘못된 이벤트 하나는 로그만 남기고 건너뛴다 (구독 루프는 계속)
- 문서 간 이벤트 순서는 가정하지 않는다
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable

from entregas.core.abandonment import is_excluded_for
from entregas.core.states import ShipmentState
from entregas.schemas.shipment import Shipment
from entregas.services.identity import UserRole
from entregas.services.shipment_service import shipment_from_document
from entregas.store.change_feed import ChangeEvent, ChangeType

logger = logging.getLogger(__name__)

# 기사 단말이 구독하는 상태
COURIER_FEED_STATES = frozenset({
    ShipmentState.CREATED,
    ShipmentState.COUNTER_OFFER,
    ShipmentState.ACCEPTED_OFFER,
    ShipmentState.COURIER_ABANDONED,
})

OFFER_ALERT_STATES = frozenset({ShipmentState.OFFERED, ShipmentState.COUNTER_OFFER})

ShipmentCallback = Callable[[Shipment], Awaitable[Any] | None]


async def _call(callback: ShipmentCallback | None, shipment: Shipment):
    if callback is None:
        return
    result = callback(shipment)
    if inspect.isawaitable(result):
        await result


class ShipmentReconciler:
    """뷰어 1명의 로컬 뷰 + 처리 완료 키"""

    def __init__(self, viewer_id: str, role: UserRole | str,
                 states: Iterable[ShipmentState] | None = None,
                 notifier=None, city: str | None = None,
                 on_accepted: ShipmentCallback | None = None,
                 on_offer: ShipmentCallback | None = None):
        self.viewer_id = viewer_id
        self.role = UserRole(role)
        self.states = frozenset(states) if states is not None else None
        self.notifier = notifier
        self.city = city
        self.on_accepted = on_accepted
        self.on_offer = on_offer

        self.view: dict[str, Shipment] = {}
        self._processed: set[str] = set()

    @property
    def shipments(self) -> list[Shipment]:
        """로컬 뷰 (오래된 순)"""
        return sorted(self.view.values(), key=lambda s: s.created_at)

    def is_processed(self, key: str) -> bool:
        return key in self._processed

    def _claim(self, key: str) -> bool:
        """처음 보는 키면 등록하고 True"""
        if key in self._processed:
            return False
        self._processed.add(key)
        return True

    def reset(self):
        """세션 변경 시 호출 — 처리 키와 로컬 뷰 초기화"""
        self._processed.clear()
        self.view.clear()

    async def handle(self, event: ChangeEvent):
        try:
            await self._apply(event)
        except Exception as e:
            logger.error(
                f"변경 이벤트 처리 실패 ({self.viewer_id}, {event.type}, {event.document_id}): {e}"
            )

    async def _apply(self, event: ChangeEvent):
        change_type = ChangeType(event.type)
        if change_type == ChangeType.REMOVED:
            self.view.pop(event.document_id, None)
            return

        shipment = shipment_from_document({**(event.document or {}), "id": event.document_id})

        if self.states is not None and shipment.state not in self.states:
            self.view.pop(shipment.id, None)
            return

        if self.role == UserRole.COURIER:
            if is_excluded_for(shipment, self.viewer_id):
                self.view.pop(shipment.id, None)
                return
            self.view[shipment.id] = shipment
            await self._courier_effects(shipment)
        else:
            self.view[shipment.id] = shipment
            if self.role == UserRole.CLIENTE:
                await self._client_effects(shipment)

    async def _courier_effects(self, shipment: Shipment):
        if (
            shipment.state == ShipmentState.ACCEPTED_OFFER
            and shipment.courier_uid == self.viewer_id
            and self._claim(f"accepted_{shipment.id}")
        ):
            logger.info(f"수락된 오퍼 감지: {shipment.id} → {self.viewer_id}")
            await _call(self.on_accepted, shipment)

        if self.notifier and self.notifier.should_notify(shipment, self.city):
            if self._claim(shipment.id):
                await self.notifier.show_shipment_notification(shipment, viewer_id=self.viewer_id)

    async def _client_effects(self, shipment: Shipment):
        if shipment.state in OFFER_ALERT_STATES and shipment.current_offer:
            if self._claim(f"offer_{shipment.id}_{len(shipment.offers)}"):
                await _call(self.on_offer, shipment)
