"""
기사 알림 서비스
- 알림 조건: 오퍼 가능 상태, 같은 도시, 건당 최대 횟수, 쿨다운, 중복 큐 방지
- 알림 발송 시 shipments.notified 이벤트 발행 + 배송 알림 카운터 증가
"""

import logging
from datetime import datetime, timedelta

from entregas.core.states import ShipmentState
from entregas.core.timeline import utcnow
from entregas.schemas.shipment import Shipment

logger = logging.getLogger(__name__)

NOTIFIABLE_STATES = frozenset({
    ShipmentState.CREATED,
    ShipmentState.COUNTER_OFFER,
    ShipmentState.COURIER_ABANDONED,
})


class NotificationService:
    """기사 단말 1대 분량의 알림 큐"""

    def __init__(self, shipments=None, event_bus=None, max_per_shipment: int = 3,
                 cooldown: timedelta = timedelta(seconds=30)):
        self._shipments = shipments
        self._event_bus = event_bus
        self.max_per_shipment = max_per_shipment
        self.cooldown = cooldown
        self._queue: list[str] = []

    @classmethod
    def from_settings(cls, settings, shipments=None, event_bus=None) -> "NotificationService":
        return cls(
            shipments=shipments,
            event_bus=event_bus,
            max_per_shipment=settings.NOTIFICATION_MAX_PER_SHIPMENT,
            cooldown=timedelta(seconds=settings.NOTIFICATION_COOLDOWN_SECONDS),
        )

    @property
    def queued(self) -> list[str]:
        return list(self._queue)

    def should_notify(self, shipment: Shipment, city: str | None = None,
                      now: datetime | None = None) -> bool:
        now = now or utcnow()
        if shipment.state not in NOTIFIABLE_STATES:
            return False
        if shipment.city and city and shipment.city != city:
            return False
        if shipment.notification_count >= self.max_per_shipment:
            return False
        if shipment.last_notification_at and now - shipment.last_notification_at < self.cooldown:
            return False
        if shipment.id in self._queue:
            return False
        return True

    async def show_shipment_notification(self, shipment: Shipment, viewer_id: str | None = None,
                                         now: datetime | None = None):
        """큐 등록 → 알림 이벤트 발행 → 카운터 증가"""
        self._queue.append(shipment.id)
        logger.info(f"배송 알림: {shipment.id} → {viewer_id or '-'}")

        if self._event_bus:
            await self._event_bus.publish("shipments.notified", {
                "shipment_id": shipment.id,
                "viewer_id": viewer_id,
                "city": shipment.city,
                "preco": shipment.quote.preco,
                "pickup": shipment.pickup.endereco,
                "dropoff": shipment.dropoff.endereco,
            })
        if self._shipments:
            await self._shipments.record_notification(shipment.id, now=now)

    def clear_notification_queue(self):
        self._queue = []

    def remove_from_queue(self, shipment_id: str):
        self._queue = [sid for sid in self._queue if sid != shipment_id]
