"""
기사 알림 서비스 테스트 — 발송 조건, 큐, 카운터 기록
"""

from datetime import timedelta

import pytest

from entregas.core.states import ShipmentState
from entregas.services.notifications import NotificationService


@pytest.fixture
def notifier():
    return NotificationService(max_per_shipment=3, cooldown=timedelta(seconds=30))


class TestShouldNotify:
    def test_open_shipment_in_same_city(self, notifier, make_shipment, now):
        assert notifier.should_notify(make_shipment(), city="São Paulo", now=now)

    @pytest.mark.parametrize("state", [
        ShipmentState.OFFERED, ShipmentState.ACCEPTED_OFFER, ShipmentState.PAID,
        ShipmentState.DELIVERED, ShipmentState.CANCELLED,
    ])
    def test_non_notifiable_states(self, notifier, make_shipment, now, state):
        assert not notifier.should_notify(make_shipment(state=state), now=now)

    def test_counter_offer_and_abandoned_are_notifiable(self, notifier, make_shipment, now):
        assert notifier.should_notify(make_shipment(state=ShipmentState.COUNTER_OFFER), now=now)
        assert notifier.should_notify(make_shipment(state=ShipmentState.COURIER_ABANDONED), now=now)

    def test_other_city(self, notifier, make_shipment, now):
        assert not notifier.should_notify(make_shipment(), city="Campinas", now=now)

    def test_unknown_city_is_not_filtered(self, notifier, make_shipment, now):
        assert notifier.should_notify(make_shipment(city=None), city="Campinas", now=now)
        assert notifier.should_notify(make_shipment(), city=None, now=now)

    def test_max_notifications(self, notifier, make_shipment, now):
        assert not notifier.should_notify(make_shipment(notification_count=3), now=now)

    def test_cooldown(self, notifier, make_shipment, now):
        recent = make_shipment(last_notification_at=now - timedelta(seconds=10))
        old = make_shipment(last_notification_at=now - timedelta(seconds=31))

        assert not notifier.should_notify(recent, now=now)
        assert notifier.should_notify(old, now=now)

    @pytest.mark.asyncio
    async def test_already_queued(self, notifier, make_shipment, now):
        shipment = make_shipment()
        await notifier.show_shipment_notification(shipment, now=now)

        assert not notifier.should_notify(shipment, now=now)

        notifier.remove_from_queue(shipment.id)
        assert notifier.should_notify(shipment, now=now)


class TestShowNotification:
    @pytest.mark.asyncio
    async def test_publishes_and_records(self, service, bus, create_shipment):
        shipment = await create_shipment()
        notifier = NotificationService(shipments=service, event_bus=bus)

        await notifier.show_shipment_notification(shipment, viewer_id="courier-1")

        stored = await service.get_shipment(shipment.id)
        event = bus.get_recent("shipments.notified")[-1]["data"]
        assert notifier.queued == [shipment.id]
        assert stored.notification_count == 1
        assert event["shipment_id"] == shipment.id
        assert event["viewer_id"] == "courier-1"

    @pytest.mark.asyncio
    async def test_clear_queue(self, notifier, make_shipment, now):
        await notifier.show_shipment_notification(make_shipment(id="A"), now=now)
        await notifier.show_shipment_notification(make_shipment(id="B"), now=now)

        notifier.clear_notification_queue()

        assert notifier.queued == []
