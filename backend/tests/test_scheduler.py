"""
오퍼 만료 스케줄러 테스트
"""

import asyncio
from datetime import timedelta

import pytest

from entregas.core.engine import TransitionEvent, TransitionKind
from entregas.core.states import ShipmentState
from entregas.core.timeline import utcnow
from entregas.scheduler.offer_expiry import OfferExpiryScheduler
from tests.conftest import COURIER_ID


async def stale_offer(service, create_shipment):
    shipment = await create_shipment()
    event = TransitionEvent(kind=TransitionKind.PROPOSE_OFFER, actor_id=COURIER_ID, actor_role="courier", price=15.0)
    await service.apply(shipment.id, event, now=utcnow() - timedelta(days=2))
    return shipment


class TestOfferExpiryScheduler:
    @pytest.mark.asyncio
    async def test_run_once(self, service, create_shipment):
        shipment = await stale_offer(service, create_shipment)
        scheduler = OfferExpiryScheduler(service)

        expired = await scheduler.run_once()

        assert expired == [shipment.id]
        assert scheduler.last_expired == [shipment.id]
        assert await scheduler.run_once() == []

    @pytest.mark.asyncio
    async def test_background_loop(self, service, create_shipment):
        shipment = await stale_offer(service, create_shipment)
        scheduler = OfferExpiryScheduler(service, interval_seconds=0.01)

        await scheduler.start()
        assert scheduler.is_running
        try:
            for _ in range(200):
                if (await service.get_shipment(shipment.id)).state == ShipmentState.CREATED:
                    break
                await asyncio.sleep(0.01)
        finally:
            await scheduler.stop()

        assert (await service.get_shipment(shipment.id)).state == ShipmentState.CREATED
        assert not scheduler.is_running
