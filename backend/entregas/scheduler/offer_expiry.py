"""
오퍼 만료 스케줄러 — 백그라운드 태스크로 만료된 currentOffer를 정리한다.
- OFFER_EXPIRY_INTERVAL_SECONDS 주기
- FastAPI lifespan에서 시작/중지
"""

import asyncio
import logging

from entregas.services.shipment_service import ShipmentService

logger = logging.getLogger(__name__)


class OfferExpiryScheduler:
    """만료 오퍼 정리 루프"""

    def __init__(self, service: ShipmentService, interval_seconds: float = 60.0):
        self.service = service
        self.interval_seconds = interval_seconds
        self._running = False
        self._task: asyncio.Task | None = None
        self.last_expired: list[str] = []

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_once(self) -> list[str]:
        self.last_expired = await self.service.expire_stale_offers()
        return self.last_expired

    async def _loop(self):
        logger.info(f"오퍼 만료 루프 시작 (주기 {self.interval_seconds}초)")
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)
                if self._running:
                    await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"오퍼 만료 루프 에러: {e}")
                await asyncio.sleep(5)

    async def start(self):
        if self._running:
            logger.warning("오퍼 만료 스케줄러가 이미 실행 중입니다")
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="offer-expiry")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        logger.info("오퍼 만료 스케줄러 중지 완료")
