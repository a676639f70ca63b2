"""
FastAPI 앱 엔트리포인트
- CORS 설정
- 라우터 등록 (인증, 배송, WebSocket 브로드캐스트 + 세션별 뷰어 피드)
- AsyncEventBus + 문서 저장소 + 배송 서비스 + 오퍼 만료 스케줄러 백그라운드 시작
- 도메인 예외 → HTTP 응답 변환
- 헬스체크 엔드포인트
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import entregas.models  # Base.metadata 테이블 등록
from entregas.api import auth, shipments
from entregas.api.websocket import attach_event_bus, router as ws_router
from entregas.config import Settings, settings as default_settings
from entregas.core.errors import ShipmentError
from entregas.database import Base, SessionLocal, make_engine, make_session_factory
from entregas.events.event_bus import AsyncEventBus
from entregas.scheduler.offer_expiry import OfferExpiryScheduler
from entregas.schemas.common import HealthResponse
from entregas.services.identity import InMemoryIdentityProvider
from entregas.services.shipment_service import ShipmentService
from entregas.store.sql_store import SqlDocumentStore

# 로깅 설정
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def create_app(app_settings: Settings | None = None, session_factory=None,
               event_bus: AsyncEventBus | None = None,
               identity: InMemoryIdentityProvider | None = None,
               run_scheduler: bool = True) -> FastAPI:
    """앱 생성. 테스트에서는 세션 팩토리/이벤트 버스를 주입한다."""
    cfg = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """앱 시작/종료 시 전체 백그라운드 컴포넌트 관리"""
        # ── 1. DB 테이블 확인 ──
        factory = session_factory
        if factory is None:
            if app_settings is None:
                factory = SessionLocal
            else:
                factory = make_session_factory(make_engine(cfg.DATABASE_URL))
        Base.metadata.create_all(bind=factory.kw["bind"])
        logger.info("데이터베이스 테이블 확인 완료")

        # ── 2. AsyncEventBus 생성 및 WebSocket 중계 등록 ──
        bus = event_bus or AsyncEventBus(cfg.REDIS_URL)
        await attach_event_bus(bus)
        await bus.start()
        logger.info("AsyncEventBus 시작 완료")

        # ── 3. 저장소 / 서비스 / 인증 ──
        store = SqlDocumentStore(factory)
        service = ShipmentService.from_settings(store, cfg, event_bus=bus)
        app.state.settings = cfg
        app.state.store = store
        app.state.event_bus = bus
        app.state.shipment_service = service
        app.state.identity = identity or InMemoryIdentityProvider(
            session_ttl=timedelta(seconds=cfg.SESSION_TTL_SECONDS),
        )

        # ── 4. 오퍼 만료 스케줄러 ──
        scheduler = OfferExpiryScheduler(service, cfg.OFFER_EXPIRY_INTERVAL_SECONDS)
        app.state.offer_scheduler = scheduler
        if run_scheduler:
            await scheduler.start()
            logger.info("오퍼 만료 스케줄러 시작")

        yield

        # ── 종료 ──
        await scheduler.stop()
        await bus.stop()
        logger.info("백그라운드 컴포넌트 중지 완료")

    app = FastAPI(
        title="Entregas — 배송 마켓플레이스 API",
        description="배송 요청, 기사 오퍼 협상, 실시간 상태 동기화",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS 설정
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ShipmentError)
    async def shipment_error_handler(request: Request, exc: ShipmentError):
        if exc.status_code >= 500:
            logger.error(f"{exc.code}: {exc.message} ({request.url.path})")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # 라우터 등록
    app.include_router(auth.router)
    app.include_router(shipments.router)
    app.include_router(ws_router)

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """시스템 상태 확인"""
        loop = asyncio.get_event_loop()
        db_ok = await loop.run_in_executor(None, request.app.state.store.ping)
        bus = request.app.state.event_bus

        return HealthResponse(
            status="ok" if db_ok else "degraded",
            db_connected=db_ok,
            redis_connected=bus.is_redis,
            offer_expiry_running=request.app.state.offer_scheduler.is_running,
            timestamp=datetime.now(timezone.utc),
        )

    return app


app = create_app()
