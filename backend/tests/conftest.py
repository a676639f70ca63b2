"""
공통 테스트 픽스처
- 배송 객체 팩토리 (저장소 없이 코어 함수 테스트용)
- 인메모리 SQLite 문서 저장소, 인메모리 이벤트 버스, 배송 서비스
"""

from datetime import datetime, timezone

import pytest

import entregas.models  # Base.metadata 테이블 등록
from entregas.database import Base, make_engine, make_session_factory
from entregas.events.event_bus import AsyncEventBus
from entregas.schemas.shipment import LocationPoint, PackageInfo, Quote, Shipment
from entregas.services.identity import InMemoryIdentityProvider, Session, UserRole
from entregas.services.shipment_service import ShipmentService
from entregas.store.sql_store import SqlDocumentStore

CLIENT_ID = "cliente-1"
COURIER_ID = "courier-1"
OTHER_COURIER_ID = "courier-2"

FIXED_NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)

PICKUP = {
    "lat": -23.5505,
    "lng": -46.6333,
    "endereco": "Rua Augusta, 100 - Consolação, São Paulo - SP",
    "contato": "Ana",
}
DROPOFF = {
    "lat": -23.5614,
    "lng": -46.6559,
    "endereco": "Av. Paulista, 1578 - Bela Vista, São Paulo - SP",
    "contato": "Bruno",
}


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def make_shipment():
    """Shipment 팩토리 — 필드는 snake_case 키워드로 덮어쓴다"""

    def _make(**overrides) -> Shipment:
        fields = {
            "id": "ship-1",
            "cliente_uid": CLIENT_ID,
            "cliente_name": "Ana Souza",
            "pickup": LocationPoint(**PICKUP),
            "dropoff": LocationPoint(**DROPOFF),
            "pacote": PackageInfo(peso_kg=2.0),
            "quote": Quote(preco=12.50, dist_km=2.6, tempo_min=15),
            "city": "São Paulo",
            "created_at": FIXED_NOW,
            "updated_at": FIXED_NOW,
        }
        fields.update(overrides)
        return Shipment(**fields)

    return _make


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory) -> SqlDocumentStore:
    return SqlDocumentStore(session_factory)


@pytest.fixture
def bus() -> AsyncEventBus:
    """Redis 없이 인메모리 모드 (start 하지 않으면 최근 이벤트만 기록)"""
    return AsyncEventBus(redis_url=None)


@pytest.fixture
def service(store, bus) -> ShipmentService:
    return ShipmentService(store, event_bus=bus, retry_backoff=0)


@pytest.fixture
def identity() -> InMemoryIdentityProvider:
    return InMemoryIdentityProvider()


def make_session(user_id: str, role: UserRole) -> Session:
    return Session(
        token=f"token-{user_id}",
        user_id=user_id,
        role=role,
        expires_at=datetime(2999, 1, 1, tzinfo=timezone.utc),
    )


@pytest.fixture
def client_session() -> Session:
    return make_session(CLIENT_ID, UserRole.CLIENTE)


@pytest.fixture
def courier_session() -> Session:
    return make_session(COURIER_ID, UserRole.COURIER)


@pytest.fixture
def create_shipment(service, client_session):
    """서비스를 통해 저장된 배송 생성"""

    async def _create(session: Session | None = None, **kwargs) -> Shipment:
        return await service.create_shipment(
            session or client_session,
            pickup=LocationPoint(**PICKUP),
            dropoff=LocationPoint(**DROPOFF),
            pacote=kwargs.pop("pacote", PackageInfo(peso_kg=2.0)),
            cliente_name=kwargs.pop("cliente_name", "Ana Souza"),
            **kwargs,
        )

    return _create
