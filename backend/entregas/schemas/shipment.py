"""
배송 도메인 Pydantic 스키마
- 저장소 문서(camelCase 키) ↔ 파이썬 객체(snake_case) 변환
- 저장소 경계에서 스키마 검증을 수행한다 (잘못된 문서는 ValidationError).
- 타임스탬프는 항상 timezone-aware UTC로 정규화한다.
"""

from datetime import datetime, timezone
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from entregas.core.states import ShipmentState


def _as_utc(value: datetime) -> datetime:
    """naive datetime은 UTC로 간주"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class DocumentModel(BaseModel):
    """저장소 문서 공통 설정 — camelCase alias, 이름으로도 생성 가능"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LocationPoint(DocumentModel):
    lat: float
    lng: float
    endereco: str
    contato: str = ""
    instrucoes: str | None = None


class PackageDimensions(DocumentModel):
    c: float = 0.0  # 길이 (cm)
    l: float = 0.0  # 너비 (cm)
    a: float = 0.0  # 높이 (cm)

    @property
    def volume_cm3(self) -> float:
        return self.c * self.l * self.a


class PackageInfo(DocumentModel):
    peso_kg: float = Field(ge=0)
    dim: PackageDimensions = Field(default_factory=PackageDimensions)
    fragil: bool = False
    valor_declarado: float = 0.0
    fotos: list[str] = Field(default_factory=list)


class Quote(DocumentModel):
    preco: float
    dist_km: float
    tempo_min: int
    moeda: str = "BRL"


class TimelineEvent(DocumentModel):
    """append-only 감사 기록"""

    tipo: str
    timestamp: UtcDatetime
    descricao: str
    payload: dict[str, Any] | None = None


class CourierOffer(DocumentModel):
    """기사 제안 — 생성 후 불변. 새 제안은 새 레코드로 추가된다."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    courier_uid: str
    courier_name: str
    offered_price: float
    message: str | None = None
    created_at: UtcDatetime
    expires_at: UtcDatetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class Shipment(DocumentModel):
    """배송 요청 — 생성부터 완료/취소까지"""

    id: str | None = None

    # 생성 시 고정
    cliente_uid: str
    cliente_name: str = ""
    cliente_phone: str = ""
    pickup: LocationPoint
    dropoff: LocationPoint
    pacote: PackageInfo
    quote: Quote

    # 변경 가능
    state: ShipmentState = ShipmentState.CREATED
    courier_uid: str | None = None
    eta_min: int | None = None
    offers: list[CourierOffer] = Field(default_factory=list)
    current_offer: CourierOffer | None = None
    notification_count: int = 0
    last_notification_at: UtcDatetime | None = None
    city: str | None = None
    rejection_count: int = 0
    timeline: list[TimelineEvent] = Field(default_factory=list)

    created_at: UtcDatetime
    updated_at: UtcDatetime

    # 낙관적 동시성 토큰 — 저장소가 관리
    version: int = 0

    def to_document(self) -> dict:
        """저장용 문서 (id/version은 저장소 메타데이터이므로 제외)"""
        return self.model_dump(mode="json", by_alias=True, exclude={"id", "version"})

    @classmethod
    def from_document(cls, document_id: str, data: dict, version: int = 0) -> "Shipment":
        payload = {k: v for k, v in data.items() if k not in ("id", "version")}
        return cls.model_validate({**payload, "id": document_id, "version": version})
