"""
API 요청/응답 스키마
- 요청 본문은 camelCase/snake_case 모두 허용
"""

from datetime import datetime

from pydantic import BaseModel, Field

from entregas.core.engine import TransitionKind
from entregas.schemas.shipment import DocumentModel, LocationPoint, PackageInfo, Shipment
from entregas.services.identity import UserRole


class LoginRequest(BaseModel):
    user_id: str = Field(min_length=1)
    role: UserRole


class SessionResponse(BaseModel):
    token: str
    user_id: str
    role: UserRole
    expires_at: datetime


class CreateShipmentRequest(DocumentModel):
    pickup: LocationPoint
    dropoff: LocationPoint
    pacote: PackageInfo
    cliente_name: str = ""
    cliente_phone: str = ""


class ProposeOfferRequest(DocumentModel):
    price: float
    courier_name: str | None = None
    message: str | None = None


class ReasonRequest(DocumentModel):
    reason: str | None = None


class TransitionRequest(DocumentModel):
    """범용 전이 요청 — kind별로 필요한 필드만 사용"""
    kind: TransitionKind
    price: float | None = None
    courier_name: str | None = None
    message: str | None = None
    reason: str | None = None
    eta_min: int | None = Field(default=None, ge=0)


class ShipmentListResponse(BaseModel):
    total: int
    shipments: list[Shipment]
