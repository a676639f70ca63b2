"""
배송 상태 머신 패키지
- states: 상태 분류 / 허용 전이
- offers: 오퍼 원장 (제안, 수락, 거절, 만료)
- abandonment: 기사 포기 추적
- engine: 전이 엔진 (apply_transition)

schemas.shipment가 states를 참조하므로 여기서는 errors/states만 노출한다.
"""

from entregas.core.errors import (
    ShipmentError,
    InvalidTransition,
    Unauthorized,
    OfferExpired,
    ShipmentNotNegotiable,
    InvalidOffer,
    NotFound,
    StoreUnavailable,
    ConcurrencyConflict,
)
from entregas.core.states import ShipmentState, is_terminal, is_active, allowed_next

__all__ = [
    "ShipmentError",
    "InvalidTransition",
    "Unauthorized",
    "OfferExpired",
    "ShipmentNotNegotiable",
    "InvalidOffer",
    "NotFound",
    "StoreUnavailable",
    "ConcurrencyConflict",
    "ShipmentState",
    "is_terminal",
    "is_active",
    "allowed_next",
]
