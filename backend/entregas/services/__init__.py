"""
서비스 계층
- 배송 명령/조회, 가격 산정, 알림, 인증 세션, 위치
"""

from entregas.services.identity import InMemoryIdentityProvider, Session, UserRole
from entregas.services.location import StaticLocationProvider, city_from_address
from entregas.services.notifications import NotificationService
from entregas.services.pricing import build_quote, estimate_price
from entregas.services.shipment_service import ShipmentService

__all__ = [
    "InMemoryIdentityProvider",
    "Session",
    "UserRole",
    "StaticLocationProvider",
    "city_from_address",
    "NotificationService",
    "build_quote",
    "estimate_price",
    "ShipmentService",
]
