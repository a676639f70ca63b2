"""
배송 가격 산정
- R$ 5,00 (0.5 km까지) + 추가 km당 R$ 3,50
- 5 kg 초과 +20%, 파손주의 +15%
- 최종 최소 R$ 5,00
"""

import math
from dataclasses import dataclass

from entregas.schemas.shipment import LocationPoint, PackageInfo, Quote

MIN_DISTANCE_KM = 0.5
MIN_PRICE = 5.0
PRICE_PER_KM = 3.5
HEAVY_WEIGHT_KG = 5.0
HEAVY_MULTIPLIER = 1.2
FRAGILE_MULTIPLIER = 1.15
MINUTES_PER_KM = 3
MIN_TRAVEL_MINUTES = 15

EARTH_RADIUS_KM = 6371.0


@dataclass
class PricingBreakdown:
    base_price: float       # 기본 요금
    variable_price: float   # 기본 거리 초과분
    total: float


def _round2(value: float) -> float:
    """소수 둘째 자리 반올림 (half-up)"""
    return math.floor(value * 100 + 0.5) / 100


def estimate_price(distance_km: float, weight_kg: float = 0.0, fragil: bool = False) -> PricingBreakdown:
    if not math.isfinite(distance_km) or distance_km < 0:
        return PricingBreakdown(MIN_PRICE, 0.0, MIN_PRICE)

    variable = 0.0
    if distance_km > MIN_DISTANCE_KM:
        variable = _round2((distance_km - MIN_DISTANCE_KM) * PRICE_PER_KM)

    total = MIN_PRICE + variable
    if weight_kg > HEAVY_WEIGHT_KG:
        total = _round2(total * HEAVY_MULTIPLIER)
    if fragil:
        total = _round2(total * FRAGILE_MULTIPLIER)

    return PricingBreakdown(
        base_price=MIN_PRICE,
        variable_price=variable,
        total=max(MIN_PRICE, total),
    )


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """두 좌표 사이 대권 거리 (km)"""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def build_quote(pickup: LocationPoint, dropoff: LocationPoint, pacote: PackageInfo,
                currency: str = "BRL") -> Quote:
    distance = haversine_km(pickup.lat, pickup.lng, dropoff.lat, dropoff.lng)
    breakdown = estimate_price(distance, pacote.peso_kg, pacote.fragil)
    return Quote(
        preco=breakdown.total,
        dist_km=round(max(MIN_DISTANCE_KM, distance), 2),
        tempo_min=max(MIN_TRAVEL_MINUTES, math.floor(distance * MINUTES_PER_KM + 0.5)),
        moeda=currency,
    )
