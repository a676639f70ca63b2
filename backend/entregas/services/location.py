"""
위치(도시) 제공자
- 기사 알림의 도시 필터에 사용
- 조회 실패 시 DEFAULT_CITY로 대체
"""

import logging
import re
from typing import Protocol

logger = logging.getLogger(__name__)

# "Rua X, 123 - Bairro, São Paulo - SP" → "São Paulo"
_CITY_UF = re.compile(r"([^,\-]+?)\s*-\s*([A-Z]{2})\s*(?:,.*)?$")


class LocationProvider(Protocol):
    async def get_current_city(self) -> str | None: ...


class StaticLocationProvider:
    """고정 도시 (테스트/서버 환경)"""

    def __init__(self, city: str | None):
        self._city = city

    async def get_current_city(self) -> str | None:
        return self._city


def city_from_address(endereco: str | None) -> str | None:
    """브라질식 주소 문자열에서 도시명 추출. 형식이 맞지 않으면 None."""
    if not endereco:
        return None
    match = _CITY_UF.search(endereco.strip())
    if match:
        return match.group(1).strip()
    parts = [p.strip() for p in endereco.split(",") if p.strip()]
    if len(parts) >= 3:
        return parts[-2].split(" - ")[0].strip() or None
    return None


async def resolve_city(provider: LocationProvider | None, default: str) -> str:
    """현재 도시 조회, 실패/미확인 시 default"""
    if provider is None:
        return default
    try:
        city = await provider.get_current_city()
    except Exception as e:
        logger.warning(f"도시 조회 실패 ({e}) — 기본 도시 사용: {default}")
        return default
    return city or default
