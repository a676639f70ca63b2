"""
위치 제공자 테스트 — 주소에서 도시 추출, 조회 실패 시 기본 도시
"""

import pytest

from entregas.services.location import StaticLocationProvider, city_from_address, resolve_city


class FailingLocationProvider:
    async def get_current_city(self):
        raise RuntimeError("GPS indisponível")


class TestCityFromAddress:
    @pytest.mark.parametrize("endereco,expected", [
        ("Rua Augusta, 100 - Consolação, São Paulo - SP", "São Paulo"),
        ("Av. Brasil, 500 - Centro, Rio de Janeiro - RJ, 20000-000", "Rio de Janeiro"),
        ("Rua A, 10, Campinas, Brasil", "Campinas"),
        ("Rua sem cidade", None),
        ("", None),
        (None, None),
    ])
    def test_extracts_city(self, endereco, expected):
        assert city_from_address(endereco) == expected


class TestResolveCity:
    @pytest.mark.asyncio
    async def test_provider_city(self):
        assert await resolve_city(StaticLocationProvider("Santos"), "São Paulo") == "Santos"

    @pytest.mark.asyncio
    async def test_missing_provider_uses_default(self):
        assert await resolve_city(None, "São Paulo") == "São Paulo"

    @pytest.mark.asyncio
    async def test_unknown_city_uses_default(self):
        assert await resolve_city(StaticLocationProvider(None), "São Paulo") == "São Paulo"

    @pytest.mark.asyncio
    async def test_failing_provider_uses_default(self):
        assert await resolve_city(FailingLocationProvider(), "Curitiba") == "Curitiba"
