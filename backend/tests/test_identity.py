"""
세션 제공자 테스트 — 로그인/로그아웃 알림, 만료, 구독 해제
"""

from datetime import timedelta

import pytest

from entregas.services.identity import InMemoryIdentityProvider, SessionScope, UserRole


class TestInMemoryIdentityProvider:
    @pytest.mark.asyncio
    async def test_login_sets_current_session(self, identity):
        session = await identity.login("cliente-1", "cliente")

        assert session.role == UserRole.CLIENTE
        assert identity.get_session() == session
        assert identity.get_session(session.token) == session

    @pytest.mark.asyncio
    async def test_listeners_receive_login_and_logout(self, identity):
        received = []
        identity.on_session_changed(received.append)

        session = await identity.login("courier-1", UserRole.COURIER)
        await identity.logout()

        assert received == [session, None]
        assert identity.get_session() is None
        assert identity.get_session(session.token) is None

    @pytest.mark.asyncio
    async def test_async_listener_is_awaited(self, identity):
        received = []

        async def listener(session):
            received.append(session.user_id if session else None)

        identity.on_session_changed(listener)
        await identity.login("courier-1", UserRole.COURIER)

        assert received == ["courier-1"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, identity):
        received = []
        unsubscribe = identity.on_session_changed(received.append)

        unsubscribe()
        await identity.login("courier-1", UserRole.COURIER)

        assert received == []

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self, identity):
        received = []

        def broken(session):
            raise RuntimeError("boom")

        identity.on_session_changed(broken)
        identity.on_session_changed(received.append)
        await identity.login("courier-1", UserRole.COURIER)

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_expired_session_reads_as_none(self):
        identity = InMemoryIdentityProvider(session_ttl=timedelta(0))

        session = await identity.login("cliente-1", UserRole.CLIENTE)

        assert identity.get_session(session.token) is None

    @pytest.mark.asyncio
    async def test_logout_other_token_keeps_current(self, identity):
        first = await identity.login("cliente-1", UserRole.CLIENTE)
        second = await identity.login("cliente-2", UserRole.CLIENTE)

        await identity.logout(first.token)

        assert identity.get_session() == second
        assert identity.get_session(first.token) is None

    def test_invalid_role(self, identity):
        with pytest.raises(ValueError):
            UserRole("motorista")


class TestSessionScope:
    @pytest.mark.asyncio
    async def test_scope_is_pinned_to_token(self, identity):
        mine = await identity.login("cliente-1", UserRole.CLIENTE)
        scope = SessionScope(identity, mine.token)
        received = []
        scope.on_session_changed(received.append)

        # 다른 사용자의 로그인은 무시
        await identity.login("courier-1", UserRole.COURIER)
        assert scope.get_session() == mine
        assert received == []

        await identity.logout(mine.token)

        assert scope.get_session() is None
        assert received == [None]

    def test_unknown_token_has_no_session(self, identity):
        assert SessionScope(identity, "nope").get_session() is None
