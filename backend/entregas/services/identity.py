"""
인증 세션 제공자
- 이메일/전화/비밀번호 인증 절차는 다루지 않는다 (세션 바인딩만)
- on_session_changed(cb)로 로그인/로그아웃을 구독, 반환값 호출 시 구독 해제
- 만료된 세션은 None으로 읽힌다
"""

import enum
import inspect
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Protocol

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class UserRole(str, enum.Enum):
    CLIENTE = "cliente"
    COURIER = "courier"
    ADMIN = "admin"


class Session(BaseModel):
    token: str
    user_id: str
    role: UserRole
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at


SessionCallback = Callable[[Session | None], Awaitable[Any] | None]


class IdentityProvider(Protocol):
    def get_session(self, token: str | None = None) -> Session | None: ...

    def on_session_changed(self, callback: SessionCallback) -> Callable[[], None]: ...


class InMemoryIdentityProvider:
    """프로세스 내 세션 저장소. 마지막으로 로그인한 세션이 '현재 세션'이다."""

    def __init__(self, session_ttl: timedelta = timedelta(days=7)):
        self._session_ttl = session_ttl
        self._sessions: dict[str, Session] = {}
        self._current_token: str | None = None
        self._listeners: list[SessionCallback] = []

    async def login(self, user_id: str, role: UserRole | str) -> Session:
        session = Session(
            token=secrets.token_urlsafe(32),
            user_id=user_id,
            role=UserRole(role),
            expires_at=datetime.now(timezone.utc) + self._session_ttl,
        )
        self._sessions[session.token] = session
        self._current_token = session.token
        logger.info(f"로그인: {user_id} ({session.role.value})")
        await self._notify(session)
        return session

    async def logout(self, token: str | None = None):
        token = token or self._current_token
        session = self._sessions.pop(token, None) if token else None
        if token == self._current_token:
            self._current_token = None
        if session:
            logger.info(f"로그아웃: {session.user_id}")
        await self._notify(None)

    def get_session(self, token: str | None = None) -> Session | None:
        """token 미지정 시 현재 세션"""
        token = token or self._current_token
        if not token:
            return None
        session = self._sessions.get(token)
        if session is None or session.is_expired():
            return None
        return session

    def on_session_changed(self, callback: SessionCallback) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def _notify(self, session: Session | None):
        for callback in list(self._listeners):
            try:
                result = callback(session)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"세션 변경 리스너 에러 ({getattr(callback, '__qualname__', callback)}): {e}")


class SessionScope:
    """
    토큰 하나에 고정된 IdentityProvider 뷰 (서버 측 연결별 피드용).
    다른 사용자의 로그인/로그아웃은 무시하고, 이 토큰의 세션이 바뀔 때만 리스너를 호출한다.
    """

    def __init__(self, provider: InMemoryIdentityProvider, token: str):
        self._provider = provider
        self.token = token

    def get_session(self, token: str | None = None) -> Session | None:
        return self._provider.get_session(self.token)

    def on_session_changed(self, callback: SessionCallback) -> Callable[[], None]:
        last = self.get_session()

        async def forward(_session: Session | None):
            nonlocal last
            current = self.get_session()
            if current == last:
                return
            last = current
            result = callback(current)
            if inspect.isawaitable(result):
                await result

        return self._provider.on_session_changed(forward)
