"""
세션 API
- POST /api/auth/login: 사용자 id + 역할로 세션 발급
- POST /api/auth/logout
- GET /api/auth/session: 현재 토큰의 세션
"""

from fastapi import APIRouter, Depends, Request

from entregas.api.deps import get_current_session, get_identity
from entregas.schemas.common import MessageResponse
from entregas.schemas.requests import LoginRequest, SessionResponse
from entregas.services.identity import Session

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=SessionResponse)
async def login(req: LoginRequest, request: Request):
    session = await get_identity(request).login(req.user_id, req.role)
    return SessionResponse(**session.model_dump())


@router.post("/logout", response_model=MessageResponse)
async def logout(request: Request, session: Session = Depends(get_current_session)):
    await get_identity(request).logout(session.token)
    return MessageResponse(message="Sessão encerrada")


@router.get("/session", response_model=SessionResponse)
def current_session(session: Session = Depends(get_current_session)):
    return SessionResponse(**session.model_dump())
