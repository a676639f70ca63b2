"""
API 공통 의존성 — 세션 토큰 인증, 서비스 조회
"""

from fastapi import Header, HTTPException, Request

from entregas.services.identity import Session
from entregas.services.shipment_service import ShipmentService


def get_identity(request: Request):
    return request.app.state.identity


def get_shipment_service(request: Request) -> ShipmentService:
    return request.app.state.shipment_service


def get_current_session(request: Request, authorization: str | None = Header(None)) -> Session:
    """Authorization: Bearer <token>"""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Sessão ausente")
    token = authorization.split(" ", 1)[1].strip()
    session = get_identity(request).get_session(token)
    if session is None:
        raise HTTPException(status_code=401, detail="Sessão inválida ou expirada")
    return session
