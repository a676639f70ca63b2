"""
배송 API — 생성, 조회, 오퍼 협상, 진행/포기/취소
도메인 예외(ShipmentError)는 main.py의 예외 핸들러가 HTTP 응답으로 변환한다.
"""

from fastapi import APIRouter, Depends, Query

from entregas.api.deps import get_current_session, get_shipment_service
from entregas.core.engine import TransitionEvent, TransitionKind
from entregas.core.errors import Unauthorized
from entregas.schemas.requests import (
    CreateShipmentRequest, ProposeOfferRequest, ReasonRequest, ShipmentListResponse,
    TransitionRequest,
)
from entregas.schemas.shipment import Shipment
from entregas.services.identity import Session, UserRole
from entregas.services.shipment_service import ShipmentService

router = APIRouter(prefix="/api/shipments", tags=["shipments"])

# 범용 전이 API에서 관리자만 직접 요청할 수 있는 전이
ADMIN_ONLY_KINDS = {TransitionKind.REOPEN, TransitionKind.EXPIRE_OFFER}


def _event(kind: TransitionKind, session: Session, **kwargs) -> TransitionEvent:
    return TransitionEvent(kind=kind, actor_id=session.user_id, actor_role=session.role.value, **kwargs)


@router.post("", response_model=Shipment, status_code=201)
async def create_shipment(
    req: CreateShipmentRequest,
    session: Session = Depends(get_current_session),
    service: ShipmentService = Depends(get_shipment_service),
):
    """고객 배송 요청 생성 (견적 자동 계산)"""
    return await service.create_shipment(
        session,
        pickup=req.pickup,
        dropoff=req.dropoff,
        pacote=req.pacote,
        cliente_name=req.cliente_name,
        cliente_phone=req.cliente_phone,
    )


@router.get("", response_model=ShipmentListResponse)
async def list_my_shipments(
    session: Session = Depends(get_current_session),
    service: ShipmentService = Depends(get_shipment_service),
):
    """고객: 본인 요청 목록 / 기사: 배정된 배송 목록"""
    if session.role == UserRole.CLIENTE:
        shipments = await service.list_client_shipments(session.user_id)
    elif session.role == UserRole.COURIER:
        shipments = await service.list_courier_shipments(session.user_id)
    else:
        raise Unauthorized("Lista disponível apenas para clientes e entregadores")
    return ShipmentListResponse(total=len(shipments), shipments=shipments)


@router.get("/available", response_model=ShipmentListResponse)
async def list_available(
    city: str | None = Query(None, description="도시 필터"),
    session: Session = Depends(get_current_session),
    service: ShipmentService = Depends(get_shipment_service),
):
    """기사가 오퍼를 낼 수 있는 배송 목록 (포기한 배송 제외)"""
    if session.role != UserRole.COURIER:
        raise Unauthorized("Disponível apenas para entregadores")
    shipments = await service.list_available_for_courier(session.user_id, city=city)
    return ShipmentListResponse(total=len(shipments), shipments=shipments)


@router.get("/{shipment_id}", response_model=Shipment)
async def get_shipment(
    shipment_id: str,
    session: Session = Depends(get_current_session),
    service: ShipmentService = Depends(get_shipment_service),
):
    return await service.get_shipment(shipment_id)


@router.post("/{shipment_id}/offers", response_model=Shipment)
async def propose_offer(
    shipment_id: str,
    req: ProposeOfferRequest,
    session: Session = Depends(get_current_session),
    service: ShipmentService = Depends(get_shipment_service),
):
    """기사 오퍼/역제안"""
    if session.role != UserRole.COURIER:
        raise Unauthorized("Apenas entregadores podem ofertar", shipment_id=shipment_id)
    return await service.apply(shipment_id, _event(
        TransitionKind.PROPOSE_OFFER, session,
        price=req.price, courier_name=req.courier_name, message=req.message,
    ))


@router.post("/{shipment_id}/offers/accept", response_model=Shipment)
async def accept_offer(
    shipment_id: str,
    session: Session = Depends(get_current_session),
    service: ShipmentService = Depends(get_shipment_service),
):
    return await service.apply(shipment_id, _event(TransitionKind.ACCEPT_OFFER, session))


@router.post("/{shipment_id}/offers/reject", response_model=Shipment)
async def reject_offer(
    shipment_id: str,
    session: Session = Depends(get_current_session),
    service: ShipmentService = Depends(get_shipment_service),
):
    return await service.apply(shipment_id, _event(TransitionKind.REJECT_OFFER, session))


@router.post("/{shipment_id}/abandon", response_model=Shipment)
async def abandon_shipment(
    shipment_id: str,
    req: ReasonRequest,
    session: Session = Depends(get_current_session),
    service: ShipmentService = Depends(get_shipment_service),
):
    """기사 포기 — 이후 이 기사에게는 노출되지 않음"""
    if session.role != UserRole.COURIER:
        raise Unauthorized("Apenas entregadores podem abandonar", shipment_id=shipment_id)
    return await service.abandon(shipment_id, session.user_id, reason=req.reason)


@router.post("/{shipment_id}/decline", response_model=Shipment)
async def decline_shipment(
    shipment_id: str,
    session: Session = Depends(get_current_session),
    service: ShipmentService = Depends(get_shipment_service),
):
    if session.role != UserRole.COURIER:
        raise Unauthorized("Apenas entregadores podem recusar", shipment_id=shipment_id)
    return await service.decline(shipment_id, session.user_id)


@router.post("/{shipment_id}/cancel", response_model=Shipment)
async def cancel_shipment(
    shipment_id: str,
    req: ReasonRequest,
    session: Session = Depends(get_current_session),
    service: ShipmentService = Depends(get_shipment_service),
):
    return await service.apply(shipment_id, _event(TransitionKind.CANCEL, session, reason=req.reason))


@router.post("/{shipment_id}/transitions", response_model=Shipment)
async def apply_transition(
    shipment_id: str,
    req: TransitionRequest,
    session: Session = Depends(get_current_session),
    service: ShipmentService = Depends(get_shipment_service),
):
    """범용 전이 (결제, 배차, 배정, 운행 진행 등)"""
    if req.kind in ADMIN_ONLY_KINDS and session.role != UserRole.ADMIN:
        raise Unauthorized("Transição reservada ao sistema", shipment_id=shipment_id)
    if req.kind == TransitionKind.ABANDON:
        if session.role != UserRole.COURIER:
            raise Unauthorized("Apenas entregadores podem abandonar", shipment_id=shipment_id)
        return await service.abandon(shipment_id, session.user_id, reason=req.reason)
    return await service.apply(shipment_id, _event(
        req.kind, session,
        price=req.price,
        courier_name=req.courier_name,
        message=req.message,
        reason=req.reason,
        eta_min=req.eta_min,
    ))
