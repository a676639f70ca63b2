"""
전이 엔진 — 배송 상태 변경의 단일 진입점.

apply_transition(shipment, event)는 (이전 배송, 이벤트)에 대한 순수 함수다.
  1. 상태 분류로 간선 검증
  2. 오퍼 원장 / 포기 추적기 부수효과 적용
  3. 타임라인 이벤트 추가
  4. updatedAt 갱신
  5. 새 Shipment 반환 (입력은 변경하지 않음)
검증 오류(InvalidTransition, Unauthorized, OfferExpired ...)는 잡지 않고 그대로 전파한다.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime

from entregas.core import abandonment, offers
from entregas.core.abandonment import is_excluded_for
from entregas.core.errors import InvalidOffer, Unauthorized
from entregas.core.offers import NegotiationPolicy
from entregas.core.states import ShipmentState
from entregas.core.timeline import ensure_not_terminal, move_to, utcnow
from entregas.schemas.shipment import Shipment

logger = logging.getLogger(__name__)


class TransitionKind(str, enum.Enum):
    PRICE = "PRICE"
    REQUEST_PAYMENT = "REQUEST_PAYMENT"
    PROPOSE_OFFER = "PROPOSE_OFFER"
    ACCEPT_OFFER = "ACCEPT_OFFER"
    REJECT_OFFER = "REJECT_OFFER"
    EXPIRE_OFFER = "EXPIRE_OFFER"
    CONFIRM_PAYMENT = "CONFIRM_PAYMENT"
    DISPATCH = "DISPATCH"
    ASSIGN = "ASSIGN"
    ARRIVE_PICKUP = "ARRIVE_PICKUP"
    PICK_UP = "PICK_UP"
    START_ROUTE = "START_ROUTE"
    ARRIVE_DROPOFF = "ARRIVE_DROPOFF"
    DELIVER = "DELIVER"
    ABANDON = "ABANDON"
    REOPEN = "REOPEN"
    CANCEL = "CANCEL"


K = TransitionKind

# 고객 본인만 실행 가능한 단순 전이
CLIENT_TRANSITIONS = {
    K.PRICE: ShipmentState.PRICED,
    K.REQUEST_PAYMENT: ShipmentState.PAYMENT_PENDING,
    K.CONFIRM_PAYMENT: ShipmentState.PAID,
}

# 배정된 기사만 실행 가능한 선형 진행
COURIER_PROGRESS = {
    K.ARRIVE_PICKUP: ShipmentState.ARRIVED_PICKUP,
    K.PICK_UP: ShipmentState.PICKED_UP,
    K.START_ROUTE: ShipmentState.EN_ROUTE,
    K.ARRIVE_DROPOFF: ShipmentState.ARRIVED_DROPOFF,
    K.DELIVER: ShipmentState.DELIVERED,
}

# 특정 사용자가 아닌 시스템 행위자 역할
PRIVILEGED_ROLES = {"admin", "system"}

# 기사 전용 이벤트
COURIER_ROLE = "courier"
COURIER_KINDS = {K.PROPOSE_OFFER, K.ASSIGN, K.ABANDON, *COURIER_PROGRESS}


@dataclass(frozen=True)
class TransitionEvent:
    """전이 요청 — 행위자와 이벤트별 인자"""
    kind: TransitionKind
    actor_id: str
    actor_role: str | None = None
    courier_name: str | None = None
    price: float | None = None
    message: str | None = None
    reason: str | None = None
    eta_min: int | None = None


def _is_privileged(event: TransitionEvent) -> bool:
    return event.actor_role in PRIVILEGED_ROLES


def _ensure_client_or_privileged(shipment: Shipment, event: TransitionEvent):
    if shipment.cliente_uid != event.actor_id and not _is_privileged(event):
        raise Unauthorized("Ação permitida apenas ao cliente", shipment_id=shipment.id)


def _ensure_courier(shipment: Shipment, event: TransitionEvent):
    if event.actor_role != COURIER_ROLE:
        raise Unauthorized("Ação permitida apenas a entregadores", shipment_id=shipment.id)


def _ensure_assigned_courier(shipment: Shipment, event: TransitionEvent):
    if not shipment.courier_uid or shipment.courier_uid != event.actor_id:
        raise Unauthorized("Ação permitida apenas ao entregador atribuído", shipment_id=shipment.id)


def _assign(shipment: Shipment, event: TransitionEvent, now: datetime) -> Shipment:
    """DISPATCHING → ASSIGNED. 오퍼 수락으로 이미 바인딩된 기사가 있으면 그 기사만 가능"""
    if event.actor_id == shipment.cliente_uid:
        raise Unauthorized("O cliente não pode assumir o próprio envio", shipment_id=shipment.id)
    if shipment.courier_uid and shipment.courier_uid != event.actor_id:
        raise Unauthorized("Envio reservado para outro entregador", shipment_id=shipment.id)
    if is_excluded_for(shipment, event.actor_id):
        raise Unauthorized("Entregador abandonou este envio anteriormente", shipment_id=shipment.id)

    updated = shipment.model_copy(deep=True)
    move_to(
        updated, ShipmentState.ASSIGNED, now,
        payload={"courierUid": event.actor_id, "courierName": event.courier_name},
    )
    updated.courier_uid = event.actor_id
    if event.eta_min is not None:
        updated.eta_min = event.eta_min
    return updated


def _simple(shipment: Shipment, target: ShipmentState, now: datetime,
            payload: dict | None = None, descricao: str | None = None) -> Shipment:
    updated = shipment.model_copy(deep=True)
    return move_to(updated, target, now, descricao=descricao, payload=payload)


def apply_transition(shipment: Shipment, event: TransitionEvent, now: datetime | None = None,
                     policy: NegotiationPolicy | None = None) -> Shipment:
    """이벤트를 검증/적용하고 새 Shipment 반환"""
    now = now or utcnow()
    policy = policy or NegotiationPolicy()
    kind = TransitionKind(event.kind)

    # 종료 상태는 어떤 이벤트도 받지 않는다
    ensure_not_terminal(shipment)
    if kind in COURIER_KINDS:
        _ensure_courier(shipment, event)

    if kind in CLIENT_TRANSITIONS:
        if shipment.cliente_uid != event.actor_id:
            raise Unauthorized("Ação permitida apenas ao cliente", shipment_id=shipment.id)
        result = _simple(shipment, CLIENT_TRANSITIONS[kind], now)

    elif kind == K.PROPOSE_OFFER:
        if event.price is None:
            raise InvalidOffer("Valor da oferta é obrigatório", shipment_id=shipment.id)
        result = offers.propose_offer(
            shipment,
            courier_id=event.actor_id,
            courier_name=event.courier_name or "Entregador",
            price=event.price,
            message=event.message,
            ttl=policy.offer_ttl,
            now=now,
        )

    elif kind == K.ACCEPT_OFFER:
        result = offers.accept_offer(shipment, event.actor_id, now=now)

    elif kind == K.REJECT_OFFER:
        result = offers.reject_offer(
            shipment, event.actor_id,
            threshold=policy.rejection_cancel_threshold, now=now,
        )

    elif kind == K.EXPIRE_OFFER:
        result = offers.expire_offer(shipment, now=now)

    elif kind == K.DISPATCH:
        _ensure_client_or_privileged(shipment, event)
        result = _simple(shipment, ShipmentState.DISPATCHING, now)

    elif kind == K.ASSIGN:
        result = _assign(shipment, event, now)

    elif kind in COURIER_PROGRESS:
        _ensure_assigned_courier(shipment, event)
        result = _simple(shipment, COURIER_PROGRESS[kind], now)

    elif kind == K.ABANDON:
        result = abandonment.record_abandonment(
            shipment, event.actor_id, reason=event.reason, now=now,
        )

    elif kind == K.REOPEN:
        result = abandonment.reopen_shipment(shipment, now=now)

    elif kind == K.CANCEL:
        _ensure_client_or_privileged(shipment, event)
        descricao = f"Envio cancelado: {event.reason}" if event.reason else None
        result = _simple(
            shipment, ShipmentState.CANCELLED, now,
            payload={"reason": event.reason, "cancelledBy": event.actor_id},
            descricao=descricao,
        )

    else:  # pragma: no cover - TransitionKind는 위에서 모두 처리
        raise ValueError(f"Unknown transition kind: {kind}")

    logger.debug(
        f"[Engine] {shipment.id}: {kind.value} "
        f"{shipment.state.value} → {result.state.value} (actor={event.actor_id})"
    )
    return result
