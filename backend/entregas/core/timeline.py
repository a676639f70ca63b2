"""
타임라인/상태 변경 공통 헬퍼.
오퍼 원장, 포기 추적기, 전이 엔진이 모두 이 함수들을 통해서만 상태를 바꾼다.
작업 대상은 항상 호출자가 만든 복사본이다.
"""

from datetime import datetime, timezone

from entregas.core.states import ShipmentState, describe, ensure_transition, is_terminal
from entregas.core.errors import InvalidTransition
from entregas.schemas.shipment import Shipment, TimelineEvent


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def append_event(shipment: Shipment, tipo: str, descricao: str, now: datetime,
                 payload: dict | None = None) -> TimelineEvent:
    """타임라인 끝에 이벤트 추가 (기존 이벤트는 건드리지 않음)"""
    event = TimelineEvent(tipo=tipo, timestamp=now, descricao=descricao, payload=payload)
    shipment.timeline.append(event)
    shipment.updated_at = now
    return event


def ensure_not_terminal(shipment: Shipment):
    if is_terminal(shipment.state):
        raise InvalidTransition(
            f"Envio já finalizado ({shipment.state.value})",
            shipment_id=shipment.id,
        )


def move_to(shipment: Shipment, target: ShipmentState, now: datetime,
            descricao: str | None = None, payload: dict | None = None,
            tipo: str | None = None) -> Shipment:
    """간선 검증 후 상태 변경 + 타임라인 기록"""
    ensure_transition(shipment.state, target, shipment_id=shipment.id)
    previous = shipment.state
    shipment.state = ShipmentState(target)
    append_event(
        shipment,
        tipo=tipo or shipment.state.value,
        descricao=descricao or describe(shipment.state),
        now=now,
        payload={"from": previous.value, **(payload or {})},
    )
    return shipment
