"""
배송 상태 분류 — 상태 목록과 허용 전이 그래프.

ALLOWED_TRANSITIONS에 없는 간선은 모두 InvalidTransition으로 거부한다.
DELIVERED / CANCELLED 는 종료 상태로 더 이상 전이가 없다.
"""

import enum

from entregas.core.errors import InvalidTransition


class ShipmentState(str, enum.Enum):
    CREATED = "CREATED"
    PRICED = "PRICED"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    PAID = "PAID"
    DISPATCHING = "DISPATCHING"
    ASSIGNED = "ASSIGNED"
    ARRIVED_PICKUP = "ARRIVED_PICKUP"
    PICKED_UP = "PICKED_UP"
    EN_ROUTE = "EN_ROUTE"
    ARRIVED_DROPOFF = "ARRIVED_DROPOFF"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    OFFERED = "OFFERED"
    COUNTER_OFFER = "COUNTER_OFFER"
    ACCEPTED_OFFER = "ACCEPTED_OFFER"
    COURIER_ABANDONED = "COURIER_ABANDONED"


S = ShipmentState

TERMINAL_STATES = frozenset({S.DELIVERED, S.CANCELLED})

# 진행 중인 배송 (종료 상태와 COURIER_ABANDONED 제외)
ACTIVE_STATES = frozenset(set(S) - TERMINAL_STATES - {S.COURIER_ABANDONED})

# 오퍼 제안이 가능한 상태
NEGOTIABLE_STATES = frozenset({S.CREATED, S.COUNTER_OFFER})

ALLOWED_TRANSITIONS: dict[ShipmentState, frozenset[ShipmentState]] = {
    S.CREATED: frozenset({
        S.PRICED, S.COUNTER_OFFER, S.OFFERED, S.ACCEPTED_OFFER,
        S.COURIER_ABANDONED, S.CANCELLED,
    }),
    S.PRICED: frozenset({S.PAYMENT_PENDING, S.CREATED, S.CANCELLED}),
    S.PAYMENT_PENDING: frozenset({S.PAID, S.CANCELLED}),
    S.OFFERED: frozenset({S.ACCEPTED_OFFER, S.CREATED, S.CANCELLED}),
    S.COUNTER_OFFER: frozenset({S.ACCEPTED_OFFER, S.CREATED, S.CANCELLED}),
    # 기사가 바인딩된 이후에는 배송 완료 전까지 언제든 포기할 수 있다
    S.ACCEPTED_OFFER: frozenset({S.PAID, S.COURIER_ABANDONED, S.CANCELLED}),
    S.PAID: frozenset({S.DISPATCHING, S.COURIER_ABANDONED, S.CANCELLED}),
    S.DISPATCHING: frozenset({S.ASSIGNED, S.COURIER_ABANDONED, S.CANCELLED}),
    S.ASSIGNED: frozenset({S.ARRIVED_PICKUP, S.COURIER_ABANDONED, S.CANCELLED}),
    S.ARRIVED_PICKUP: frozenset({S.PICKED_UP, S.COURIER_ABANDONED, S.CANCELLED}),
    S.PICKED_UP: frozenset({S.EN_ROUTE, S.COURIER_ABANDONED, S.CANCELLED}),
    S.EN_ROUTE: frozenset({S.ARRIVED_DROPOFF, S.COURIER_ABANDONED, S.CANCELLED}),
    S.ARRIVED_DROPOFF: frozenset({S.DELIVERED, S.COURIER_ABANDONED, S.CANCELLED}),
    S.COURIER_ABANDONED: frozenset({S.CREATED, S.CANCELLED}),
    S.DELIVERED: frozenset(),
    S.CANCELLED: frozenset(),
}

# 타임라인에 기록되는 상태 설명 (앱 표시용)
STATE_DESCRIPTIONS: dict[ShipmentState, str] = {
    S.CREATED: "Envio criado",
    S.PRICED: "Preço calculado",
    S.PAYMENT_PENDING: "Aguardando pagamento",
    S.PAID: "Pagamento confirmado",
    S.DISPATCHING: "Procurando entregador",
    S.ASSIGNED: "Entregador atribuído",
    S.ARRIVED_PICKUP: "Entregador chegou na coleta",
    S.PICKED_UP: "Pacote coletado",
    S.EN_ROUTE: "Em trânsito para entrega",
    S.ARRIVED_DROPOFF: "Entregador chegou na entrega",
    S.DELIVERED: "Pacote entregue",
    S.CANCELLED: "Envio cancelado",
    S.OFFERED: "Oferta recebida",
    S.COUNTER_OFFER: "Contra-oferta recebida",
    S.ACCEPTED_OFFER: "Oferta aceita",
    S.COURIER_ABANDONED: "Entregador abandonou a corrida",
}


def is_terminal(state: ShipmentState) -> bool:
    return ShipmentState(state) in TERMINAL_STATES


def is_active(state: ShipmentState) -> bool:
    return ShipmentState(state) in ACTIVE_STATES


def allowed_next(state: ShipmentState) -> frozenset[ShipmentState]:
    return ALLOWED_TRANSITIONS[ShipmentState(state)]


def can_transition(current: ShipmentState, target: ShipmentState) -> bool:
    return ShipmentState(target) in allowed_next(current)


def ensure_transition(current: ShipmentState, target: ShipmentState,
                      shipment_id: str | None = None):
    """허용되지 않은 간선이면 InvalidTransition"""
    current, target = ShipmentState(current), ShipmentState(target)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(
            f"Transição inválida: {current.value} → {target.value}",
            shipment_id=shipment_id,
        )


def describe(state: ShipmentState) -> str:
    return STATE_DESCRIPTIONS.get(ShipmentState(state), "Estado atualizado")
