"""
기사 포기 추적기.

포기 이벤트(COURIER_ABANDONED, payload.courierUid)는 타임라인에 영구히 남고,
해당 기사에게는 그 배송이 다시 노출되지 않는다. 다른 기사에게는 그대로 보인다.
"""

from datetime import datetime

from entregas.core.states import ShipmentState
from entregas.core.timeline import append_event, ensure_not_terminal, move_to, utcnow
from entregas.schemas.shipment import Shipment

ABANDONED_EVENT = ShipmentState.COURIER_ABANDONED.value


def is_excluded_for(shipment: Shipment, courier_id: str) -> bool:
    """해당 기사가 이 배송을 한 번이라도 포기했으면 True (재오픈 여부와 무관)"""
    return any(
        event.tipo == ABANDONED_EVENT
        and (event.payload or {}).get("courierUid") == courier_id
        for event in shipment.timeline
    )


def excluded_couriers(shipment: Shipment) -> set[str]:
    return {
        event.payload["courierUid"]
        for event in shipment.timeline
        if event.tipo == ABANDONED_EVENT and (event.payload or {}).get("courierUid")
    }


def record_abandonment(shipment: Shipment, courier_id: str, reason: str | None = None,
                       now: datetime | None = None) -> Shipment:
    """
    기사 포기 기록.
    - 배정된 기사 본인이면 상태를 COURIER_ABANDONED로 바꾸고 courierUid를 해제
    - 입찰 단계에서 본인의 활성 오퍼가 걸려 있으면 오퍼를 내리고 CREATED로 되돌린다
    - 그 외 입찰 단계의 포기는 상태 변경 없이 제외 기록만 남긴다
    """
    now = now or utcnow()
    updated = shipment.model_copy(deep=True)
    ensure_not_terminal(updated)

    payload = {"courierUid": courier_id, "reason": reason}
    descricao = "Entregador abandonou a corrida"
    if reason:
        descricao = f"{descricao}. Motivo: {reason}"

    if updated.courier_uid == courier_id:
        move_to(
            updated, ShipmentState.COURIER_ABANDONED, now,
            descricao=descricao, payload=payload, tipo=ABANDONED_EVENT,
        )
        updated.courier_uid = None
        updated.eta_min = None
    elif updated.current_offer and updated.current_offer.courier_uid == courier_id:
        updated.current_offer = None
        move_to(
            updated, ShipmentState.CREATED, now,
            descricao=descricao, payload=payload, tipo=ABANDONED_EVENT,
        )
    else:
        append_event(updated, ABANDONED_EVENT, descricao, now, payload=payload)

    return updated


def reopen_shipment(shipment: Shipment, now: datetime | None = None) -> Shipment:
    """COURIER_ABANDONED → CREATED, 다시 기사 풀에 노출"""
    now = now or utcnow()
    updated = shipment.model_copy(deep=True)
    move_to(updated, ShipmentState.CREATED, now, descricao="Envio reaberto para entregadores")
    updated.current_offer = None
    return updated
