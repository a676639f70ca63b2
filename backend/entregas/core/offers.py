"""
오퍼 원장 — 배송 위에 얹힌 가격 협상 프로토콜.

- 한 번에 활성 오퍼(currentOffer)는 하나뿐
- 새 제안은 이전 제안을 대체하지만 삭제하지 않는다 (offers에 감사용으로 누적)
- 모든 함수는 입력을 바꾸지 않고 새 Shipment를 반환한다
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from entregas.core.abandonment import is_excluded_for
from entregas.core.errors import (
    InvalidOffer, InvalidTransition, OfferExpired, ShipmentNotNegotiable, Unauthorized,
)
from entregas.core.states import NEGOTIABLE_STATES, ShipmentState, ensure_transition
from entregas.core.timeline import append_event, move_to, utcnow
from entregas.schemas.shipment import CourierOffer, Shipment


@dataclass(frozen=True)
class NegotiationPolicy:
    """협상 파라미터 (Settings에서 주입)"""
    offer_ttl: timedelta = timedelta(hours=24)
    rejection_cancel_threshold: int = 3

    @classmethod
    def from_settings(cls, settings) -> "NegotiationPolicy":
        return cls(
            offer_ttl=timedelta(seconds=settings.OFFER_TTL_SECONDS),
            rejection_cancel_threshold=settings.REJECTION_CANCEL_THRESHOLD,
        )


def _ensure_client(shipment: Shipment, actor_id: str, action: str):
    if shipment.cliente_uid != actor_id:
        raise Unauthorized(
            f"Apenas o cliente pode {action} a oferta",
            shipment_id=shipment.id,
        )


def propose_offer(shipment: Shipment, courier_id: str, courier_name: str, price: float,
                  message: str | None = None, ttl: timedelta = timedelta(hours=24),
                  now: datetime | None = None) -> Shipment:
    """
    기사 오퍼 제안.
    첫 제안이면 OFFERED, 이전 제안 이력이 있으면 COUNTER_OFFER.
    """
    now = now or utcnow()
    if shipment.state not in NEGOTIABLE_STATES:
        raise ShipmentNotNegotiable(
            f"Envio não aceita ofertas no estado {shipment.state.value}",
            shipment_id=shipment.id,
        )
    if price <= 0:
        raise InvalidOffer("O valor da oferta deve ser maior que zero", shipment_id=shipment.id)
    if courier_id == shipment.cliente_uid:
        raise Unauthorized("O cliente não pode ofertar no próprio envio", shipment_id=shipment.id)
    if is_excluded_for(shipment, courier_id):
        raise Unauthorized("Entregador abandonou este envio anteriormente", shipment_id=shipment.id)

    offer = CourierOffer(
        courier_uid=courier_id,
        courier_name=courier_name,
        offered_price=round(price, 2),
        message=message,
        created_at=now,
        expires_at=now + ttl,
    )

    updated = shipment.model_copy(deep=True)
    target = ShipmentState.OFFERED if not updated.offers else ShipmentState.COUNTER_OFFER
    updated.offers.append(offer)
    updated.current_offer = offer
    updated.notification_count += 1
    updated.last_notification_at = now

    descricao = f"Entregador fez contra-oferta de R$ {offer.offered_price:.2f}"
    payload = {
        "courierUid": courier_id,
        "courierName": courier_name,
        "offeredPrice": offer.offered_price,
        "message": message,
    }
    if updated.state == target:
        # COUNTER_OFFER 유지 — 상태 전이 없이 기록만
        append_event(updated, target.value, descricao, now, payload=payload)
    else:
        move_to(updated, target, now, descricao=descricao, payload=payload)
    return updated


def accept_offer(shipment: Shipment, actor_id: str, now: datetime | None = None) -> Shipment:
    """고객이 현재 오퍼를 수락 — 기사 바인딩"""
    now = now or utcnow()
    _ensure_client(shipment, actor_id, "aceitar")
    ensure_transition(shipment.state, ShipmentState.ACCEPTED_OFFER, shipment_id=shipment.id)

    offer = shipment.current_offer
    if offer is None:
        raise InvalidTransition("Não há oferta ativa para aceitar", shipment_id=shipment.id)
    if is_excluded_for(shipment, offer.courier_uid):
        raise Unauthorized("Entregador abandonou este envio anteriormente", shipment_id=shipment.id)
    if offer.is_expired(now):
        raise OfferExpired("A oferta expirou", shipment_id=shipment.id)

    updated = shipment.model_copy(deep=True)
    updated.courier_uid = offer.courier_uid
    move_to(
        updated, ShipmentState.ACCEPTED_OFFER, now,
        descricao=f"Cliente aceitou a oferta de R$ {offer.offered_price:.2f}",
        payload={"courierUid": offer.courier_uid, "offeredPrice": offer.offered_price},
    )
    return updated


def reject_offer(shipment: Shipment, actor_id: str, threshold: int = 3,
                 now: datetime | None = None) -> Shipment:
    """
    고객이 현재 오퍼를 거절.
    누적 거절 수가 threshold를 초과하면 CANCELLED, 아니면 CREATED로 재오픈.
    """
    now = now or utcnow()
    _ensure_client(shipment, actor_id, "recusar")
    if shipment.current_offer is None or shipment.state not in (
        ShipmentState.OFFERED, ShipmentState.COUNTER_OFFER,
    ):
        raise InvalidTransition("Não há oferta ativa para recusar", shipment_id=shipment.id)

    updated = shipment.model_copy(deep=True)
    rejected = updated.current_offer
    updated.rejection_count += 1
    updated.current_offer = None

    payload = {
        "courierUid": rejected.courier_uid,
        "offeredPrice": rejected.offered_price,
        "rejectionCount": updated.rejection_count,
    }
    if updated.rejection_count > threshold:
        move_to(
            updated, ShipmentState.CANCELLED, now,
            descricao=f"Envio cancelado após {updated.rejection_count} recusas",
            payload=payload,
        )
    else:
        move_to(
            updated, ShipmentState.CREATED, now,
            descricao=f"Cliente recusou a oferta pela {updated.rejection_count}ª vez",
            payload=payload,
        )
    return updated


def expire_offer(shipment: Shipment, now: datetime | None = None) -> Shipment:
    """만료된 currentOffer 정리 — 스케줄러 또는 수락 실패 시 호출"""
    now = now or utcnow()
    offer = shipment.current_offer
    if offer is None:
        raise InvalidTransition("Não há oferta para expirar", shipment_id=shipment.id)
    if shipment.state == ShipmentState.ACCEPTED_OFFER:
        raise InvalidTransition("Oferta já aceita", shipment_id=shipment.id)
    if not offer.is_expired(now):
        raise InvalidTransition("Oferta ainda válida", shipment_id=shipment.id)

    updated = shipment.model_copy(deep=True)
    updated.current_offer = None
    payload = {"courierUid": offer.courier_uid, "reason": "offer_expired"}
    descricao = "Oferta expirada, envio reaberto"
    if updated.state == ShipmentState.CREATED:
        append_event(updated, ShipmentState.CREATED.value, descricao, now, payload=payload)
    else:
        move_to(updated, ShipmentState.CREATED, now, descricao=descricao, payload=payload)
    return updated


def has_expired_offer(shipment: Shipment, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return (
        shipment.current_offer is not None
        and shipment.state in (ShipmentState.OFFERED, ShipmentState.COUNTER_OFFER)
        and shipment.current_offer.is_expired(now)
    )
