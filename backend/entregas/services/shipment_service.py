"""
배송 서비스 — 전이 엔진과 문서 저장소를 잇는 명령/조회 계층.

모든 상태 변경은 apply()를 거친다:
  읽기 → apply_transition (순수 함수) → version 조건부 쓰기
  - ConcurrencyConflict: 다시 읽고 재시도 (STORE_MAX_RETRIES)
  - StoreUnavailable: 지수 백오프 후 재시도, 마지막 실패는 그대로 전파
  - 도메인 오류(InvalidTransition 등)는 재시도하지 않고 전파
변경이 저장되면 AsyncEventBus에 shipments.* 이벤트를 발행한다.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable

from pydantic import ValidationError

from entregas.core.abandonment import is_excluded_for
from entregas.core.engine import TransitionEvent, TransitionKind, apply_transition
from entregas.core.errors import (
    ConcurrencyConflict, InvalidTransition, NotFound, OfferExpired, StoreUnavailable, Unauthorized,
)
from entregas.core.offers import NegotiationPolicy, has_expired_offer
from entregas.core.states import ShipmentState
from entregas.core.timeline import append_event, utcnow
from entregas.schemas.shipment import LocationPoint, PackageInfo, Shipment
from entregas.services.identity import Session, UserRole
from entregas.services.location import LocationProvider, city_from_address, resolve_city
from entregas.services.pricing import build_quote
from entregas.store.base import DocumentStore
from entregas.store.change_feed import field_equals, state_in

logger = logging.getLogger(__name__)

COLLECTION = "shipments"

SYSTEM_ACTOR = "system"


def shipment_from_document(document: dict) -> Shipment:
    """저장소 문서(id/version 포함) → Shipment. 스키마 불일치는 ValidationError"""
    return Shipment.from_document(document["id"], document, version=document.get("version", 0))


class ShipmentService:
    """배송 명령/조회 서비스"""

    def __init__(self, store: DocumentStore, policy: NegotiationPolicy | None = None,
                 event_bus=None, max_retries: int = 3, retry_backoff: float = 0.2,
                 location: LocationProvider | None = None, auto_reopen: bool = True,
                 default_city: str = "São Paulo", currency: str = "BRL"):
        self.store = store
        self.policy = policy or NegotiationPolicy()
        self.event_bus = event_bus
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.location = location
        self.auto_reopen = auto_reopen
        self.default_city = default_city
        self.currency = currency

    @classmethod
    def from_settings(cls, store: DocumentStore, settings, event_bus=None,
                      location: LocationProvider | None = None) -> "ShipmentService":
        return cls(
            store,
            policy=NegotiationPolicy.from_settings(settings),
            event_bus=event_bus,
            max_retries=settings.STORE_MAX_RETRIES,
            retry_backoff=settings.STORE_RETRY_BACKOFF_SECONDS,
            location=location,
            auto_reopen=settings.AUTO_REOPEN_ABANDONED,
            default_city=settings.DEFAULT_CITY,
            currency=settings.DEFAULT_CURRENCY,
        )

    async def _publish(self, topic: str, data: dict):
        if self.event_bus:
            await self.event_bus.publish(topic, data)

    # ── 생성 ──────────────────────────────────────────────

    async def create_shipment(self, session: Session, pickup: LocationPoint, dropoff: LocationPoint,
                              pacote: PackageInfo, cliente_name: str = "",
                              cliente_phone: str = "", now: datetime | None = None) -> Shipment:
        """고객 배송 요청 생성 — 견적 계산, 도시 결정, CREATED 타임라인 기록"""
        if session.role != UserRole.CLIENTE:
            raise Unauthorized("Apenas clientes podem criar envios")

        now = now or utcnow()
        city = city_from_address(pickup.endereco) or await resolve_city(self.location, self.default_city)
        shipment = Shipment(
            cliente_uid=session.user_id,
            cliente_name=cliente_name,
            cliente_phone=cliente_phone,
            pickup=pickup,
            dropoff=dropoff,
            pacote=pacote,
            quote=build_quote(pickup, dropoff, pacote, currency=self.currency),
            city=city,
            created_at=now,
            updated_at=now,
        )
        append_event(
            shipment, ShipmentState.CREATED.value, "Envio criado", now,
            payload={"pickup": pickup.endereco, "dropoff": dropoff.endereco},
        )

        shipment_id = await self.store.create_document(COLLECTION, shipment.to_document())
        created = shipment.model_copy(update={"id": shipment_id, "version": 1})
        logger.info(
            f"배송 생성: {shipment_id} (cliente={session.user_id}, city={city}, "
            f"R$ {created.quote.preco:.2f})"
        )
        await self._publish("shipments.created", {
            "shipment_id": shipment_id,
            "cliente_uid": session.user_id,
            "city": city,
            "preco": created.quote.preco,
        })
        return created

    # ── 조회 ──────────────────────────────────────────────

    async def get_shipment(self, shipment_id: str) -> Shipment:
        document = await self.store.get_document(COLLECTION, shipment_id)
        if document is None:
            raise NotFound("Envio não encontrado", shipment_id=shipment_id)
        return shipment_from_document(document)

    async def _query(self, predicate) -> list[Shipment]:
        shipments = []
        for document in await self.store.query_where(COLLECTION, predicate):
            try:
                shipments.append(shipment_from_document(document))
            except ValidationError as e:
                logger.error(f"잘못된 배송 문서 무시 ({document.get('id')}): {e}")
        return shipments

    async def list_client_shipments(self, cliente_uid: str) -> list[Shipment]:
        """고객 배송 목록 (최신순)"""
        shipments = await self._query(field_equals("clienteUid", cliente_uid))
        return sorted(shipments, key=lambda s: s.created_at, reverse=True)

    async def list_courier_shipments(self, courier_uid: str) -> list[Shipment]:
        """기사에게 배정된 배송 목록 (최근 변경순)"""
        shipments = await self._query(field_equals("courierUid", courier_uid))
        return sorted(shipments, key=lambda s: s.updated_at, reverse=True)

    async def list_available_for_courier(self, courier_uid: str,
                                         city: str | None = None) -> list[Shipment]:
        """기사가 오퍼를 낼 수 있는 배송 (오래된 순, 포기한 배송 제외)"""
        shipments = await self._query(state_in([ShipmentState.CREATED]))
        available = [
            s for s in shipments
            if s.cliente_uid != courier_uid
            and not is_excluded_for(s, courier_uid)
            and (city is None or s.city is None or s.city == city)
        ]
        return sorted(available, key=lambda s: s.created_at)

    # ── 변경 ──────────────────────────────────────────────

    async def _mutate(self, shipment_id: str,
                      change: Callable[[Shipment], Shipment]) -> tuple[Shipment, Shipment]:
        """읽기 → 변경 → 조건부 쓰기 (충돌/장애 시 재시도). (이전, 저장된) 반환"""
        attempt = 0
        while True:
            current = await self.get_shipment(shipment_id)
            updated = change(current)
            try:
                version = await self.store.update_document(
                    COLLECTION, shipment_id, updated.to_document(),
                    expected_version=current.version,
                )
            except ConcurrencyConflict:
                attempt += 1
                if attempt > self.max_retries:
                    logger.error(f"버전 충돌 재시도 초과 ({shipment_id})")
                    raise
                logger.info(f"버전 충돌 — 재시도 {attempt}/{self.max_retries} ({shipment_id})")
                continue
            except StoreUnavailable:
                attempt += 1
                if attempt > self.max_retries:
                    raise
                delay = self.retry_backoff * (2 ** (attempt - 1))
                logger.warning(
                    f"저장소 쓰기 실패 — {delay:.2f}초 후 재시도 {attempt}/{self.max_retries} ({shipment_id})"
                )
                await asyncio.sleep(delay)
                continue
            return current, updated.model_copy(update={"version": version})

    async def apply(self, shipment_id: str, event: TransitionEvent,
                    now: datetime | None = None) -> Shipment:
        """전이 이벤트 적용 후 저장된 배송 반환"""
        try:
            before, after = await self._mutate(
                shipment_id,
                lambda s: apply_transition(s, event, now=now, policy=self.policy),
            )
        except OfferExpired:
            if TransitionKind(event.kind) == TransitionKind.ACCEPT_OFFER:
                await self._expire_after_failed_accept(shipment_id, now)
            raise

        logger.info(
            f"배송 전이: {shipment_id} {TransitionKind(event.kind).value} "
            f"{before.state.value} → {after.state.value}"
        )
        await self._publish_transition(before, after, event)
        return after

    async def _expire_after_failed_accept(self, shipment_id: str, now: datetime | None):
        """만료된 오퍼 수락 시도 — 자동 되돌림을 저장 (이미 처리됐으면 무시)"""
        try:
            await self.apply(shipment_id, self._system_event(TransitionKind.EXPIRE_OFFER), now=now)
        except InvalidTransition as e:
            logger.info(f"오퍼 만료 처리 생략 ({shipment_id}): {e.message}")

    async def _publish_transition(self, before: Shipment, after: Shipment, event: TransitionEvent):
        kind = TransitionKind(event.kind)
        if kind == TransitionKind.PROPOSE_OFFER and after.current_offer:
            await self._publish("shipments.offer_proposed", {
                "shipment_id": after.id,
                "cliente_uid": after.cliente_uid,
                "courier_uid": after.current_offer.courier_uid,
                "offered_price": after.current_offer.offered_price,
                "offer_count": len(after.offers),
            })
        if before.state != after.state:
            await self._publish("shipments.state_changed", {
                "shipment_id": after.id,
                "kind": kind.value,
                "from_state": before.state.value,
                "to_state": after.state.value,
                "actor_id": event.actor_id,
                "cliente_uid": after.cliente_uid,
                "courier_uid": after.courier_uid,
            })

    @staticmethod
    def _system_event(kind: TransitionKind, **kwargs) -> TransitionEvent:
        return TransitionEvent(kind=kind, actor_id=SYSTEM_ACTOR, actor_role="system", **kwargs)

    async def abandon(self, shipment_id: str, courier_uid: str, reason: str | None = None,
                      now: datetime | None = None) -> Shipment:
        """기사 포기 — 배정 상태였다면 설정에 따라 바로 CREATED로 재오픈"""
        shipment = await self.apply(
            shipment_id,
            TransitionEvent(kind=TransitionKind.ABANDON, actor_id=courier_uid,
                            actor_role=UserRole.COURIER.value, reason=reason),
            now=now,
        )
        if self.auto_reopen and shipment.state == ShipmentState.COURIER_ABANDONED:
            shipment = await self.apply(shipment_id, self._system_event(TransitionKind.REOPEN), now=now)
        return shipment

    async def decline(self, shipment_id: str, courier_uid: str,
                      now: datetime | None = None) -> Shipment:
        """기사가 알림받은 배송을 거절 — 상태 변경 없이 타임라인 기록만"""
        now = now or utcnow()

        def change(shipment: Shipment) -> Shipment:
            updated = shipment.model_copy(deep=True)
            append_event(
                updated, "REJECTED_BY_COURIER", "Entregador recusou a entrega", now,
                payload={"courierUid": courier_uid},
            )
            return updated

        _, saved = await self._mutate(shipment_id, change)
        return saved

    async def record_notification(self, shipment_id: str, now: datetime | None = None) -> Shipment:
        """알림 발송 카운터 증가 (상태/타임라인 변경 없음)"""
        now = now or utcnow()

        def change(shipment: Shipment) -> Shipment:
            return shipment.model_copy(update={
                "notification_count": shipment.notification_count + 1,
                "last_notification_at": now,
            })

        _, saved = await self._mutate(shipment_id, change)
        return saved

    async def expire_stale_offers(self, now: datetime | None = None) -> list[str]:
        """만료된 currentOffer를 가진 배송을 CREATED로 되돌린다. 처리된 id 목록 반환"""
        now = now or utcnow()
        candidates = await self._query(state_in([ShipmentState.OFFERED, ShipmentState.COUNTER_OFFER]))
        expired = []
        for shipment in candidates:
            if not has_expired_offer(shipment, now):
                continue
            try:
                await self.apply(shipment.id, self._system_event(TransitionKind.EXPIRE_OFFER), now=now)
                expired.append(shipment.id)
            except InvalidTransition as e:
                # 다른 요청이 먼저 수락/거절한 경우
                logger.info(f"오퍼 만료 건너뜀 ({shipment.id}): {e.message}")
        if expired:
            logger.info(f"만료 오퍼 정리: {len(expired)}건")
        return expired
