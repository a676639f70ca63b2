"""
WebSocket 엔드포인트 — 실시간 이벤트 Push
클라이언트가 /ws/shipments에 연결하면 이벤트 버스의 배송 이벤트를 그대로 push:
  - shipments.created: 새 배송 요청
  - shipments.state_changed: 상태 전이
  - shipments.offer_proposed: 오퍼/역제안
  - shipments.notified: 기사 알림 발송

/ws/feed?token=... 는 연결마다 세션에 맞는 뷰어 피드를 붙여 본인 관련 변경만 push한다:
  - feed.bound: 구독 시작 (역할/사용자)
  - shipment.accepted: 기사 본인의 오퍼가 수락됨
  - shipment.offer: 고객 본인 배송에 새 오퍼 도착
"""

import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from entregas.events.event_bus import TOPICS, AsyncEventBus
from entregas.realtime.feed import ViewerFeed
from entregas.schemas.shipment import Shipment
from entregas.services.identity import SessionScope, UserRole
from entregas.services.notifications import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter()


class ConnectionManager:
    """WebSocket 연결 관리자"""

    def __init__(self):
        self.active_connections: list[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info(f"WebSocket 연결: {len(self.active_connections)}개 활성")

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        logger.info(f"WebSocket 해제: {len(self.active_connections)}개 활성")

    async def broadcast(self, message: dict):
        """모든 연결된 클라이언트에게 메시지 전송"""
        if not self.active_connections:
            return

        text = json.dumps(message, ensure_ascii=False, default=str)
        disconnected = []
        for ws in self.active_connections:
            try:
                await ws.send_text(text)
            except Exception:
                disconnected.append(ws)

        for ws in disconnected:
            self.disconnect(ws)


# 싱글턴 매니저
ws_manager = ConnectionManager()


async def broadcast_event(event_type: str, data: dict):
    """외부에서 호출 가능한 브로드캐스트 헬퍼"""
    await ws_manager.broadcast({
        "type": event_type,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": data,
    })


async def forward_bus_event(topic: str, data: dict):
    """이벤트 버스 핸들러 — 토픽명을 메시지 type으로 사용"""
    await broadcast_event(topic, data)


async def attach_event_bus(bus: AsyncEventBus):
    """main.py lifespan에서 호출 — 배송 토픽 전체를 WebSocket으로 중계"""
    for topic in TOPICS:
        await bus.subscribe(topic, forward_bus_event)


@router.websocket("/ws/shipments")
async def websocket_endpoint(websocket: WebSocket):
    """실시간 WebSocket 엔드포인트"""
    await ws_manager.connect(websocket)
    try:
        # 클라이언트 메시지 수신 루프 (핑/퐁 유지)
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket 에러: {e}")
    finally:
        ws_manager.disconnect(websocket)


def _viewer_message(event_type: str, shipment: Shipment) -> dict:
    return {
        "type": event_type,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": shipment.model_dump(mode="json", by_alias=True),
    }


@router.websocket("/ws/feed")
async def viewer_feed_endpoint(websocket: WebSocket, token: str = Query(...)):
    """세션별 뷰어 피드 — 토큰이 유효하지 않으면 accept 없이 종료"""
    state = websocket.app.state
    scope = SessionScope(state.identity, token)
    session = scope.get_session()
    if session is None:
        await websocket.close(code=4401)
        return

    await websocket.accept()

    async def send_accepted(shipment: Shipment):
        await websocket.send_json(_viewer_message("shipment.accepted", shipment))

    async def send_offer(shipment: Shipment):
        await websocket.send_json(_viewer_message("shipment.offer", shipment))

    notifier = None
    if session.role == UserRole.COURIER:
        notifier = NotificationService.from_settings(
            state.settings, shipments=state.shipment_service, event_bus=state.event_bus,
        )
    feed = ViewerFeed(
        scope, state.store,
        notifier=notifier,
        default_city=state.settings.DEFAULT_CITY,
        on_accepted=send_accepted,
        on_offer=send_offer,
    )
    await feed.start()
    logger.info(f"뷰어 피드 연결: {session.user_id} ({session.role.value})")
    try:
        await websocket.send_json({
            "type": "feed.bound",
            "data": {"user_id": session.user_id, "role": session.role.value},
        })
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"뷰어 피드 WebSocket 에러 ({session.user_id}): {e}")
    finally:
        await feed.stop()
        logger.info(f"뷰어 피드 해제: {session.user_id}")
