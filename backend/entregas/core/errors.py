"""
배송 도메인 예외
- 모두 복구 가능한 오류이며 호출자(UI/API)에게 그대로 전달된다.
- status_code는 API 계층에서 HTTP 응답 코드로 사용한다.
"""


class ShipmentError(Exception):
    """배송 도메인 예외 베이스"""

    code = "SHIPMENT_ERROR"
    status_code = 400

    def __init__(self, message: str, shipment_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.shipment_id = shipment_id

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "shipment_id": self.shipment_id,
        }


class InvalidTransition(ShipmentError):
    """허용되지 않은 상태 전이"""

    code = "INVALID_TRANSITION"
    status_code = 409


class Unauthorized(ShipmentError):
    """행위자가 해당 액션 권한이 없음"""

    code = "UNAUTHORIZED"
    status_code = 403


class OfferExpired(ShipmentError):
    """현재 오퍼가 만료됨 — 서비스 계층이 expire_offer를 자동 실행한다"""

    code = "OFFER_EXPIRED"
    status_code = 410


class ShipmentNotNegotiable(ShipmentError):
    """협상 불가 상태에서 오퍼 제안"""

    code = "SHIPMENT_NOT_NEGOTIABLE"
    status_code = 409


class InvalidOffer(ShipmentError):
    """오퍼 내용 자체가 잘못됨 (가격 <= 0 등)"""

    code = "INVALID_OFFER"
    status_code = 422


class NotFound(ShipmentError):
    """참조한 배송 문서가 없음"""

    code = "NOT_FOUND"
    status_code = 404


class StoreUnavailable(ShipmentError):
    """저장소(네트워크/백엔드) 장애 — 재시도 대상"""

    code = "STORE_UNAVAILABLE"
    status_code = 503


class ConcurrencyConflict(ShipmentError):
    """조건부 쓰기 실패 — 다른 행위자가 먼저 문서를 갱신함"""

    code = "CONCURRENCY_CONFLICT"
    status_code = 409
