"""
애플리케이션 설정
- DB, Redis, 오퍼 협상/알림/재시도 관련 설정을 관리한다.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # 데이터베이스 (문서 저장소)
    DATABASE_URL: str = "sqlite:///entregas.db"

    # Redis (없으면 인메모리 큐로 fallback)
    REDIS_URL: str = "redis://localhost:6379"

    # CORS
    CORS_ORIGINS: list[str] = ["*"]

    # 오퍼 유효 시간 (초) — 기본 24시간
    OFFER_TTL_SECONDS: int = 24 * 60 * 60

    # 고객 거절 누적 횟수가 이 값을 초과하면 자동 취소
    REJECTION_CANCEL_THRESHOLD: int = 3

    # 배송 건당 최대 알림 횟수 / 알림 간 최소 간격 (초)
    NOTIFICATION_MAX_PER_SHIPMENT: int = 3
    NOTIFICATION_COOLDOWN_SECONDS: float = 30.0

    # 만료 오퍼 정리 주기 (초)
    OFFER_EXPIRY_INTERVAL_SECONDS: float = 60.0

    # 저장소 충돌/장애 재시도
    STORE_MAX_RETRIES: int = 3
    STORE_RETRY_BACKOFF_SECONDS: float = 0.2

    # 기사가 포기한 배송을 즉시 CREATED로 재오픈할지 여부
    AUTO_REOPEN_ABANDONED: bool = True

    # 위치 조회 실패 시 기본 도시
    DEFAULT_CITY: str = "São Paulo"
    DEFAULT_CURRENCY: str = "BRL"

    # 세션 유효 시간 (초) — 기본 7일
    SESSION_TTL_SECONDS: int = 7 * 24 * 60 * 60

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
