"""
문서 저장소 패키지
- DocumentStore 인터페이스, SQLAlchemy 구현체
- ChangeFeed: 쿼리 구독을 명시적 채널(Subscription)로 제공
"""

from entregas.store.base import DocumentStore
from entregas.store.change_feed import (
    ChangeEvent, ChangeFeed, ChangeType, Subscription, field_equals, state_in,
)
from entregas.store.sql_store import SqlDocumentStore

__all__ = [
    "DocumentStore",
    "ChangeEvent",
    "ChangeFeed",
    "ChangeType",
    "Subscription",
    "field_equals",
    "state_in",
    "SqlDocumentStore",
]
