"""
문서 저장소 인터페이스 — 코어가 소비하는 외부 협력자 계약.
구현체: SqlDocumentStore (SQLAlchemy)
"""

from typing import Protocol

from entregas.store.change_feed import Predicate, Subscription


class DocumentStore(Protocol):
    async def create_document(self, collection: str, data: dict) -> str: ...

    async def get_document(self, collection: str, document_id: str) -> dict | None: ...

    async def update_document(self, collection: str, document_id: str, patch: dict,
                              expected_version: int | None = None) -> int: ...

    async def query_where(self, collection: str, predicate: Predicate,
                          limit: int | None = None) -> list[dict]: ...

    async def subscribe(self, collection: str, predicate: Predicate) -> Subscription: ...
