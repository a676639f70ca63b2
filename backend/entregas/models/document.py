"""
documents 테이블 — 컬렉션 단위 JSON 문서 저장소
- 배송(shipments) 등 모든 문서를 (collection, id)로 보관한다.
- version은 조건부 쓰기(낙관적 동시성)에 사용한다.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, JSON, Index

from entregas.database import Base


class DocumentRecord(Base):
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True)  # uuid4 hex
    collection = Column(String(64), nullable=False)
    data = Column(JSON, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_documents_collection", "collection"),
    )
