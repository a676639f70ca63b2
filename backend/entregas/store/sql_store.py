"""
SQLAlchemy 기반 문서 저장소
- 블로킹 DB 작업은 run_in_executor로 실행
- update_document(expected_version=...)는 version 조건부 쓰기 (실패 시 ConcurrencyConflict)
- 쓰기 성공 후 ChangeFeed로 변경 이벤트를 발행
- DB 오류는 StoreUnavailable로 변환해 호출자에게 전달 (삼키지 않음)
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from entregas.core.errors import ConcurrencyConflict, NotFound, StoreUnavailable
from entregas.models.document import DocumentRecord
from entregas.store.change_feed import ChangeFeed, Predicate, Subscription

logger = logging.getLogger(__name__)


def _with_meta(record: DocumentRecord) -> dict:
    """저장된 데이터 + id/version 메타데이터"""
    return {**(record.data or {}), "id": record.id, "version": record.version}


class SqlDocumentStore:
    """documents 테이블 위의 컬렉션/문서 저장소"""

    def __init__(self, session_factory, feed: ChangeFeed | None = None):
        self._session_factory = session_factory
        self.feed = feed or ChangeFeed()

    async def _run(self, fn, *args):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, fn, *args)

    # ── 쓰기 ──────────────────────────────────────────────

    async def create_document(self, collection: str, data: dict) -> str:
        """문서 생성 후 id 반환"""
        document_id = uuid.uuid4().hex
        created = await self._run(self._insert, collection, document_id, data)
        self.feed.publish(collection, document_id, None, created)
        logger.info(f"문서 생성: {collection}/{document_id}")
        return document_id

    def _insert(self, collection: str, document_id: str, data: dict) -> dict:
        db = self._session_factory()
        try:
            record = DocumentRecord(
                id=document_id,
                collection=collection,
                data=data,
                version=1,
            )
            db.add(record)
            db.commit()
            db.refresh(record)
            return _with_meta(record)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"문서 생성 실패 ({collection}): {e}")
            raise StoreUnavailable("Falha ao salvar no banco de dados") from e
        finally:
            db.close()

    async def update_document(self, collection: str, document_id: str, patch: dict,
                              expected_version: int | None = None) -> int:
        """문서 병합 갱신. 새 version 반환."""
        before, after = await self._run(
            self._update, collection, document_id, patch, expected_version,
        )
        self.feed.publish(collection, document_id, before, after)
        return after["version"]

    def _update(self, collection: str, document_id: str, patch: dict,
                expected_version: int | None) -> tuple[dict, dict]:
        db = self._session_factory()
        try:
            record = db.get(DocumentRecord, document_id)
            if record is None or record.collection != collection:
                raise NotFound("Envio não encontrado", shipment_id=document_id)

            current_version = record.version
            if expected_version is not None and current_version != expected_version:
                raise ConcurrencyConflict(
                    f"Versão desatualizada ({expected_version} != {current_version})",
                    shipment_id=document_id,
                )

            before = _with_meta(record)
            data = {**(record.data or {}), **patch}
            data.pop("id", None)
            data.pop("version", None)

            result = db.execute(
                update(DocumentRecord)
                .where(
                    DocumentRecord.id == document_id,
                    DocumentRecord.version == current_version,
                )
                .values(
                    data=data,
                    version=current_version + 1,
                    updated_at=datetime.now(timezone.utc),
                )
            )
            if result.rowcount != 1:
                db.rollback()
                raise ConcurrencyConflict("Documento alterado concorrentemente", shipment_id=document_id)
            db.commit()

            after = {**data, "id": document_id, "version": current_version + 1}
            return before, after
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"문서 갱신 실패 ({collection}/{document_id}): {e}")
            raise StoreUnavailable("Falha ao atualizar envio") from e
        finally:
            db.close()

    async def delete_document(self, collection: str, document_id: str):
        before = await self._run(self._delete, collection, document_id)
        self.feed.publish(collection, document_id, before, None)

    def _delete(self, collection: str, document_id: str) -> dict:
        db = self._session_factory()
        try:
            record = db.get(DocumentRecord, document_id)
            if record is None or record.collection != collection:
                raise NotFound("Envio não encontrado", shipment_id=document_id)
            before = _with_meta(record)
            db.delete(record)
            db.commit()
            return before
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreUnavailable("Falha ao remover documento") from e
        finally:
            db.close()

    # ── 읽기 ──────────────────────────────────────────────

    async def get_document(self, collection: str, document_id: str) -> dict | None:
        return await self._run(self._get, collection, document_id)

    def _get(self, collection: str, document_id: str) -> dict | None:
        db = self._session_factory()
        try:
            record = db.get(DocumentRecord, document_id)
            if record is None or record.collection != collection:
                return None
            return _with_meta(record)
        except SQLAlchemyError as e:
            logger.error(f"문서 조회 실패 ({collection}/{document_id}): {e}")
            raise StoreUnavailable("Falha ao buscar envio") from e
        finally:
            db.close()

    async def query_where(self, collection: str, predicate: Predicate,
                          limit: int | None = None) -> list[dict]:
        """컬렉션 전체를 읽어 조건 필터 (정렬은 호출자 책임)"""
        documents = await self._run(self._all, collection)
        matched = [doc for doc in documents if predicate(doc)]
        return matched[:limit] if limit is not None else matched

    def _all(self, collection: str) -> list[dict]:
        db = self._session_factory()
        try:
            records = (
                db.query(DocumentRecord)
                .filter(DocumentRecord.collection == collection)
                .all()
            )
            return [_with_meta(r) for r in records]
        except SQLAlchemyError as e:
            logger.error(f"컬렉션 조회 실패 ({collection}): {e}")
            raise StoreUnavailable("Falha ao consultar envios") from e
        finally:
            db.close()

    # ── 구독 ──────────────────────────────────────────────

    async def subscribe(self, collection: str, predicate: Predicate) -> Subscription:
        """
        구독을 먼저 등록한 뒤 스냅샷을 읽어 added로 채운다.
        스냅샷을 읽는 동안 커밋된 변경은 구독 큐에 쌓이고, 그보다 오래된 스냅샷 행은 version 비교로 버려진다.
        """
        subscription = self.feed.subscribe(collection, predicate)
        try:
            documents = await self._run(self._all, collection)
        except StoreUnavailable:
            subscription.close()
            raise
        subscription.seed((doc["id"], doc) for doc in documents)
        return subscription

    def ping(self) -> bool:
        """헬스체크용 (블로킹)"""
        db = self._session_factory()
        try:
            db.query(DocumentRecord.id).limit(1).all()
            return True
        except SQLAlchemyError:
            return False
        finally:
            db.close()
