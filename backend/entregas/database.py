"""
데이터베이스 엔진 및 세션 관리
- 기본값은 SQLite.
- 문서 저장소(SqlDocumentStore)가 SessionLocal을 사용한다.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from entregas.config import settings

Base = declarative_base()


def make_engine(url: str):
    """URL에 맞는 엔진 생성. 인메모리 SQLite는 커넥션 하나를 공유한다."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, **kwargs)
    return create_engine(url, echo=False, pool_pre_ping=True)


def make_session_factory(bind):
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


engine = make_engine(settings.DATABASE_URL)

SessionLocal = make_session_factory(engine)
