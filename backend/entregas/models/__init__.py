"""
SQLAlchemy ORM 모델 패키지
- 모든 모델을 여기서 import하여 Base.metadata에 등록한다.
"""

from entregas.models.document import DocumentRecord

__all__ = [
    "DocumentRecord",
]
