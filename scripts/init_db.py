import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from arenaapi.database.connection import engine
from arenaapi.config import settings
from arenaapi.models.base import Base

# 메타데이터 등록을 위해 모든 모델 import
from arenaapi.models import audit, match, transaction, user, withdrawal  # noqa: F401


def init_db():
    """데이터베이스 초기화 (모든 테이블 생성)"""
    try:
        Base.metadata.create_all(bind=engine)
        print(
            f"Database initialized successfully ({len(Base.metadata.tables)} tables, "
            f"environment: {settings.ENVIRONMENT})"
        )
    except Exception as e:
        print(f"Database initialization failed: {str(e)}")
        raise


if __name__ == "__main__":
    init_db()
