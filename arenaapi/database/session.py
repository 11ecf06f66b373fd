from contextlib import contextmanager

from sqlalchemy.orm import Session

from arenaapi.database.connection import SessionLocal


def get_db():
    db = SessionLocal()
    try:
        yield db
    except Exception:
        if db.in_transaction():
            db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def transactional(db: Session):
    """하나의 논리적 작업 단위를 단일 DB 트랜잭션으로 묶는다.

    블록 안에서 수행된 잔액 변경, 원장 기록, 매치/출금 문서 변경은
    모두 함께 커밋되거나 모두 롤백된다. 블록 안의 코드는 commit 하지 않는다.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
