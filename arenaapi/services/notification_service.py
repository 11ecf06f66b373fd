import logging
from typing import Optional

from sqlalchemy.orm import Session

from arenaapi.repositories.audit_repository import NotificationRepository
from arenaapi.schemas.audit import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """사용자 알림 기록 (best-effort)

    금전 트랜잭션 커밋 이후에 호출된다. 실패해도 호출자에게 예외를 전달하지
    않으며, 이미 커밋된 금전 변경은 영향을 받지 않는다.
    """

    def __init__(self, db: Session):
        self.db = db
        self.notification_repo = NotificationRepository(db)

    def notify(
        self,
        user_id: int,
        type: str,
        title: str,
        message: str,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
    ) -> Optional[Notification]:
        try:
            return self.notification_repo.create(
                commit=True,
                user_id=user_id,
                type=type,
                title=title,
                message=message,
                reference_type=reference_type,
                reference_id=reference_id,
            )
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Failed to record notification '{type}' for user {user_id}: {str(e)}",
                exc_info=True,
            )
            return None
