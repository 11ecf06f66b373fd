import logging
from typing import Optional

from sqlalchemy.orm import Session

from arenaapi.repositories.audit_repository import AdminLogRepository
from arenaapi.schemas.audit import AdminLog

logger = logging.getLogger(__name__)


class AdminLogService:
    """관리자 작업 감사 로그 (best-effort, 실패 시 로그만 남김)"""

    def __init__(self, db: Session):
        self.db = db
        self.admin_log_repo = AdminLogRepository(db)

    def log(
        self,
        admin_id: Optional[int],
        action: str,
        target_type: str,
        target_id: Optional[int],
        description: str,
        severity: str = "low",
    ) -> Optional[AdminLog]:
        # 시스템(스케줄러) 작업은 감사 대상이 아님
        if admin_id is None:
            return None
        try:
            return self.admin_log_repo.create(
                commit=True,
                admin_id=admin_id,
                action=action,
                target_type=target_type,
                target_id=target_id,
                description=description,
                severity=severity,
            )
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Failed to record admin log {action} on {target_type}:{target_id} by {admin_id}: {str(e)}",
                exc_info=True,
            )
            return None
