from typing import List

from sqlalchemy import desc
from sqlalchemy.orm import Session

from arenaapi.models.audit import AdminLog as AdminLogModel, Notification as NotificationModel
from arenaapi.repositories.base import BaseRepository
from arenaapi.schemas.audit import AdminLog as AdminLogSchema, Notification as NotificationSchema


class AdminLogRepository(BaseRepository[AdminLogModel, AdminLogSchema]):
    def __init__(self, db: Session):
        super().__init__(AdminLogModel, AdminLogSchema, db)

    def list_for_target(self, target_type: str, target_id: int) -> List[AdminLogSchema]:
        logs = (
            self._query()
            .filter(
                self.model_class.target_type == target_type,
                self.model_class.target_id == target_id,
            )
            .order_by(self.model_class.id)
            .all()
        )
        return self._to_schemas(logs)


class NotificationRepository(BaseRepository[NotificationModel, NotificationSchema]):
    def __init__(self, db: Session):
        super().__init__(NotificationModel, NotificationSchema, db)

    def list_for_user(self, user_id: int, limit: int = 50) -> List[NotificationSchema]:
        notifications = (
            self._query()
            .filter(self.model_class.user_id == user_id)
            .order_by(desc(self.model_class.id))
            .limit(limit)
            .all()
        )
        return self._to_schemas(notifications)
