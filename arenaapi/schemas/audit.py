from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class AdminLog(BaseModel):
    id: int
    admin_id: int
    action: str
    target_type: str
    target_id: Optional[int] = None
    description: Optional[str] = None
    severity: str = "low"
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Notification(BaseModel):
    id: int
    user_id: int
    type: str
    title: str
    message: str
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    is_read: bool = False
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
