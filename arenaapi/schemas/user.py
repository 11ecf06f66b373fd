from pydantic import BaseModel, EmailStr
from datetime import datetime
from decimal import Decimal
from typing import Optional

from arenaapi.models.user import UserRole


class User(BaseModel):
    id: int
    email: EmailStr
    nickname: str
    created_at: Optional[datetime] = None
    is_active: bool = True
    is_banned: bool = False
    is_kyc_verified: bool = False
    role: UserRole = UserRole.USER
    wallet_balance: Decimal = Decimal("0")
    bonus_balance: Decimal = Decimal("0")

    class Config:
        from_attributes = True

    @property
    def is_admin(self) -> bool:
        return UserRole.is_admin(self.role)

    def has_permission(self, required_role: UserRole) -> bool:
        return UserRole.has_permission(self.role, required_role)

