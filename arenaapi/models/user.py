from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from sqlalchemy import Boolean, CheckConstraint, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from arenaapi.models.base import BaseModel, IdType, Money


class UserRole(str, Enum):
    """사용자 역할. FINANCE 이상은 출금 처리, ADMIN 이상은 매치 운영 가능"""

    USER = "user"
    FINANCE = "finance"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @classmethod
    def rank(cls, role: Union[str, "UserRole"]) -> int:
        try:
            return _ROLE_ORDER.index(cls(role))
        except ValueError:
            return -1

    @classmethod
    def has_permission(
        cls, user_role: Union[str, "UserRole"], required_role: Union[str, "UserRole"]
    ) -> bool:
        return cls.rank(user_role) >= max(cls.rank(required_role), 0)

    @classmethod
    def is_admin(cls, role: Union[str, "UserRole"]) -> bool:
        return cls.has_permission(role, cls.ADMIN)


_ROLE_ORDER = (UserRole.USER, UserRole.FINANCE, UserRole.ADMIN, UserRole.SUPER_ADMIN)


class User(BaseModel):
    """플랫폼 사용자.

    wallet_balance는 WalletLedgerService만 변경한다. 다른 코드에서 이 컬럼에
    직접 값을 쓰지 않는다.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("wallet_balance >= 0", name="ck_users_wallet_non_negative"),
        CheckConstraint("bonus_balance >= 0", name="ck_users_bonus_non_negative"),
        Index("idx_users_email", "email"),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    nickname: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    password_hash: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_banned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_kyc_verified: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    role: Mapped[str] = mapped_column(
        String(20), default=UserRole.USER.value, nullable=False
    )

    # 출금 가능한 잔액
    wallet_balance: Mapped[Decimal] = mapped_column(
        Money, default=Decimal("0"), nullable=False
    )
    # 출금 불가 보너스 잔액 (원장과 별개)
    bonus_balance: Mapped[Decimal] = mapped_column(
        Money, default=Decimal("0"), nullable=False
    )

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"

