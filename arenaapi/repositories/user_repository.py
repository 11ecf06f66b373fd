from decimal import Decimal
from typing import Optional
from sqlalchemy.orm import Session
from sqlalchemy import select, update

from arenaapi.models.user import User as UserModel
from arenaapi.schemas.user import User as UserSchema
from arenaapi.repositories.base import BaseRepository


class UserRepository(BaseRepository[UserModel, UserSchema]):
    """사용자 리포지토리

    wallet_balance 변경 메서드(apply_debit/apply_credit)는
    WalletLedgerService에서만 호출한다.
    """

    def __init__(self, db: Session):
        super().__init__(UserModel, UserSchema, db)

    def get_wallet_balance(self, user_id: int) -> Optional[Decimal]:
        """DB에 저장된 현재 잔액 (세션 캐시를 거치지 않음)"""
        return self.db.execute(
            select(self.model_class.wallet_balance).where(
                self.model_class.id == user_id
            )
        ).scalar_one_or_none()

    def apply_debit(self, user_id: int, amount: Decimal) -> bool:
        """잔액이 충분할 때만 차감하는 단일 조건부 UPDATE.

        Returns:
            bool: 차감 성공 여부 (사용자 없음 또는 잔액 부족이면 False)
        """
        result = self.db.execute(
            update(self.model_class)
            .where(
                self.model_class.id == user_id,
                self.model_class.wallet_balance >= amount,
            )
            .values(wallet_balance=self.model_class.wallet_balance - amount)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def apply_credit(self, user_id: int, amount: Decimal) -> bool:
        result = self.db.execute(
            update(self.model_class)
            .where(self.model_class.id == user_id)
            .values(wallet_balance=self.model_class.wallet_balance + amount)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def set_banned(self, user_id: int, banned: bool = True) -> Optional[UserSchema]:
        return self.update(user_id, is_banned=banned)

    def lock_for_update(self, user_id: int) -> bool:
        """사용자 행 잠금 (SELECT ... FOR UPDATE). 같은 사용자의 금전 작업을 직렬화"""
        locked = self.db.execute(
            select(self.model_class.id)
            .where(self.model_class.id == user_id)
            .with_for_update()
        ).scalar_one_or_none()
        return locked is not None
