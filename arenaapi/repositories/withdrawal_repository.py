from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import desc, func, select, update
from sqlalchemy.orm import Session

from arenaapi.models.withdrawal import (
    PaymentMethodEnum,
    SavedPaymentMethod as SavedPaymentMethodModel,
    Withdrawal as WithdrawalModel,
    WithdrawalStatusEnum,
)
from arenaapi.repositories.base import BaseRepository
from arenaapi.schemas.withdrawal import (
    SavedPaymentMethod as SavedPaymentMethodSchema,
    Withdrawal as WithdrawalSchema,
)


class WithdrawalRepository(BaseRepository[WithdrawalModel, WithdrawalSchema]):
    def __init__(self, db: Session):
        super().__init__(WithdrawalModel, WithdrawalSchema, db)

    def count_pending(self, user_id: int) -> int:
        return self.count(
            filters={"user_id": user_id, "status": WithdrawalStatusEnum.PENDING}
        )

    def last_completed_at(self, user_id: int) -> Optional[datetime]:
        return self.db.execute(
            select(func.max(self.model_class.completed_at)).where(
                self.model_class.user_id == user_id,
                self.model_class.status == WithdrawalStatusEnum.COMPLETED,
            )
        ).scalar_one_or_none()

    def list_by_user(
        self,
        user_id: int,
        status: Optional[WithdrawalStatusEnum] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[WithdrawalSchema], int]:
        query = self._query().filter(
            self.model_class.user_id == user_id
        )
        if status is not None:
            query = query.filter(self.model_class.status == status)
        total_count = query.count()
        withdrawals = (
            query.order_by(desc(self.model_class.id)).offset(offset).limit(limit).all()
        )
        return self._to_schemas(withdrawals), total_count

    def list_by_status(
        self,
        status: Optional[WithdrawalStatusEnum] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WithdrawalSchema], int]:
        """처리 대기열 (오래된 순)"""
        query = self._query()
        if status is not None:
            query = query.filter(self.model_class.status == status)
        total_count = query.count()
        withdrawals = (
            query.order_by(self.model_class.created_at, self.model_class.id)
            .offset(offset)
            .limit(limit)
            .all()
        )
        return self._to_schemas(withdrawals), total_count

    def pending_totals(self) -> Tuple[int, Decimal]:
        row = self.db.execute(
            select(func.count(self.model_class.id), func.sum(self.model_class.amount)).where(
                self.model_class.status == WithdrawalStatusEnum.PENDING
            )
        ).one()
        return int(row[0] or 0), Decimal(row[1] or 0)

    def transition_status(
        self,
        withdrawal_id: int,
        from_statuses: Iterable[WithdrawalStatusEnum],
        to_status: WithdrawalStatusEnum,
        **values,
    ) -> bool:
        """현재 status가 from_statuses 중 하나일 때만 전이 (compare-and-set)."""
        result = self.db.execute(
            update(self.model_class)
            .where(
                self.model_class.id == withdrawal_id,
                self.model_class.status.in_(list(from_statuses)),
            )
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class SavedPaymentMethodRepository(
    BaseRepository[SavedPaymentMethodModel, SavedPaymentMethodSchema]
):
    def __init__(self, db: Session):
        super().__init__(SavedPaymentMethodModel, SavedPaymentMethodSchema, db)

    def get_owned(
        self, method_id: int, user_id: int
    ) -> Optional[SavedPaymentMethodSchema]:
        model_instance = (
            self._query()
            .filter(
                self.model_class.id == method_id,
                self.model_class.user_id == user_id,
            )
            .first()
        )
        return self._to_schema(model_instance)

    def find_duplicate(
        self,
        user_id: int,
        method: PaymentMethodEnum,
        upi_id: Optional[str] = None,
        account_number: Optional[str] = None,
    ) -> Optional[SavedPaymentMethodSchema]:
        query = self._query().filter(
            self.model_class.user_id == user_id,
            self.model_class.method == method,
        )
        if method == PaymentMethodEnum.UPI:
            query = query.filter(self.model_class.upi_id == upi_id)
        else:
            query = query.filter(self.model_class.bank_account_number == account_number)
        return self._to_schema(query.first())

    def list_for_user(self, user_id: int) -> List[SavedPaymentMethodSchema]:
        methods = (
            self._query()
            .filter(self.model_class.user_id == user_id)
            .order_by(desc(self.model_class.is_default), desc(self.model_class.id))
            .all()
        )
        return self._to_schemas(methods)

    def touch(self, method_id: int, used_at: datetime) -> bool:
        result = self.db.execute(
            update(self.model_class)
            .where(self.model_class.id == method_id)
            .values(last_used_at=used_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
