"""
지갑 원장 리포지토리

원장 행의 생성, status 전이(조건부 UPDATE), 재계산용 집계를 담당한다.
잔액 컬럼은 건드리지 않는다 (UserRepository.apply_debit/apply_credit 참조).
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import desc, func, select, update
from sqlalchemy.orm import Session

from arenaapi.models.transaction import (
    ReferenceType,
    TransactionCategory,
    TransactionStatus,
    TransactionType,
    WalletTransaction as WalletTransactionModel,
)
from arenaapi.repositories.base import BaseRepository
from arenaapi.schemas.wallet import WalletTransaction as WalletTransactionSchema


class WalletTransactionRepository(
    BaseRepository[WalletTransactionModel, WalletTransactionSchema]
):
    def __init__(self, db: Session):
        super().__init__(WalletTransactionModel, WalletTransactionSchema, db)

    def get_by_idempotency_key(self, key: str) -> Optional[WalletTransactionSchema]:
        return self.get_by_field("idempotency_key", key)

    def get_by_order_id(
        self, order_id: str, category: TransactionCategory = TransactionCategory.DEPOSIT
    ) -> Optional[WalletTransactionSchema]:
        model_instance = (
            self._query()
            .filter(
                self.model_class.payment_order_id == order_id,
                self.model_class.category == category,
            )
            .order_by(self.model_class.id)
            .first()
        )
        return self._to_schema(model_instance)

    def find_by_reference(
        self,
        reference_type: ReferenceType,
        reference_id: int,
        category: Optional[TransactionCategory] = None,
        user_id: Optional[int] = None,
    ) -> List[WalletTransactionSchema]:
        query = self._query().filter(
            self.model_class.reference_type == reference_type,
            self.model_class.reference_id == reference_id,
        )
        if category is not None:
            query = query.filter(self.model_class.category == category)
        if user_id is not None:
            query = query.filter(self.model_class.user_id == user_id)
        return self._to_schemas(query.order_by(self.model_class.id).all())

    def transition_status(
        self,
        transaction_id: int,
        from_statuses: Iterable[TransactionStatus],
        to_status: TransactionStatus,
        **values,
    ) -> bool:
        """현재 status가 from_statuses 중 하나일 때만 전이 (compare-and-set)."""
        result = self.db.execute(
            update(self.model_class)
            .where(
                self.model_class.id == transaction_id,
                self.model_class.status.in_(list(from_statuses)),
            )
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def sum_by_type_and_status(
        self, user_id: int
    ) -> Dict[Tuple[TransactionType, TransactionStatus], Decimal]:
        """(type, status)별 금액 합계"""
        rows = self.db.execute(
            select(
                self.model_class.type,
                self.model_class.status,
                func.sum(self.model_class.amount),
            )
            .where(self.model_class.user_id == user_id)
            .group_by(self.model_class.type, self.model_class.status)
        ).all()
        return {(row[0], row[1]): Decimal(row[2] or 0) for row in rows}

    def get_history(
        self,
        user_id: int,
        transaction_type: Optional[TransactionType] = None,
        category: Optional[TransactionCategory] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WalletTransactionSchema], int]:
        query = self._query().filter(
            self.model_class.user_id == user_id
        )
        if transaction_type is not None:
            query = query.filter(self.model_class.type == transaction_type)
        if category is not None:
            query = query.filter(self.model_class.category == category)

        total_count = query.count()
        entries = (
            query.order_by(desc(self.model_class.id)).offset(offset).limit(limit).all()
        )
        return self._to_schemas(entries), total_count
