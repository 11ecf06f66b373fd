"""
지갑 원장(Wallet Transaction) 모델

원장 행은 추가만 가능하다. 생성 이후 변경 가능한 것은 status 전이
(pending -> completed/failed/reversed, completed -> reversed) 뿐이며,
status가 pending이 아닌 행의 금액/스냅샷은 절대 수정하지 않는다.
"""

import enum
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from arenaapi.models.base import BaseModel, IdType, JsonType, Money


class TransactionType(enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionCategory(enum.Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    WITHDRAWAL_REFUND = "withdrawal_refund"
    MATCH_ENTRY = "match_entry"
    MATCH_REFUND = "match_refund"
    MATCH_PRIZE = "match_prize"
    ADMIN_CREDIT = "admin_credit"
    ADMIN_DEBIT = "admin_debit"
    BONUS = "bonus"
    PENALTY = "penalty"


class TransactionStatus(enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REVERSED = "reversed"


class ReferenceType(enum.Enum):
    MATCH = "match"
    WITHDRAWAL = "withdrawal"
    DEPOSIT = "deposit"
    TRANSACTION = "transaction"
    ADMIN = "admin"


class WalletTransaction(BaseModel):
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_wallet_tx_amount_positive"),
        Index("idx_wallet_tx_user_created", "user_id", "created_at"),
        Index("idx_wallet_tx_reference", "reference_type", "reference_id"),
        Index("idx_wallet_tx_order", "payment_order_id"),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType), nullable=False
    )
    category: Mapped[TransactionCategory] = mapped_column(
        Enum(TransactionCategory), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(Money, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus), default=TransactionStatus.COMPLETED, nullable=False
    )

    reference_type: Mapped[Optional[ReferenceType]] = mapped_column(
        Enum(ReferenceType), nullable=True
    )
    reference_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # 중복 실행 방지 키 (동일 키 재요청 시 기존 행 반환)
    idempotency_key: Mapped[Optional[str]] = mapped_column(
        String(150), unique=True, nullable=True
    )
    # 역분개 행이 가리키는 원 거래
    reversal_of_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("wallet_transactions.id"), nullable=True
    )

    # 결제 게이트웨이 정보 (입금)
    payment_order_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_details: Mapped[Optional[dict]] = mapped_column(JsonType, nullable=True)

    processed_by: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    def __repr__(self):
        return (
            f"<WalletTransaction(id={self.id}, user_id={self.user_id}, "
            f"type={self.type}, amount={self.amount}, status={self.status})>"
        )
