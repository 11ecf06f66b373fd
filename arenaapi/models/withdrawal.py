import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from arenaapi.models.base import BaseModel, IdType, Money


class WithdrawalStatusEnum(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class PaymentMethodEnum(enum.Enum):
    UPI = "upi"
    BANK = "bank"


class Withdrawal(BaseModel):
    """출금 요청.

    생성 시점에 총액(amount)이 지갑에서 보류(pending debit)되며,
    netAmount = amount - tds 는 정산 시 실제 지급액이다.
    """

    __tablename__ = "withdrawals"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_withdrawals_amount_positive"),
        CheckConstraint("tds >= 0", name="ck_withdrawals_tds_non_negative"),
        Index("idx_withdrawals_user_status", "user_id", "status"),
        Index("idx_withdrawals_status_created", "status", "created_at"),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    tds: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)

    method: Mapped[PaymentMethodEnum] = mapped_column(
        Enum(PaymentMethodEnum), nullable=False
    )
    upi_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    bank_account_holder: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    bank_account_number: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    bank_ifsc: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    bank_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    status: Mapped[WithdrawalStatusEnum] = mapped_column(
        Enum(WithdrawalStatusEnum), default=WithdrawalStatusEnum.PENDING, nullable=False
    )
    wallet_balance_at_request: Mapped[Decimal] = mapped_column(Money, nullable=False)
    # 생성 시 보류된 원장 행
    hold_transaction_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("wallet_transactions.id"), nullable=True
    )

    processed_by: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processing_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    external_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self):
        return f"<Withdrawal(id={self.id}, user_id={self.user_id}, amount={self.amount}, status={self.status})>"


class SavedPaymentMethod(BaseModel):
    __tablename__ = "saved_payment_methods"
    __table_args__ = (Index("idx_saved_methods_user", "user_id"),)

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    method: Mapped[PaymentMethodEnum] = mapped_column(
        Enum(PaymentMethodEnum), nullable=False
    )
    upi_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    bank_account_holder: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    bank_account_number: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    bank_ifsc: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    bank_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    nickname: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
