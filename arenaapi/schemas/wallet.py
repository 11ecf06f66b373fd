from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from arenaapi.models.transaction import (
    ReferenceType,
    TransactionCategory,
    TransactionStatus,
    TransactionType,
)


class WalletTransaction(BaseModel):
    """지갑 원장 항목"""

    id: int
    user_id: int
    type: TransactionType
    category: TransactionCategory
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    status: TransactionStatus
    reference_type: Optional[ReferenceType] = None
    reference_id: Optional[int] = None
    description: Optional[str] = None
    idempotency_key: Optional[str] = None
    reversal_of_id: Optional[int] = None
    payment_order_id: Optional[str] = None
    payment_id: Optional[str] = None
    payment_details: Optional[dict] = None
    processed_by: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LedgerReference(BaseModel):
    """원장 행이 가리키는 원인 문서"""

    type: ReferenceType
    id: Optional[int] = None


class WalletBalanceResponse(BaseModel):
    """지갑 잔액 응답"""

    wallet_balance: Decimal = Field(..., description="출금 가능 잔액")
    bonus_balance: Decimal = Field(..., description="보너스 잔액")
    total_balance: Decimal = Field(..., description="합계")


class WalletHistoryResponse(BaseModel):
    """원장 조회 응답"""

    balance: Decimal = Field(..., description="현재 잔액")
    entries: List[WalletTransaction] = Field(..., description="원장 항목 목록")
    total_count: int = Field(..., description="전체 항목 수")
    has_next: bool = Field(..., description="다음 페이지 존재 여부")


class WalletIntegrityResponse(BaseModel):
    """원장 재계산 검증 결과"""

    user_id: int
    status: str = Field(..., description="검증 상태 (OK, MISMATCH)")
    stored_balance: Decimal
    calculated_balance: Decimal
    difference: Decimal
    transaction_count: int


class DepositCreateRequest(BaseModel):
    """입금 요청 (게이트웨이 주문 생성 후)"""

    amount: Decimal = Field(..., gt=0, description="입금 금액")
    order_id: str = Field(..., min_length=1, max_length=100, description="게이트웨이 주문 ID")


class DepositVerifyRequest(BaseModel):
    """결제 완료 후 서명 검증 요청"""

    order_id: str = Field(..., min_length=1, max_length=100)
    payment_id: str = Field(..., min_length=1, max_length=100)
    signature: str = Field(..., min_length=1)


class AdminWalletAdjustmentRequest(BaseModel):
    """관리자 잔액 조정 요청"""

    user_id: int = Field(..., gt=0, description="사용자 ID")
    amount: Decimal = Field(..., description="조정 금액 (양수: 지급, 음수: 차감)")
    reason: str = Field(..., min_length=1, max_length=255, description="조정 사유")


class WebhookResult(BaseModel):
    event: str
    handled: bool
    transaction_id: Optional[int] = None
