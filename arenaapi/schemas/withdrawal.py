from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from arenaapi.models.withdrawal import PaymentMethodEnum, WithdrawalStatusEnum


class BankDetails(BaseModel):
    account_holder_name: str = Field(..., min_length=1, max_length=100)
    account_number: str = Field(..., min_length=1, max_length=30)
    ifsc_code: str = Field(..., min_length=1, max_length=20)
    bank_name: Optional[str] = Field(None, max_length=100)


class WithdrawalCreateRequest(BaseModel):
    """출금 요청"""

    amount: Decimal = Field(..., gt=0, description="출금 총액 (TDS 차감 전)")
    method: Optional[PaymentMethodEnum] = None
    upi_id: Optional[str] = Field(None, max_length=100)
    bank_details: Optional[BankDetails] = None
    saved_payment_method_id: Optional[int] = None
    save_payment_method: bool = False

    @model_validator(mode="after")
    def method_or_saved_method(self) -> "WithdrawalCreateRequest":
        if self.method is None and self.saved_payment_method_id is None:
            raise ValueError("Either method or saved_payment_method_id is required")
        return self


class Withdrawal(BaseModel):
    id: int
    user_id: int
    amount: Decimal
    tds: Decimal
    net_amount: Decimal
    method: PaymentMethodEnum
    upi_id: Optional[str] = None
    bank_account_holder: Optional[str] = None
    bank_account_number: Optional[str] = None
    bank_ifsc: Optional[str] = None
    bank_name: Optional[str] = None
    status: WithdrawalStatusEnum
    wallet_balance_at_request: Decimal
    hold_transaction_id: Optional[int] = None
    processed_by: Optional[int] = None
    processed_at: Optional[datetime] = None
    processing_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    external_reference: Optional[str] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WithdrawalListResponse(BaseModel):
    withdrawals: List[Withdrawal]
    total_count: int
    has_next: bool


class WithdrawalQueueResponse(BaseModel):
    """재무 담당 출금 처리 대기열"""

    withdrawals: List[Withdrawal]
    total_count: int
    has_next: bool
    pending_count: int
    pending_amount: Decimal


class EligibilityResult(BaseModel):
    allowed: bool
    reason: Optional[str] = None


class EligibilityResponse(BaseModel):
    eligible: bool
    reason: Optional[str] = None
    wallet_balance: Decimal
    is_kyc_verified: bool
    minimum_withdrawal: Decimal


class ApproveWithdrawalRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=500)


class CompleteWithdrawalRequest(BaseModel):
    external_reference: str = Field(..., min_length=1, max_length=100)
    notes: Optional[str] = Field(None, max_length=500)


class RejectWithdrawalRequest(BaseModel):
    reason: str = Field(..., max_length=500)


class SavedPaymentMethod(BaseModel):
    id: int
    user_id: int
    method: PaymentMethodEnum
    upi_id: Optional[str] = None
    bank_account_holder: Optional[str] = None
    bank_account_number: Optional[str] = None
    bank_ifsc: Optional[str] = None
    bank_name: Optional[str] = None
    nickname: Optional[str] = None
    is_default: bool = False
    last_used_at: Optional[datetime] = None

    class Config:
        from_attributes = True
