"""
지갑 API 라우터

사용자용 엔드포인트:
- GET /wallet/balance: 잔액
- GET /wallet/transactions: 원장 내역 (type/category 필터)
- GET /wallet/integrity: 내 원장 정합성 검증
- POST /wallet/deposits: 입금 주문 등록 (pending)
- POST /wallet/deposits/verify: checkout 서명 검증 후 정산

게이트웨이:
- POST /wallet/webhook: 결제 웹훅 (X-Razorpay-Signature 서명 검증)

관리자용 엔드포인트:
- POST /wallet/admin/adjust: 잔액 조정
- GET /wallet/admin/integrity/{user_id}: 사용자 원장 정합성 검증
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Path, Query, Request

from arenaapi.core.auth_middleware import get_current_active_user, require_admin
from arenaapi.deps import get_payment_service, get_wallet_service
from arenaapi.models.transaction import TransactionCategory, TransactionType
from arenaapi.schemas.pagination import PaginationLimits
from arenaapi.schemas.user import User as UserSchema
from arenaapi.schemas.wallet import (
    AdminWalletAdjustmentRequest,
    DepositCreateRequest,
    DepositVerifyRequest,
    WalletBalanceResponse,
    WalletHistoryResponse,
    WalletIntegrityResponse,
    WalletTransaction,
    WebhookResult,
)
from arenaapi.services.payment_service import PaymentService
from arenaapi.services.wallet_ledger_service import WalletLedgerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wallet", tags=["wallet"])


@router.get("/balance", response_model=WalletBalanceResponse)
async def get_balance(
    current_user: UserSchema = Depends(get_current_active_user),
    wallet_service: WalletLedgerService = Depends(get_wallet_service),
) -> WalletBalanceResponse:
    return wallet_service.get_balance_summary(current_user.id)


@router.get("/transactions", response_model=WalletHistoryResponse)
async def get_transactions(
    transaction_type: Optional[TransactionType] = Query(None, alias="type"),
    category: Optional[TransactionCategory] = Query(None),
    limit: int = Query(
        PaginationLimits.WALLET_HISTORY["default"],
        ge=PaginationLimits.WALLET_HISTORY["min"],
        le=PaginationLimits.WALLET_HISTORY["max"],
    ),
    offset: int = Query(0, ge=0),
    current_user: UserSchema = Depends(get_current_active_user),
    wallet_service: WalletLedgerService = Depends(get_wallet_service),
) -> WalletHistoryResponse:
    return wallet_service.get_history(
        current_user.id,
        transaction_type=transaction_type,
        category=category,
        limit=limit,
        offset=offset,
    )


@router.get("/integrity", response_model=WalletIntegrityResponse)
async def verify_my_integrity(
    current_user: UserSchema = Depends(get_current_active_user),
    wallet_service: WalletLedgerService = Depends(get_wallet_service),
) -> WalletIntegrityResponse:
    return wallet_service.verify_integrity(current_user.id)


# ============================================================================
# 입금
# ============================================================================


@router.post("/deposits", response_model=WalletTransaction, status_code=201)
async def create_deposit(
    request: DepositCreateRequest,
    current_user: UserSchema = Depends(get_current_active_user),
    payment_service: PaymentService = Depends(get_payment_service),
) -> WalletTransaction:
    """게이트웨이 주문 ID 기준으로 pending 입금 기록 (잔액 변동 없음)"""
    return payment_service.create_deposit(
        current_user.id, request.amount, request.order_id
    )


@router.post("/deposits/verify", response_model=WalletTransaction)
async def verify_deposit(
    request: DepositVerifyRequest,
    current_user: UserSchema = Depends(get_current_active_user),
    payment_service: PaymentService = Depends(get_payment_service),
) -> WalletTransaction:
    return payment_service.verify_payment(
        current_user.id, request.order_id, request.payment_id, request.signature
    )


@router.post("/webhook", response_model=WebhookResult)
async def payment_webhook(
    request: Request,
    x_razorpay_signature: str = Header("", alias="X-Razorpay-Signature"),
    payment_service: PaymentService = Depends(get_payment_service),
) -> WebhookResult:
    """게이트웨이 웹훅. 서명은 원문 body 기준으로 검증한다."""
    body = await request.body()
    result = payment_service.process_webhook(body, x_razorpay_signature)
    logger.info(f"Webhook {result.event} handled={result.handled}")
    return result


# ============================================================================
# 관리자
# ============================================================================


@router.post("/admin/adjust", response_model=WalletTransaction)
async def admin_adjust_balance(
    request: AdminWalletAdjustmentRequest,
    admin: UserSchema = Depends(require_admin),
    wallet_service: WalletLedgerService = Depends(get_wallet_service),
) -> WalletTransaction:
    return wallet_service.admin_adjust(
        admin.id, request.user_id, request.amount, request.reason
    )


@router.get("/admin/integrity/{user_id}", response_model=WalletIntegrityResponse)
async def verify_user_integrity(
    user_id: int = Path(..., gt=0),
    admin: UserSchema = Depends(require_admin),
    wallet_service: WalletLedgerService = Depends(get_wallet_service),
) -> WalletIntegrityResponse:
    return wallet_service.verify_integrity(user_id)
