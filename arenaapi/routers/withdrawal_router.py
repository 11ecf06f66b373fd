"""
출금 API 라우터

사용자용 엔드포인트:
- GET /withdrawals/check-eligibility: 출금 가능 여부
- GET /withdrawals/saved-methods: 저장된 수단 목록
- POST /withdrawals: 출금 요청 (총액 hold)
- GET /withdrawals: 내 출금 목록
- GET /withdrawals/{withdrawal_id}: 출금 상세
- DELETE /withdrawals/{withdrawal_id}: pending 요청 취소 (hold 환원)

재무 담당(finance 이상) 엔드포인트:
- GET /withdrawals/admin/queue
- POST /withdrawals/{withdrawal_id}/approve
- POST /withdrawals/{withdrawal_id}/complete
- POST /withdrawals/{withdrawal_id}/reject
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query

from arenaapi.core.auth_middleware import get_current_active_user, require_finance
from arenaapi.deps import get_withdrawal_service
from arenaapi.models.withdrawal import WithdrawalStatusEnum
from arenaapi.schemas.pagination import PaginationLimits
from arenaapi.schemas.user import User as UserSchema
from arenaapi.schemas.withdrawal import (
    ApproveWithdrawalRequest,
    CompleteWithdrawalRequest,
    EligibilityResponse,
    RejectWithdrawalRequest,
    SavedPaymentMethod,
    Withdrawal,
    WithdrawalCreateRequest,
    WithdrawalListResponse,
    WithdrawalQueueResponse,
)
from arenaapi.services.withdrawal_service import WithdrawalService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/withdrawals", tags=["withdrawals"])


@router.get("/check-eligibility", response_model=EligibilityResponse)
async def check_eligibility(
    current_user: UserSchema = Depends(get_current_active_user),
    withdrawal_service: WithdrawalService = Depends(get_withdrawal_service),
) -> EligibilityResponse:
    """KYC, 대기 중 요청, 정지, 쿨다운 순으로 판정"""
    return withdrawal_service.get_eligibility(current_user.id)


@router.get("/saved-methods", response_model=List[SavedPaymentMethod])
async def list_saved_methods(
    current_user: UserSchema = Depends(get_current_active_user),
    withdrawal_service: WithdrawalService = Depends(get_withdrawal_service),
) -> List[SavedPaymentMethod]:
    return withdrawal_service.list_saved_methods(current_user.id)


@router.post("", response_model=Withdrawal, status_code=201)
async def create_withdrawal(
    request: WithdrawalCreateRequest,
    current_user: UserSchema = Depends(get_current_active_user),
    withdrawal_service: WithdrawalService = Depends(get_withdrawal_service),
) -> Withdrawal:
    """
    출금 요청

    요청 총액(amount)이 즉시 지갑에서 hold 되며, 실제 지급액은
    amount - tds 이다.

    HTTP Status:
        201: 요청 생성
        400: 최소 금액 미달 / 잔액 부족 / 수단 정보 오류
        403: 출금 자격 없음 (KYC, 대기 중 요청, 정지, 쿨다운)
    """
    return withdrawal_service.create_request(current_user.id, request)


@router.get("", response_model=WithdrawalListResponse)
async def list_my_withdrawals(
    status: Optional[WithdrawalStatusEnum] = Query(None),
    limit: int = Query(
        PaginationLimits.WITHDRAWAL_LIST["default"],
        ge=PaginationLimits.WITHDRAWAL_LIST["min"],
        le=PaginationLimits.WITHDRAWAL_LIST["max"],
    ),
    offset: int = Query(0, ge=0),
    current_user: UserSchema = Depends(get_current_active_user),
    withdrawal_service: WithdrawalService = Depends(get_withdrawal_service),
) -> WithdrawalListResponse:
    return withdrawal_service.list_user_withdrawals(
        current_user.id, status=status, limit=limit, offset=offset
    )


# ============================================================================
# 재무 담당
# ============================================================================


@router.get("/admin/queue", response_model=WithdrawalQueueResponse)
async def get_withdrawal_queue(
    status: Optional[WithdrawalStatusEnum] = Query(WithdrawalStatusEnum.PENDING),
    limit: int = Query(
        PaginationLimits.WITHDRAWAL_QUEUE["default"],
        ge=PaginationLimits.WITHDRAWAL_QUEUE["min"],
        le=PaginationLimits.WITHDRAWAL_QUEUE["max"],
    ),
    offset: int = Query(0, ge=0),
    finance_user: UserSchema = Depends(require_finance),
    withdrawal_service: WithdrawalService = Depends(get_withdrawal_service),
) -> WithdrawalQueueResponse:
    return withdrawal_service.get_queue(status=status, limit=limit, offset=offset)


@router.post("/{withdrawal_id}/approve", response_model=Withdrawal)
async def approve_withdrawal(
    request: ApproveWithdrawalRequest,
    withdrawal_id: int = Path(..., gt=0),
    finance_user: UserSchema = Depends(require_finance),
    withdrawal_service: WithdrawalService = Depends(get_withdrawal_service),
) -> Withdrawal:
    return withdrawal_service.approve(withdrawal_id, finance_user.id, request.notes)


@router.post("/{withdrawal_id}/complete", response_model=Withdrawal)
async def complete_withdrawal(
    request: CompleteWithdrawalRequest,
    withdrawal_id: int = Path(..., gt=0),
    finance_user: UserSchema = Depends(require_finance),
    withdrawal_service: WithdrawalService = Depends(get_withdrawal_service),
) -> Withdrawal:
    """approved -> completed (hold 확정, 잔액 변동 없음)"""
    return withdrawal_service.complete(
        withdrawal_id, finance_user.id, request.external_reference, request.notes
    )


@router.post("/{withdrawal_id}/reject", response_model=Withdrawal)
async def reject_withdrawal(
    request: RejectWithdrawalRequest,
    withdrawal_id: int = Path(..., gt=0),
    finance_user: UserSchema = Depends(require_finance),
    withdrawal_service: WithdrawalService = Depends(get_withdrawal_service),
) -> Withdrawal:
    """pending/approved -> rejected (hold 총액 환원)"""
    return withdrawal_service.reject(withdrawal_id, finance_user.id, request.reason)


# ============================================================================
# 단건
# ============================================================================


@router.get("/{withdrawal_id}", response_model=Withdrawal)
async def get_withdrawal(
    withdrawal_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    withdrawal_service: WithdrawalService = Depends(get_withdrawal_service),
) -> Withdrawal:
    return withdrawal_service.get_withdrawal(withdrawal_id, current_user)


@router.delete("/{withdrawal_id}", response_model=Withdrawal)
async def cancel_withdrawal(
    withdrawal_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    withdrawal_service: WithdrawalService = Depends(get_withdrawal_service),
) -> Withdrawal:
    return withdrawal_service.cancel(withdrawal_id, current_user.id)
