"""
매치 API 라우터

사용자용 엔드포인트:
- GET /matches: 매치 목록
- GET /matches/{match_id}: 매치 상세 (참가자 포함)
- POST /matches/{match_id}/join: 참가 (참가비 차감 + 슬롯 배정)
- POST /matches/{match_id}/leave: 이탈 (수수료 차감 후 환불)
- GET /matches/{match_id}/my-slot: 내 참가 여부 / 슬롯
- GET /matches/{match_id}/room: 방 정보 (참가자 + 공개 후에만)

관리자용 엔드포인트:
- POST /matches: 매치 생성
- POST /matches/open-due-registrations: 모집 시작 일괄 처리
- DELETE /matches/{match_id}: 참가자 없는 매치 삭제
- POST /matches/{match_id}/open-registration
- POST /matches/{match_id}/room-credentials
- POST /matches/{match_id}/start
- POST /matches/{match_id}/result-pending
- POST /matches/{match_id}/complete: 결과 발표 + 상금 지급
- POST /matches/{match_id}/cancel: 취소 + 전액 환불
- POST /matches/{match_id}/retry-refunds
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query

from arenaapi.core.auth_middleware import get_current_active_user, require_admin
from arenaapi.deps import get_match_service
from arenaapi.models.match import MatchStatusEnum
from arenaapi.schemas.match import (
    CancellationResult,
    CancelMatchRequest,
    DeclareResultsRequest,
    JoinMatchRequest,
    JoinMatchResponse,
    LeaveMatchResponse,
    Match,
    MatchCreate,
    MatchDetail,
    MatchListResponse,
    PrizeSettlementResult,
    RoomCredentials,
    RoomCredentialsRequest,
)
from arenaapi.schemas.pagination import PaginationLimits
from arenaapi.schemas.user import User as UserSchema
from arenaapi.services.match_service import MatchService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/matches", tags=["matches"])


# ============================================================================
# 사용자
# ============================================================================


@router.get("", response_model=MatchListResponse)
async def list_matches(
    status: Optional[MatchStatusEnum] = Query(None, description="상태 필터"),
    game_type: Optional[str] = Query(None, description="게임 종류"),
    limit: int = Query(
        PaginationLimits.MATCH_LIST["default"],
        ge=PaginationLimits.MATCH_LIST["min"],
        le=PaginationLimits.MATCH_LIST["max"],
    ),
    offset: int = Query(0, ge=0),
    current_user: UserSchema = Depends(get_current_active_user),
    match_service: MatchService = Depends(get_match_service),
) -> MatchListResponse:
    return match_service.list_matches(
        status=status, game_type=game_type, limit=limit, offset=offset
    )


@router.get("/{match_id}", response_model=MatchDetail)
async def get_match(
    match_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    match_service: MatchService = Depends(get_match_service),
) -> MatchDetail:
    return match_service.get_match(match_id)


@router.post("/{match_id}/join", response_model=JoinMatchResponse)
async def join_match(
    request: JoinMatchRequest,
    match_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    match_service: MatchService = Depends(get_match_service),
) -> JoinMatchResponse:
    """
    매치 참가

    참가비 차감, 슬롯 배정, 참가자 기록이 하나의 트랜잭션으로 처리된다.

    HTTP Status:
        200: 참가 완료
        400: 모집 마감 / 만석 / 중복 참가 / 잔액 부족
        403: 정지된 계정
        404: 매치 없음
    """
    return match_service.join_match(
        match_id, current_user.id, request.in_game_id, request.in_game_name
    )


@router.post("/{match_id}/leave", response_model=LeaveMatchResponse)
async def leave_match(
    match_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    match_service: MatchService = Depends(get_match_service),
) -> LeaveMatchResponse:
    """매치 이탈 - 시작 직전 구간에서는 거부, 그 외에는 수수료 차감 후 환불"""
    return match_service.leave_match(match_id, current_user.id)


@router.get("/{match_id}/my-slot")
async def get_my_slot(
    match_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    match_service: MatchService = Depends(get_match_service),
) -> dict:
    slot_number = match_service.get_slot(match_id, current_user.id)
    return {
        "match_id": match_id,
        "joined": slot_number is not None,
        "slot_number": slot_number,
    }


@router.get("/{match_id}/room", response_model=RoomCredentials)
async def get_room_credentials(
    match_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    match_service: MatchService = Depends(get_match_service),
) -> RoomCredentials:
    return match_service.get_room_credentials(match_id, current_user.id)


# ============================================================================
# 관리자
# ============================================================================


@router.post("", response_model=Match, status_code=201)
async def create_match(
    request: MatchCreate,
    admin: UserSchema = Depends(require_admin),
    match_service: MatchService = Depends(get_match_service),
) -> Match:
    return match_service.create_match(admin.id, request)


@router.post("/open-due-registrations")
async def open_due_registrations(
    admin: UserSchema = Depends(require_admin),
    match_service: MatchService = Depends(get_match_service),
) -> dict:
    """스케줄러/관리자용: 모집 시작 시각이 지난 upcoming 매치 일괄 오픈"""
    opened = match_service.open_due_registrations()
    return {"opened_count": len(opened), "match_ids": opened}


@router.delete("/{match_id}", status_code=204)
async def delete_match(
    match_id: int = Path(..., gt=0),
    admin: UserSchema = Depends(require_admin),
    match_service: MatchService = Depends(get_match_service),
) -> None:
    match_service.delete_match(match_id, admin.id)


@router.post("/{match_id}/open-registration", response_model=Match)
async def open_registration(
    match_id: int = Path(..., gt=0),
    admin: UserSchema = Depends(require_admin),
    match_service: MatchService = Depends(get_match_service),
) -> Match:
    return match_service.open_registration(match_id, admin.id)


@router.post("/{match_id}/room-credentials", response_model=Match)
async def set_room_credentials(
    request: RoomCredentialsRequest,
    match_id: int = Path(..., gt=0),
    admin: UserSchema = Depends(require_admin),
    match_service: MatchService = Depends(get_match_service),
) -> Match:
    return match_service.set_room_credentials(
        match_id,
        admin.id,
        request.room_id,
        request.room_password,
        reveal_now=request.reveal_now,
    )


@router.post("/{match_id}/start", response_model=Match)
async def start_match(
    match_id: int = Path(..., gt=0),
    admin: UserSchema = Depends(require_admin),
    match_service: MatchService = Depends(get_match_service),
) -> Match:
    return match_service.start_match(match_id, admin.id)


@router.post("/{match_id}/result-pending", response_model=Match)
async def mark_result_pending(
    match_id: int = Path(..., gt=0),
    admin: UserSchema = Depends(require_admin),
    match_service: MatchService = Depends(get_match_service),
) -> Match:
    return match_service.mark_result_pending(match_id, admin.id)


@router.post("/{match_id}/complete", response_model=PrizeSettlementResult)
async def declare_results(
    request: DeclareResultsRequest,
    match_id: int = Path(..., gt=0),
    admin: UserSchema = Depends(require_admin),
    match_service: MatchService = Depends(get_match_service),
) -> PrizeSettlementResult:
    """
    결과 발표 + 상금 지급

    이미 완료된 매치에 대한 재요청은 already_completed=true로 응답하고
    추가 지급은 발생하지 않는다.
    """
    return match_service.declare_results(match_id, admin.id, request.results)


@router.post("/{match_id}/cancel", response_model=CancellationResult)
async def cancel_match(
    request: CancelMatchRequest,
    match_id: int = Path(..., gt=0),
    admin: UserSchema = Depends(require_admin),
    match_service: MatchService = Depends(get_match_service),
) -> CancellationResult:
    result = match_service.cancel_match(match_id, request.reason, admin_id=admin.id)
    if result.failures:
        logger.warning(
            f"Match {match_id} cancelled with {len(result.failures)} refund failures"
        )
    return result


@router.post("/{match_id}/retry-refunds", response_model=CancellationResult)
async def retry_refunds(
    match_id: int = Path(..., gt=0),
    admin: UserSchema = Depends(require_admin),
    match_service: MatchService = Depends(get_match_service),
) -> CancellationResult:
    return match_service.retry_cancellation_refunds(match_id, admin_id=admin.id)
