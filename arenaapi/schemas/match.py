from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from arenaapi.models.match import MatchStatusEnum


class PrizeDistributionItem(BaseModel):
    position: int = Field(..., ge=1)
    prize: Decimal = Field(..., ge=0)
    label: Optional[str] = None


class MatchParticipant(BaseModel):
    id: int
    match_id: int
    user_id: int
    slot_number: int
    in_game_id: str
    in_game_name: str
    joined_at: datetime
    kills: int = 0
    position: Optional[int] = None
    prize_won: Decimal = Decimal("0")
    prize_distributed: bool = False
    refunded: bool = False

    class Config:
        from_attributes = True


class Match(BaseModel):
    """매치 정보 (방 정보 제외)"""

    id: int
    title: str
    description: Optional[str] = None
    game_type: str
    mode: str
    entry_fee: Decimal
    prize_pool: Decimal
    per_kill_prize: Decimal
    prize_distribution: List[PrizeDistributionItem] = []
    max_slots: int
    filled_slots: int
    room_credentials_visible: bool = False
    scheduled_at: datetime
    room_reveal_at: Optional[datetime] = None
    status: MatchStatusEnum
    results_declared_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    refunds_processed: bool = False
    created_by: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MatchDetail(Match):
    participants: List[MatchParticipant] = []


class MatchCreate(BaseModel):
    """매치 생성 요청 (관리자)"""

    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    game_type: str = Field(..., min_length=1, max_length=30)
    mode: str = Field("solo", max_length=20)
    entry_fee: Decimal = Field(..., ge=0)
    prize_pool: Decimal = Field(Decimal("0"), ge=0)
    per_kill_prize: Decimal = Field(Decimal("0"), ge=0)
    prize_distribution: List[PrizeDistributionItem] = []
    max_slots: int = Field(..., gt=0)
    scheduled_at: datetime
    room_reveal_at: Optional[datetime] = None

    @field_validator("prize_distribution")
    @classmethod
    def positions_must_be_unique(
        cls, v: List[PrizeDistributionItem]
    ) -> List[PrizeDistributionItem]:
        positions = [item.position for item in v]
        if len(positions) != len(set(positions)):
            raise ValueError("Prize distribution positions must be unique")
        return v


class MatchListResponse(BaseModel):
    matches: List[Match]
    total_count: int
    has_next: bool


class JoinMatchRequest(BaseModel):
    in_game_id: str = Field(..., min_length=1, max_length=50)
    in_game_name: str = Field(..., min_length=1, max_length=50)


class JoinMatchResponse(BaseModel):
    match_id: int
    slot_number: int
    entry_fee: Decimal
    wallet_balance: Decimal
    transaction_id: Optional[int] = None


class LeaveMatchResponse(BaseModel):
    match_id: int
    refund_amount: Decimal
    cancellation_fee: Decimal
    wallet_balance: Decimal


class RoomCredentialsRequest(BaseModel):
    room_id: str = Field(..., max_length=100)
    room_password: str = Field(..., max_length=100)
    reveal_now: bool = False


class RoomCredentials(BaseModel):
    match_id: int
    room_id: str
    room_password: str
    slot_number: Optional[int] = None


class MatchResultItem(BaseModel):
    user_id: int
    position: Optional[int] = Field(None, ge=1)
    kills: int = Field(0, ge=0)


class DeclareResultsRequest(BaseModel):
    results: List[MatchResultItem] = Field(..., min_length=1)


class CancelMatchRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class PayoutFailure(BaseModel):
    """팬아웃 중 개별 사용자 처리 실패"""

    user_id: int
    error: str


class PrizeSettlementResult(BaseModel):
    match_id: int
    status: MatchStatusEnum
    credited_count: int = 0
    total_prize: Decimal = Decimal("0")
    already_completed: bool = False


class CancellationResult(BaseModel):
    match_id: int
    status: MatchStatusEnum
    refunded_count: int = 0
    total_refunded: Decimal = Decimal("0")
    failures: List[PayoutFailure] = []
    refunds_processed: bool = False
