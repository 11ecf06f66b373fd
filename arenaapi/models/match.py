"""
매치 데이터 모델

매치는 고정된 수의 슬롯(1..max_slots)을 가지며, 참가자 목록은
match_participants 테이블에 저장된다.

정합성 규칙:
- filled_slots == 참가자 수 (0 <= filled_slots <= max_slots)
- 한 매치 안에서 user_id, slot_number는 각각 유일
"""

import enum
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.schema import UniqueConstraint

from arenaapi.models.base import BaseModel, IdType, JsonType, Money


class MatchStatusEnum(enum.Enum):
    UPCOMING = "upcoming"
    REGISTRATION_OPEN = "registration_open"
    ROOM_REVEALED = "room_revealed"
    LIVE = "live"
    RESULT_PENDING = "result_pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_MATCH_STATUSES = (MatchStatusEnum.COMPLETED, MatchStatusEnum.CANCELLED)


class Match(BaseModel):
    __tablename__ = "matches"
    __table_args__ = (
        CheckConstraint("max_slots > 0", name="ck_matches_max_slots_positive"),
        CheckConstraint(
            "filled_slots >= 0 AND filled_slots <= max_slots",
            name="ck_matches_filled_slots_range",
        ),
        CheckConstraint("entry_fee >= 0", name="ck_matches_entry_fee_non_negative"),
        Index("idx_matches_status_scheduled", "status", "scheduled_at"),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    game_type: Mapped[str] = mapped_column(String(30), nullable=False)
    mode: Mapped[str] = mapped_column(String(20), default="solo", nullable=False)

    entry_fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    prize_pool: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    per_kill_prize: Mapped[Decimal] = mapped_column(
        Money, default=Decimal("0"), nullable=False
    )
    # [{"position": 1, "prize": "500.00", "label": "1st"}, ...]
    prize_distribution: Mapped[list] = mapped_column(JsonType, default=list, nullable=False)

    max_slots: Mapped[int] = mapped_column(Integer, nullable=False)
    filled_slots: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # 방 정보는 room_credentials_visible 이전에는 노출하지 않음
    room_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    room_password: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    room_credentials_visible: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    room_reveal_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    status: Mapped[MatchStatusEnum] = mapped_column(
        Enum(MatchStatusEnum), default=MatchStatusEnum.UPCOMING, nullable=False
    )

    results_declared_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_by: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refunds_processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_by: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )

    participants: Mapped[List["MatchParticipant"]] = relationship(
        "MatchParticipant",
        back_populates="match",
        order_by="MatchParticipant.slot_number",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Match(id={self.id}, status={self.status}, slots={self.filled_slots}/{self.max_slots})>"


class MatchParticipant(BaseModel):
    __tablename__ = "match_participants"
    __table_args__ = (
        UniqueConstraint("match_id", "user_id", name="uq_participant_match_user"),
        UniqueConstraint("match_id", "slot_number", name="uq_participant_match_slot"),
        Index("idx_participants_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    match_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    slot_number: Mapped[int] = mapped_column(Integer, nullable=False)
    in_game_id: Mapped[str] = mapped_column(String(50), nullable=False)
    in_game_name: Mapped[str] = mapped_column(String(50), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # 결과
    kills: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    position: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    prize_won: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    prize_distributed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # 매치 취소 환불 여부 (실패 시 재시도 대상)
    refunded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    match: Mapped["Match"] = relationship("Match", back_populates="participants")
