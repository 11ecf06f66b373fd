"""
매치 슬롯 배정 서비스

참가/이탈 시 슬롯 예약, 참가자 행, 참가비 원장 기록을 하나의 DB 트랜잭션으로
처리한다. 어느 하나라도 실패하면 전부 롤백된다.

참가 조건 검사 순서 (처음 실패한 조건으로 응답):
    1. 매치 status가 참가 가능 상태인지   -> NotJoinableError("registration closed")
    2. 빈 슬롯이 있는지                    -> NotJoinableError("match full")
    3. 이미 참가했는지                     -> AlreadyJoinedError
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from arenaapi.config import Settings, settings as default_settings
from arenaapi.core.exceptions import (
    AlreadyJoinedError,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    NotJoinableError,
)
from arenaapi.database.session import transactional
from arenaapi.models.match import MatchStatusEnum
from arenaapi.models.transaction import ReferenceType, TransactionCategory
from arenaapi.repositories.match_repository import (
    MatchParticipantRepository,
    MatchRepository,
)
from arenaapi.repositories.user_repository import UserRepository
from arenaapi.schemas.match import JoinMatchResponse, LeaveMatchResponse, Match
from arenaapi.schemas.wallet import LedgerReference
from arenaapi.services.refund_policy import RefundPolicy
from arenaapi.services.wallet_ledger_service import WalletLedgerService
from arenaapi.utils.money import ZERO
from arenaapi.utils.timezone_utils import get_utc_now

logger = logging.getLogger(__name__)


class MatchSlotService:
    def __init__(
        self,
        db: Session,
        refund_policy: Optional[RefundPolicy] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or default_settings
        self.refund_policy = refund_policy or RefundPolicy.from_settings(self.settings)
        self.match_repo = MatchRepository(db)
        self.participant_repo = MatchParticipantRepository(db)
        self.user_repo = UserRepository(db)
        self.ledger = WalletLedgerService(db)

    @property
    def joinable_statuses(self) -> List[MatchStatusEnum]:
        return [MatchStatusEnum(s) for s in self.settings.JOINABLE_MATCH_STATUSES]

    @property
    def leave_allowed_statuses(self) -> List[MatchStatusEnum]:
        return [MatchStatusEnum(s) for s in self.settings.LEAVE_ALLOWED_STATUSES]

    def _get_match(self, match_id: int) -> Match:
        match = self.match_repo.get_by_id(match_id)
        if match is None:
            raise NotFoundError("Match not found")
        return match

    def _lowest_free_slot(self, match_id: int, max_slots: int) -> int:
        used = self.participant_repo.used_slot_numbers(match_id)
        for slot_number in range(1, max_slots + 1):
            if slot_number not in used:
                return slot_number
        # filled_slots 예약은 성공했으나 슬롯 번호가 모두 사용 중인 경우
        raise ConflictError("No free slot number available, please retry")

    def join(
        self,
        match_id: int,
        user_id: int,
        in_game_id: str,
        in_game_name: str,
        now: Optional[datetime] = None,
    ) -> JoinMatchResponse:
        """매치 참가: 슬롯 예약 + 참가비 차감 + 참가자 추가 (단일 트랜잭션)"""
        user = self.user_repo.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        if user.is_banned:
            raise ForbiddenError("Account is banned")

        match = self._get_match(match_id)
        joinable = self.joinable_statuses
        transaction_id = None

        with transactional(self.db):
            if match.status not in joinable:
                raise NotJoinableError("registration closed")
            if match.filled_slots >= match.max_slots:
                raise NotJoinableError("match full")
            if self.participant_repo.get_participant(match_id, user_id) is not None:
                raise AlreadyJoinedError()

            if not self.match_repo.try_reserve_slot(match_id, joinable):
                current = self._get_match(match_id)
                if current.status not in joinable:
                    raise NotJoinableError("registration closed")
                raise NotJoinableError("match full")

            slot_number = self._lowest_free_slot(match_id, match.max_slots)

            if match.entry_fee > ZERO:
                transaction = self.ledger.debit(
                    user_id,
                    match.entry_fee,
                    TransactionCategory.MATCH_ENTRY,
                    reference=LedgerReference(type=ReferenceType.MATCH, id=match_id),
                    description=f"Entry fee for {match.title}",
                )
                transaction_id = transaction.id

            try:
                self.participant_repo.create(
                    match_id=match_id,
                    user_id=user_id,
                    slot_number=slot_number,
                    in_game_id=in_game_id,
                    in_game_name=in_game_name,
                    joined_at=now or get_utc_now(),
                )
            except IntegrityError as e:
                # 동시 참가 요청이 같은 사용자 또는 같은 슬롯을 먼저 차지함
                if "user_id" in str(e.orig) or "uq_participant_match_user" in str(e.orig):
                    raise AlreadyJoinedError()
                raise ConflictError("Slot was taken concurrently, please retry")

        balance = self.ledger.get_balance(user_id)
        logger.info(
            f"User {user_id} joined match {match_id} at slot {slot_number} "
            f"(fee {match.entry_fee}, balance {balance})"
        )
        return JoinMatchResponse(
            match_id=match_id,
            slot_number=slot_number,
            entry_fee=match.entry_fee,
            wallet_balance=balance,
            transaction_id=transaction_id,
        )

    def leave(
        self, match_id: int, user_id: int, now: Optional[datetime] = None
    ) -> LeaveMatchResponse:
        """시작 전 자발적 이탈: 슬롯 반환 + 수수료 차감 환불 (단일 트랜잭션)"""
        match = self._get_match(match_id)
        if self.participant_repo.get_participant(match_id, user_id) is None:
            raise BadRequestError("You have not joined this match")

        allowed = self.leave_allowed_statuses
        if match.status not in allowed:
            raise BadRequestError(
                f"Cannot leave match in {match.status.value} status"
            )

        quote = self.refund_policy.compute_leave_refund(
            match.entry_fee, match.scheduled_at, now or get_utc_now()
        )
        if not quote.allowed:
            raise BadRequestError(quote.reason)

        with transactional(self.db):
            if not self.participant_repo.remove(match_id, user_id):
                raise ConflictError("Participation changed concurrently, please retry")
            if not self.match_repo.try_release_slot(match_id, allowed):
                raise ConflictError("Match status changed, please retry")

            if quote.refund_amount > ZERO:
                self.ledger.credit(
                    user_id,
                    quote.refund_amount,
                    TransactionCategory.MATCH_REFUND,
                    reference=LedgerReference(type=ReferenceType.MATCH, id=match_id),
                    description=(
                        f"Refund for leaving {match.title} "
                        f"(cancellation fee {quote.cancellation_fee})"
                    ),
                )

        balance = self.ledger.get_balance(user_id)
        logger.info(
            f"User {user_id} left match {match_id}: refund {quote.refund_amount}, "
            f"fee {quote.cancellation_fee}"
        )
        return LeaveMatchResponse(
            match_id=match_id,
            refund_amount=quote.refund_amount,
            cancellation_fee=quote.cancellation_fee,
            wallet_balance=balance,
        )

    def has_joined(self, match_id: int, user_id: int) -> bool:
        return self.participant_repo.get_participant(match_id, user_id) is not None

    def get_slot(self, match_id: int, user_id: int) -> Optional[int]:
        participant = self.participant_repo.get_participant(match_id, user_id)
        return participant.slot_number if participant else None
