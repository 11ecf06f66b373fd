"""
매치 라이프사이클 서비스

상태 전이:
    upcoming -> registration_open -> room_revealed -> live
             -> result_pending -> completed
    (completed/cancelled 이외의 모든 상태) -> cancelled

모든 전이는 조건부 UPDATE(WHERE status = 이전 상태)로 수행되므로 같은 전이를
동시에 두 번 요청해도 한 번만 적용된다.

- 결과 발표(declare_results): 상금 지급과 completed 전환이 하나의 트랜잭션.
  이미 completed인 매치는 아무것도 하지 않는다.
- 취소(cancel_match): status를 먼저 cancelled로 바꿔 신규 참가를 막은 뒤,
  참가자별로 개별 트랜잭션에서 참가비 전액을 환불한다. 일부 실패는 결과에
  모아서 반환하며, retry_cancellation_refunds로 재시도한다.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from arenaapi.config import Settings, settings as default_settings
from arenaapi.core.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from arenaapi.database.session import transactional
from arenaapi.models.match import MatchStatusEnum, TERMINAL_MATCH_STATUSES
from arenaapi.models.transaction import ReferenceType, TransactionCategory
from arenaapi.repositories.match_repository import (
    MatchParticipantRepository,
    MatchRepository,
)
from arenaapi.schemas.match import (
    CancellationResult,
    JoinMatchResponse,
    LeaveMatchResponse,
    Match,
    MatchCreate,
    MatchDetail,
    MatchListResponse,
    MatchResultItem,
    PayoutFailure,
    PrizeSettlementResult,
    RoomCredentials,
)
from arenaapi.schemas.pagination import PaginationLimits
from arenaapi.schemas.wallet import LedgerReference
from arenaapi.services.admin_log_service import AdminLogService
from arenaapi.services.match_slot_service import MatchSlotService
from arenaapi.services.notification_service import NotificationService
from arenaapi.services.refund_policy import RefundPolicy
from arenaapi.services.wallet_ledger_service import WalletLedgerService
from arenaapi.utils.money import ZERO, to_money
from arenaapi.utils.timezone_utils import as_utc, get_utc_now

logger = logging.getLogger(__name__)


class MatchService:
    """매치 생성/조회, 상태 전이, 상금 정산, 취소 환불"""

    def __init__(
        self,
        db: Session,
        refund_policy: Optional[RefundPolicy] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or default_settings
        self.match_repo = MatchRepository(db)
        self.participant_repo = MatchParticipantRepository(db)
        self.ledger = WalletLedgerService(db)
        self.slots = MatchSlotService(db, refund_policy=refund_policy, settings=self.settings)
        self.notifications = NotificationService(db)
        self.admin_logs = AdminLogService(db)

    # ------------------------------------------------------------------
    # 조회 / 생성 / 삭제
    # ------------------------------------------------------------------

    def _get_match(self, match_id: int) -> Match:
        match = self.match_repo.get_by_id(match_id)
        if match is None:
            raise NotFoundError("Match not found")
        return match

    def get_match(self, match_id: int) -> MatchDetail:
        match = self.match_repo.get_detail(match_id)
        if match is None:
            raise NotFoundError("Match not found")
        return match

    def list_matches(
        self,
        status: Optional[MatchStatusEnum] = None,
        game_type: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> MatchListResponse:
        limit = min(limit, PaginationLimits.MATCH_LIST["max"])
        matches, total_count = self.match_repo.list_matches(
            status=status, game_type=game_type, limit=limit, offset=offset
        )
        return MatchListResponse(
            matches=matches,
            total_count=total_count,
            has_next=offset + len(matches) < total_count,
        )

    def create_match(self, admin_id: int, request: MatchCreate) -> Match:
        if not (
            self.settings.MIN_MATCH_SLOTS <= request.max_slots <= self.settings.MAX_MATCH_SLOTS
        ):
            raise ValidationError(
                f"max_slots must be between {self.settings.MIN_MATCH_SLOTS} "
                f"and {self.settings.MAX_MATCH_SLOTS}"
            )
        scheduled_at = as_utc(request.scheduled_at)
        if scheduled_at <= get_utc_now():
            raise ValidationError("Match must be scheduled in the future")

        room_reveal_at = request.room_reveal_at or (
            scheduled_at - timedelta(minutes=self.settings.ROOM_REVEAL_LEAD_MINUTES)
        )
        prize_distribution = [
            {"position": item.position, "prize": str(to_money(item.prize)), "label": item.label}
            for item in sorted(request.prize_distribution, key=lambda i: i.position)
        ]

        with transactional(self.db):
            match = self.match_repo.create(
                title=request.title,
                description=request.description,
                game_type=request.game_type,
                mode=request.mode,
                entry_fee=to_money(request.entry_fee),
                prize_pool=to_money(request.prize_pool),
                per_kill_prize=to_money(request.per_kill_prize),
                prize_distribution=prize_distribution,
                max_slots=request.max_slots,
                filled_slots=0,
                scheduled_at=scheduled_at,
                room_reveal_at=room_reveal_at,
                status=MatchStatusEnum.UPCOMING,
                created_by=admin_id,
            )

        logger.info(f"Match {match.id} created by admin {admin_id}: {match.title}")
        self.admin_logs.log(
            admin_id, "match_create", "match", match.id, f"Created match {match.title}"
        )
        return match

    def delete_match(self, match_id: int, admin_id: int) -> None:
        """참가자가 한 명도 없는 매치만 삭제"""
        match = self._get_match(match_id)
        with transactional(self.db):
            if not self.match_repo.delete_if_empty(match_id):
                raise BadRequestError(
                    "Cannot delete a match with joined participants",
                    details={"filled_slots": match.filled_slots},
                )

        logger.info(f"Match {match_id} deleted by admin {admin_id}")
        self.admin_logs.log(
            admin_id,
            "match_delete",
            "match",
            match_id,
            f"Deleted match {match.title}",
            severity="medium",
        )

    # ------------------------------------------------------------------
    # 참가 / 이탈 (MatchSlotService 위임)
    # ------------------------------------------------------------------

    def join_match(
        self, match_id: int, user_id: int, in_game_id: str, in_game_name: str
    ) -> JoinMatchResponse:
        return self.slots.join(match_id, user_id, in_game_id, in_game_name)

    def leave_match(self, match_id: int, user_id: int) -> LeaveMatchResponse:
        return self.slots.leave(match_id, user_id)

    def has_joined(self, match_id: int, user_id: int) -> bool:
        return self.slots.has_joined(match_id, user_id)

    def get_slot(self, match_id: int, user_id: int) -> Optional[int]:
        return self.slots.get_slot(match_id, user_id)

    # ------------------------------------------------------------------
    # 상태 전이
    # ------------------------------------------------------------------

    def _transition(
        self,
        match: Match,
        from_status: MatchStatusEnum,
        to_status: MatchStatusEnum,
        **values,
    ) -> None:
        """match.status 검사 후 조건부 전이 (호출자의 트랜잭션 안에서)"""
        if match.status != from_status:
            raise BadRequestError(
                f"Cannot move match from {match.status.value} to {to_status.value}",
                details={"expected_status": from_status.value},
            )
        if not self.match_repo.transition_status(match.id, [from_status], to_status, **values):
            raise ConflictError(
                "Match status changed concurrently, please retry",
                details={"match_id": match.id},
            )

    def open_registration(self, match_id: int, admin_id: Optional[int] = None) -> Match:
        """upcoming -> registration_open"""
        match = self._get_match(match_id)
        with transactional(self.db):
            self._transition(
                match, MatchStatusEnum.UPCOMING, MatchStatusEnum.REGISTRATION_OPEN
            )
        logger.info(f"Registration opened for match {match_id}")
        self.admin_logs.log(
            admin_id, "match_open_registration", "match", match_id, "Opened registration"
        )
        return self._get_match(match_id)

    def open_due_registrations(self, now: Optional[datetime] = None) -> List[int]:
        """스케줄러 트리거: 시작 REGISTRATION_LEAD_HOURS 이내인 upcoming 매치 오픈"""
        now = as_utc(now) if now is not None else get_utc_now()
        threshold = now + timedelta(hours=self.settings.REGISTRATION_LEAD_HOURS)

        opened = []
        for match in self.match_repo.find_due_for_registration(threshold):
            with transactional(self.db):
                changed = self.match_repo.transition_status(
                    match.id,
                    [MatchStatusEnum.UPCOMING],
                    MatchStatusEnum.REGISTRATION_OPEN,
                )
            if changed:
                opened.append(match.id)

        if opened:
            logger.info(f"Opened registration for {len(opened)} matches: {opened}")
        return opened

    def set_room_credentials(
        self,
        match_id: int,
        admin_id: int,
        room_id: str,
        room_password: str,
        reveal_now: bool = False,
    ) -> Match:
        """방 정보 설정. reveal_now이면 registration_open -> room_revealed 전환."""
        match = self._get_match(match_id)
        room_id = (room_id or "").strip()
        room_password = (room_password or "").strip()

        editable = (
            MatchStatusEnum.UPCOMING,
            MatchStatusEnum.REGISTRATION_OPEN,
            MatchStatusEnum.ROOM_REVEALED,
        )
        if match.status not in editable:
            raise BadRequestError(
                f"Cannot set room credentials for match in {match.status.value} status"
            )
        already_revealed = match.status == MatchStatusEnum.ROOM_REVEALED
        if (reveal_now or already_revealed) and (not room_id or not room_password):
            raise ValidationError("Room ID and password are required to reveal credentials")

        revealed = False
        with transactional(self.db):
            if reveal_now and match.status == MatchStatusEnum.REGISTRATION_OPEN:
                self._transition(
                    match,
                    MatchStatusEnum.REGISTRATION_OPEN,
                    MatchStatusEnum.ROOM_REVEALED,
                    room_id=room_id,
                    room_password=room_password,
                    room_credentials_visible=True,
                )
                revealed = True
            elif already_revealed:
                self._transition(
                    match,
                    match.status,
                    match.status,
                    room_id=room_id,
                    room_password=room_password,
                )
                revealed = reveal_now
            elif reveal_now:
                raise BadRequestError("Registration must be open before revealing the room")
            else:
                # 공개 전 상태에서만 비우기 허용
                self._transition(
                    match,
                    match.status,
                    match.status,
                    room_id=room_id or None,
                    room_password=room_password or None,
                )

        logger.info(
            f"Room credentials set for match {match_id} by admin {admin_id} (revealed={revealed})"
        )
        self.admin_logs.log(
            admin_id,
            "match_room_credentials",
            "match",
            match_id,
            f"Set room credentials (reveal={reveal_now})",
        )
        if revealed:
            for participant in self.participant_repo.list_for_match(match_id):
                self.notifications.notify(
                    participant.user_id,
                    "room_revealed",
                    "Room Details Available",
                    f"Room details for {match.title} are now available.",
                    reference_type="match",
                    reference_id=match_id,
                )
        return self._get_match(match_id)

    def get_room_credentials(self, match_id: int, user_id: int) -> RoomCredentials:
        """참가자에게만, 공개 이후에만 방 정보 제공"""
        self._get_match(match_id)
        participant = self.participant_repo.get_participant(match_id, user_id)
        if participant is None:
            raise ForbiddenError("You have not joined this match")

        room_id, room_password, visible = self.match_repo.get_room_credentials(match_id)
        if not visible or not room_id:
            raise BadRequestError("Room credentials are not available yet")
        return RoomCredentials(
            match_id=match_id,
            room_id=room_id,
            room_password=room_password,
            slot_number=participant.slot_number,
        )

    def start_match(self, match_id: int, admin_id: int) -> Match:
        """room_revealed -> live (방 정보 공개가 선행되어야 함)"""
        match = self._get_match(match_id)
        room_id, room_password, visible = self.match_repo.get_room_credentials(match_id)
        if not (visible and room_id and room_password):
            raise BadRequestError("Room credentials must be revealed before starting the match")
        with transactional(self.db):
            self._transition(match, MatchStatusEnum.ROOM_REVEALED, MatchStatusEnum.LIVE)

        logger.info(f"Match {match_id} started by admin {admin_id}")
        self.admin_logs.log(admin_id, "match_start", "match", match_id, "Started match")
        return self._get_match(match_id)

    def mark_result_pending(self, match_id: int, admin_id: int) -> Match:
        """live -> result_pending"""
        match = self._get_match(match_id)
        with transactional(self.db):
            self._transition(match, MatchStatusEnum.LIVE, MatchStatusEnum.RESULT_PENDING)

        logger.info(f"Match {match_id} awaiting results")
        self.admin_logs.log(
            admin_id, "match_result_pending", "match", match_id, "Marked result pending"
        )
        return self._get_match(match_id)

    # ------------------------------------------------------------------
    # 결과 발표 / 상금 지급
    # ------------------------------------------------------------------

    @staticmethod
    def _prize_table(match: Match) -> Dict[int, Decimal]:
        return {item.position: to_money(item.prize) for item in match.prize_distribution}

    @staticmethod
    def compute_prize(
        prize_table: Dict[int, Decimal],
        per_kill_prize: Decimal,
        position: Optional[int],
        kills: int,
    ) -> Decimal:
        """prize = 순위 상금(없으면 0) + kills * per_kill_prize"""
        placement = prize_table.get(position, ZERO) if position is not None else ZERO
        return to_money(placement + Decimal(kills) * per_kill_prize)

    def declare_results(
        self, match_id: int, admin_id: int, results: List[MatchResultItem]
    ) -> PrizeSettlementResult:
        """결과 기록 + 상금 지급 + completed 전환 (단일 트랜잭션, 멱등)"""
        match = self._get_match(match_id)
        if match.status == MatchStatusEnum.COMPLETED:
            logger.info(f"Match {match_id} already completed; results ignored")
            return PrizeSettlementResult(
                match_id=match_id,
                status=match.status,
                already_completed=True,
            )
        if match.status not in (MatchStatusEnum.LIVE, MatchStatusEnum.RESULT_PENDING):
            raise BadRequestError(
                f"Cannot declare results for match in {match.status.value} status"
            )

        participants = {p.user_id: p for p in self.participant_repo.list_for_match(match_id)}
        positions = [r.position for r in results if r.position is not None]
        if len(positions) != len(set(positions)):
            raise ValidationError("Duplicate positions in results")
        unknown = [r.user_id for r in results if r.user_id not in participants]
        if unknown:
            raise ValidationError(
                "Results contain users who did not join this match",
                details={"user_ids": unknown},
            )

        prize_table = self._prize_table(match)
        reference = LedgerReference(type=ReferenceType.MATCH, id=match_id)
        credited: List[Tuple[int, Decimal]] = []

        with transactional(self.db):
            if match.status == MatchStatusEnum.LIVE:
                self._transition(match, MatchStatusEnum.LIVE, MatchStatusEnum.RESULT_PENDING)

            for result in results:
                participant = participants[result.user_id]
                prize = self.compute_prize(
                    prize_table, match.per_kill_prize, result.position, result.kills
                )
                if not self.participant_repo.record_result(
                    participant.id, result.position, result.kills, prize
                ):
                    continue
                if prize > ZERO:
                    self.ledger.credit(
                        result.user_id,
                        prize,
                        TransactionCategory.MATCH_PRIZE,
                        reference=reference,
                        description=f"Prize for {match.title}",
                        idempotency_key=f"match_prize:{match_id}:{result.user_id}",
                        processed_by=admin_id,
                    )
                    credited.append((result.user_id, prize))

            if not self.match_repo.transition_status(
                match_id,
                [MatchStatusEnum.RESULT_PENDING],
                MatchStatusEnum.COMPLETED,
                results_declared_at=get_utc_now(),
            ):
                raise ConflictError(
                    "Match status changed concurrently, please retry",
                    details={"match_id": match_id},
                )

        total = to_money(sum((prize for _, prize in credited), ZERO))
        logger.info(
            f"Match {match_id} completed: {len(credited)} prizes credited, total {total}"
        )
        self.admin_logs.log(
            admin_id,
            "match_declare_results",
            "match",
            match_id,
            f"Declared results; {len(credited)} prizes totalling {total}",
            severity="medium",
        )
        for user_id, prize in credited:
            self.notifications.notify(
                user_id,
                "prize_credited",
                "Prize Credited",
                f"You won {prize} in {match.title}.",
                reference_type="match",
                reference_id=match_id,
            )
        return PrizeSettlementResult(
            match_id=match_id,
            status=MatchStatusEnum.COMPLETED,
            credited_count=len(credited),
            total_prize=total,
        )

    # ------------------------------------------------------------------
    # 취소 / 환불
    # ------------------------------------------------------------------

    def cancel_match(
        self, match_id: int, reason: str, admin_id: Optional[int] = None
    ) -> CancellationResult:
        """매치 취소 + 참가자 전액 환불 (참가자별 개별 트랜잭션)"""
        if not reason or not reason.strip():
            raise ValidationError("Cancellation reason is required")
        match = self._get_match(match_id)
        if match.status in TERMINAL_MATCH_STATUSES:
            raise BadRequestError(f"Cannot cancel match in {match.status.value} status")

        cancellable = [s for s in MatchStatusEnum if s not in TERMINAL_MATCH_STATUSES]
        with transactional(self.db):
            if not self.match_repo.transition_status(
                match_id,
                cancellable,
                MatchStatusEnum.CANCELLED,
                cancelled_at=get_utc_now(),
                cancelled_by=admin_id,
                cancellation_reason=reason.strip(),
            ):
                raise ConflictError(
                    "Match status changed concurrently, please retry",
                    details={"match_id": match_id},
                )
        logger.info(f"Match {match_id} cancelled by {admin_id or 'system'}: {reason}")

        result = self._refund_participants(match)
        self.admin_logs.log(
            admin_id,
            "match_cancel",
            "match",
            match_id,
            f"Cancelled match ({reason}); refunded {result.refunded_count}, "
            f"failed {len(result.failures)}",
            severity="high",
        )
        return result

    def retry_cancellation_refunds(
        self, match_id: int, admin_id: Optional[int] = None
    ) -> CancellationResult:
        """취소된 매치에서 환불되지 않은 참가자만 다시 환불"""
        match = self._get_match(match_id)
        if match.status != MatchStatusEnum.CANCELLED:
            raise BadRequestError("Refunds can only be retried for cancelled matches")

        result = self._refund_participants(match)
        self.admin_logs.log(
            admin_id,
            "match_refund_retry",
            "match",
            match_id,
            f"Retried refunds; refunded {result.refunded_count}, failed {len(result.failures)}",
            severity="medium",
        )
        return result

    def _refund_participants(self, match: Match) -> CancellationResult:
        reference = LedgerReference(type=ReferenceType.MATCH, id=match.id)
        refunded: List[int] = []
        failures: List[PayoutFailure] = []

        for participant in self.participant_repo.list_for_match(match.id):
            if participant.refunded:
                continue
            try:
                with transactional(self.db):
                    if not self.participant_repo.mark_refunded(participant.id):
                        continue
                    if match.entry_fee > ZERO:
                        self.ledger.credit(
                            participant.user_id,
                            match.entry_fee,
                            TransactionCategory.MATCH_REFUND,
                            reference=reference,
                            description=f"Refund for cancelled match {match.title}",
                            idempotency_key=f"match_refund:{match.id}:{participant.user_id}",
                        )
                refunded.append(participant.user_id)
            except Exception as e:
                logger.error(
                    f"Refund failed for user {participant.user_id} in match {match.id}: {str(e)}",
                    exc_info=True,
                )
                failures.append(PayoutFailure(user_id=participant.user_id, error=str(e)))

        refunds_processed = not failures
        with transactional(self.db):
            self.match_repo.update_fields(match.id, refunds_processed=refunds_processed)

        for user_id in refunded:
            self.notifications.notify(
                user_id,
                "match_cancelled",
                "Match Cancelled",
                f"{match.title} was cancelled. Your entry fee of {match.entry_fee} has been refunded.",
                reference_type="match",
                reference_id=match.id,
            )

        if failures:
            logger.warning(
                f"Match {match.id} cancellation: {len(failures)} refunds failed, "
                f"{len(refunded)} succeeded"
            )
        return CancellationResult(
            match_id=match.id,
            status=MatchStatusEnum.CANCELLED,
            refunded_count=len(refunded),
            total_refunded=to_money(match.entry_fee * len(refunded)),
            failures=failures,
            refunds_processed=refunds_processed,
        )
