import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from arenaapi.core.exceptions import (
    AlreadyJoinedError,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InsufficientBalanceError,
    NotJoinableError,
)
from arenaapi.database.session import transactional
from arenaapi.models.match import MatchStatusEnum
from arenaapi.models.transaction import TransactionCategory
from arenaapi.repositories.match_repository import (
    MatchParticipantRepository,
    MatchRepository,
)
from arenaapi.services.match_slot_service import MatchSlotService
from arenaapi.services.refund_policy import RefundPolicy
from arenaapi.services.wallet_ledger_service import WalletLedgerService


@pytest.fixture
def slot_service(db_session):
    return MatchSlotService(
        db_session,
        refund_policy=RefundPolicy(cancellation_fee_rate=Decimal("0.10"), cutoff_minutes=60),
    )


@pytest.fixture
def ledger(db_session):
    return WalletLedgerService(db_session)


def _join(slot_service, match_id, user_id):
    return slot_service.join(match_id, user_id, f"IGN{user_id}", f"Player{user_id}")


class TestJoin:
    """매치 참가"""

    def test_two_players_fill_match_and_third_is_refused(
        self, db_session, slot_service, ledger, make_user, make_match
    ):
        # Given: 2슬롯, 참가비 50
        match_id = make_match(entry_fee="50", max_slots=2)
        user_a = make_user(balance="500")
        user_b = make_user(balance="500")
        user_c = make_user(balance="500")

        # When
        joined_a = _join(slot_service, match_id, user_a)
        joined_b = _join(slot_service, match_id, user_b)
        with pytest.raises(NotJoinableError) as exc_info:
            _join(slot_service, match_id, user_c)

        # Then
        assert joined_a.slot_number == 1
        assert joined_a.wallet_balance == Decimal("450")
        assert joined_b.slot_number == 2
        assert joined_b.wallet_balance == Decimal("450")
        assert exc_info.value.message == "match full"
        assert ledger.get_balance(user_c) == Decimal("500")

        match = MatchRepository(db_session).get_by_id(match_id)
        participants = MatchParticipantRepository(db_session).list_for_match(match_id)
        assert match.filled_slots == 2
        assert len(participants) == match.filled_slots

    def test_insufficient_balance_rolls_back_slot(
        self, db_session, slot_service, ledger, make_user, make_match
    ):
        match_id = make_match(entry_fee="50", max_slots=4)
        user_id = make_user(balance="10")

        with pytest.raises(InsufficientBalanceError):
            _join(slot_service, match_id, user_id)

        assert ledger.get_balance(user_id) == Decimal("10")
        assert MatchRepository(db_session).get_by_id(match_id).filled_slots == 0
        assert not slot_service.has_joined(match_id, user_id)

    def test_closed_match_reports_closed_before_full(
        self, db_session, slot_service, make_user, make_match
    ):
        match_id = make_match(max_slots=2, status=MatchStatusEnum.UPCOMING)
        user_id = make_user(balance="500")

        with pytest.raises(NotJoinableError) as exc_info:
            _join(slot_service, match_id, user_id)

        assert exc_info.value.message == "registration closed"

    def test_full_match_reported_before_duplicate(
        self, db_session, slot_service, make_user, make_match
    ):
        match_id = make_match(max_slots=2)
        user_a = make_user(balance="500")
        user_b = make_user(balance="500")
        _join(slot_service, match_id, user_a)
        _join(slot_service, match_id, user_b)

        with pytest.raises(NotJoinableError) as exc_info:
            _join(slot_service, match_id, user_a)

        assert exc_info.value.message == "match full"

    def test_duplicate_join_is_rejected_without_second_charge(
        self, db_session, slot_service, ledger, make_user, make_match
    ):
        match_id = make_match(entry_fee="50", max_slots=5)
        user_id = make_user(balance="500")
        _join(slot_service, match_id, user_id)

        with pytest.raises(AlreadyJoinedError):
            _join(slot_service, match_id, user_id)

        assert ledger.get_balance(user_id) == Decimal("450")
        assert MatchRepository(db_session).get_by_id(match_id).filled_slots == 1

    def test_last_slot_taken_after_precheck_reports_full(
        self, db_session, slot_service, ledger, make_user, make_match
    ):
        match_id = make_match(entry_fee="50", max_slots=1)
        stale = MatchRepository(db_session).get_by_id(match_id)
        winner = make_user(balance="500")
        loser = make_user(balance="500")
        _join(slot_service, match_id, winner)

        # 마지막 슬롯이 채워지기 전의 매치 상태로 사전 검사를 통과
        with patch.object(slot_service, "_get_match", return_value=stale):
            with pytest.raises(NotJoinableError) as exc_info:
                _join(slot_service, match_id, loser)

        assert exc_info.value.message == "match full"
        assert ledger.get_balance(loser) == Decimal("500")
        assert not slot_service.has_joined(match_id, loser)
        assert MatchRepository(db_session).get_by_id(match_id).filled_slots == 1

    def test_reserved_slot_without_free_number_rolls_back(
        self, db_session, slot_service, ledger, make_user, make_match
    ):
        match_id = make_match(entry_fee="50", max_slots=2)
        for _ in range(2):
            _join(slot_service, match_id, make_user(balance="500"))
        # 다른 요청의 참가자 행은 들어갔지만 카운터는 아직 반영 전
        with transactional(db_session):
            MatchRepository(db_session).update_fields(match_id, filled_slots=1)
        late = make_user(balance="500")

        with pytest.raises(ConflictError):
            _join(slot_service, match_id, late)

        assert ledger.get_balance(late) == Decimal("500")
        assert not slot_service.has_joined(match_id, late)
        assert MatchRepository(db_session).get_by_id(match_id).filled_slots == 1

    def test_banned_user_cannot_join(self, db_session, slot_service, make_user, make_match):
        match_id = make_match()
        user_id = make_user(balance="500", is_banned=True)

        with pytest.raises(ForbiddenError):
            _join(slot_service, match_id, user_id)

    def test_free_match_records_no_ledger_entry(
        self, db_session, slot_service, ledger, make_user, make_match
    ):
        match_id = make_match(entry_fee="0", max_slots=3)
        user_id = make_user()

        result = _join(slot_service, match_id, user_id)

        assert result.transaction_id is None
        assert result.wallet_balance == Decimal("0")
        assert ledger.get_history(user_id).total_count == 0


class TestLeave:
    """시작 전 자발적 이탈"""

    def test_leave_refunds_entry_fee_minus_ten_percent(
        self, db_session, slot_service, ledger, make_user, make_match
    ):
        match_id = make_match(entry_fee="100", max_slots=4, starts_in=timedelta(hours=48))
        user_id = make_user(balance="500")
        _join(slot_service, match_id, user_id)

        result = slot_service.leave(match_id, user_id)

        assert result.refund_amount == Decimal("90")
        assert result.cancellation_fee == Decimal("10")
        assert result.wallet_balance == Decimal("490")
        assert not slot_service.has_joined(match_id, user_id)
        assert MatchRepository(db_session).get_by_id(match_id).filled_slots == 0

        refunds = ledger.get_history(user_id, category=TransactionCategory.MATCH_REFUND)
        assert refunds.total_count == 1
        assert ledger.verify_integrity(user_id).status == "OK"

    def test_leave_inside_cutoff_is_refused(
        self, db_session, slot_service, ledger, make_user, make_match
    ):
        match_id = make_match(entry_fee="100", starts_in=timedelta(minutes=30))
        user_id = make_user(balance="500")
        _join(slot_service, match_id, user_id)

        with pytest.raises(BadRequestError):
            slot_service.leave(match_id, user_id)

        assert slot_service.has_joined(match_id, user_id)
        assert ledger.get_balance(user_id) == Decimal("400")

    def test_leave_without_joining(self, db_session, slot_service, make_user, make_match):
        match_id = make_match()
        user_id = make_user(balance="500")

        with pytest.raises(BadRequestError):
            slot_service.leave(match_id, user_id)

    def test_freed_slot_is_reused(self, db_session, slot_service, make_user, make_match):
        match_id = make_match(entry_fee="10", max_slots=3)
        first = make_user(balance="100")
        second = make_user(balance="100")
        third = make_user(balance="100")
        _join(slot_service, match_id, first)
        _join(slot_service, match_id, second)

        slot_service.leave(match_id, first)
        rejoined = _join(slot_service, match_id, third)

        assert rejoined.slot_number == 1
        assert slot_service.get_slot(match_id, second) == 2
