import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from arenaapi.core.exceptions import (
    BadRequestError,
    ForbiddenError,
    NotFoundError,
    NotJoinableError,
    ValidationError,
)
from arenaapi.models.match import MatchStatusEnum
from arenaapi.models.transaction import (
    ReferenceType,
    TransactionCategory,
    TransactionStatus,
)
from arenaapi.repositories.wallet_transaction_repository import (
    WalletTransactionRepository,
)
from arenaapi.schemas.match import MatchCreate, MatchResultItem, PrizeDistributionItem
from arenaapi.services.match_service import MatchService
from arenaapi.services.refund_policy import RefundPolicy
from arenaapi.services.wallet_ledger_service import WalletLedgerService
from arenaapi.utils.timezone_utils import get_utc_now


@pytest.fixture
def match_service(db_session):
    return MatchService(
        db_session,
        refund_policy=RefundPolicy(cancellation_fee_rate=Decimal("0.10"), cutoff_minutes=60),
    )


@pytest.fixture
def ledger(db_session):
    return WalletLedgerService(db_session)


def _join(match_service, match_id, user_id):
    return match_service.join_match(match_id, user_id, f"IGN{user_id}", f"Player{user_id}")


PRIZES = [
    {"position": 1, "prize": "500.00", "label": "Winner"},
    {"position": 2, "prize": "200.00", "label": "Runner-up"},
]


class TestCreateAndDelete:
    def test_create_match_starts_upcoming(self, match_service, admin_id):
        request = MatchCreate(
            title="Sunday Showdown",
            game_type="battle_royale",
            entry_fee=Decimal("25"),
            max_slots=50,
            scheduled_at=get_utc_now() + timedelta(days=2),
            prize_distribution=[PrizeDistributionItem(position=1, prize=Decimal("800"))],
        )

        match = match_service.create_match(admin_id, request)

        assert match.status == MatchStatusEnum.UPCOMING
        assert match.filled_slots == 0
        assert match.entry_fee == Decimal("25")
        assert match.prize_distribution[0].prize == Decimal("800")
        assert match.room_reveal_at is not None

    def test_create_match_validates_slots_and_schedule(self, match_service, admin_id):
        too_small = MatchCreate(
            title="Duel",
            game_type="tdm",
            entry_fee=Decimal("10"),
            max_slots=1,
            scheduled_at=get_utc_now() + timedelta(days=1),
        )
        in_past = MatchCreate(
            title="Yesterday",
            game_type="tdm",
            entry_fee=Decimal("10"),
            max_slots=10,
            scheduled_at=get_utc_now() - timedelta(hours=1),
        )

        with pytest.raises(ValidationError):
            match_service.create_match(admin_id, too_small)
        with pytest.raises(ValidationError):
            match_service.create_match(admin_id, in_past)

    def test_delete_only_empty_match(self, match_service, make_user, make_match, admin_id):
        occupied = make_match(max_slots=4)
        empty = make_match(max_slots=4)
        _join(match_service, occupied, make_user(balance="100"))

        with pytest.raises(BadRequestError):
            match_service.delete_match(occupied, admin_id)
        match_service.delete_match(empty, admin_id)

        assert match_service.get_match(occupied).filled_slots == 1
        with pytest.raises(NotFoundError):
            match_service.get_match(empty)


class TestTransitions:
    def test_open_due_registrations_only_opens_matches_inside_window(
        self, match_service, make_match
    ):
        soon = make_match(status=MatchStatusEnum.UPCOMING, starts_in=timedelta(hours=2))
        later = make_match(status=MatchStatusEnum.UPCOMING, starts_in=timedelta(hours=72))

        opened = match_service.open_due_registrations()

        assert opened == [soon]
        assert match_service.get_match(soon).status == MatchStatusEnum.REGISTRATION_OPEN
        assert match_service.get_match(later).status == MatchStatusEnum.UPCOMING

    def test_start_requires_revealed_room(self, match_service, make_match, admin_id):
        match_id = make_match()

        with pytest.raises(BadRequestError):
            match_service.start_match(match_id, admin_id)

        match_service.set_room_credentials(match_id, admin_id, "ROOM42", "secret", reveal_now=True)
        started = match_service.start_match(match_id, admin_id)

        assert started.status == MatchStatusEnum.LIVE

    def test_revealed_credentials_cannot_be_blanked(
        self, match_service, make_match, admin_id
    ):
        match_id = make_match()
        match_service.set_room_credentials(match_id, admin_id, "ROOM1", "pw", reveal_now=True)

        with pytest.raises(ValidationError):
            match_service.set_room_credentials(match_id, admin_id, "", "", reveal_now=False)

        match_service.set_room_credentials(match_id, admin_id, "ROOM2", "pw2", reveal_now=False)
        started = match_service.start_match(match_id, admin_id)

        assert started.status == MatchStatusEnum.LIVE
        assert started.room_credentials_visible is True

    def test_start_refuses_visible_flag_without_room_id(
        self, match_service, make_match, admin_id
    ):
        match_id = make_match(
            status=MatchStatusEnum.ROOM_REVEALED, room_credentials_visible=True
        )

        with pytest.raises(BadRequestError):
            match_service.start_match(match_id, admin_id)

        assert match_service.get_match(match_id).status == MatchStatusEnum.ROOM_REVEALED

    def test_reveal_requires_both_credentials(self, match_service, make_match, admin_id):
        match_id = make_match()

        with pytest.raises(ValidationError):
            match_service.set_room_credentials(match_id, admin_id, "ROOM42", "", reveal_now=True)

        assert match_service.get_match(match_id).status == MatchStatusEnum.REGISTRATION_OPEN

    def test_room_credentials_visible_only_to_participants_after_reveal(
        self, match_service, make_user, make_match, admin_id
    ):
        match_id = make_match(entry_fee="20", max_slots=4)
        player = make_user(balance="100")
        outsider = make_user(balance="100")
        _join(match_service, match_id, player)

        match_service.set_room_credentials(match_id, admin_id, "ROOM7", "pw7", reveal_now=False)
        with pytest.raises(BadRequestError):
            match_service.get_room_credentials(match_id, player)

        match_service.set_room_credentials(match_id, admin_id, "ROOM7", "pw7", reveal_now=True)
        credentials = match_service.get_room_credentials(match_id, player)

        assert credentials.room_id == "ROOM7"
        assert credentials.room_password == "pw7"
        assert credentials.slot_number == 1
        with pytest.raises(ForbiddenError):
            match_service.get_room_credentials(match_id, outsider)

    def test_joining_closes_once_room_is_revealed(
        self, match_service, make_user, make_match, admin_id
    ):
        match_id = make_match(max_slots=4)
        match_service.set_room_credentials(match_id, admin_id, "R1", "P1", reveal_now=True)

        with pytest.raises(NotJoinableError):
            _join(match_service, match_id, make_user(balance="100"))


class TestDeclareResults:
    def _run_to_live(self, match_service, match_id, admin_id):
        match_service.set_room_credentials(match_id, admin_id, "R9", "P9", reveal_now=True)
        match_service.start_match(match_id, admin_id)

    def test_prizes_credited_once(
        self, db_session, match_service, ledger, make_user, make_match, admin_id
    ):
        match_id = make_match(
            entry_fee="50", max_slots=3, per_kill_prize="10", prize_distribution=PRIZES
        )
        winner = make_user(balance="100")
        runner_up = make_user(balance="100")
        fragger = make_user(balance="100")
        for user_id in (winner, runner_up, fragger):
            _join(match_service, match_id, user_id)
        self._run_to_live(match_service, match_id, admin_id)

        results = [
            MatchResultItem(user_id=winner, position=1, kills=3),
            MatchResultItem(user_id=runner_up, position=2, kills=0),
            MatchResultItem(user_id=fragger, position=None, kills=1),
        ]
        settlement = match_service.declare_results(match_id, admin_id, results)
        repeat = match_service.declare_results(match_id, admin_id, results)

        assert settlement.status == MatchStatusEnum.COMPLETED
        assert settlement.credited_count == 3
        assert settlement.total_prize == Decimal("740")
        assert repeat.already_completed is True

        assert ledger.get_balance(winner) == Decimal("580")
        assert ledger.get_balance(runner_up) == Decimal("250")
        assert ledger.get_balance(fragger) == Decimal("60")

        prize_rows = WalletTransactionRepository(db_session).find_by_reference(
            ReferenceType.MATCH, match_id, category=TransactionCategory.MATCH_PRIZE
        )
        assert len(prize_rows) == 3

        detail = match_service.get_match(match_id)
        assert all(p.prize_distributed for p in detail.participants)
        assert detail.results_declared_at is not None

    def test_results_only_for_participants(
        self, match_service, make_user, make_match, admin_id
    ):
        match_id = make_match(max_slots=2, prize_distribution=PRIZES)
        player = make_user(balance="100")
        stranger = make_user(balance="100")
        _join(match_service, match_id, player)
        self._run_to_live(match_service, match_id, admin_id)

        with pytest.raises(ValidationError):
            match_service.declare_results(
                match_id, admin_id, [MatchResultItem(user_id=stranger, position=1)]
            )

        assert match_service.get_match(match_id).status == MatchStatusEnum.LIVE

    def test_cannot_declare_before_live(self, match_service, make_match, admin_id):
        match_id = make_match()

        with pytest.raises(BadRequestError):
            match_service.declare_results(match_id, admin_id, [])


class TestCancellation:
    def test_cancel_refunds_every_participant_in_full(
        self, db_session, match_service, ledger, make_user, make_match, admin_id
    ):
        # Given: 3명 참가, 참가비 100
        match_id = make_match(entry_fee="100", max_slots=5)
        players = [make_user(balance="300") for _ in range(3)]
        for user_id in players:
            _join(match_service, match_id, user_id)

        # When
        result = match_service.cancel_match(match_id, "Server outage", admin_id=admin_id)

        # Then
        assert result.status == MatchStatusEnum.CANCELLED
        assert result.refunded_count == 3
        assert result.total_refunded == Decimal("300")
        assert result.failures == []
        assert result.refunds_processed is True

        match = match_service.get_match(match_id)
        assert match.status == MatchStatusEnum.CANCELLED
        assert match.refunds_processed is True
        assert match.cancellation_reason == "Server outage"

        refunds = WalletTransactionRepository(db_session).find_by_reference(
            ReferenceType.MATCH, match_id, category=TransactionCategory.MATCH_REFUND
        )
        assert len(refunds) == 3
        assert all(r.status == TransactionStatus.COMPLETED for r in refunds)
        assert all(r.amount == Decimal("100") for r in refunds)
        for user_id in players:
            assert ledger.get_balance(user_id) == Decimal("300")
            assert ledger.verify_integrity(user_id).status == "OK"

    def test_failed_refund_is_reported_and_retried_alone(
        self, match_service, ledger, make_user, make_match, admin_id
    ):
        match_id = make_match(entry_fee="100", max_slots=3)
        players = [make_user(balance="100") for _ in range(3)]
        for user_id in players:
            _join(match_service, match_id, user_id)
        unlucky = players[2]
        credit = match_service.ledger.credit

        def flaky_credit(user_id, *args, **kwargs):
            if user_id == unlucky:
                raise RuntimeError("ledger unavailable")
            return credit(user_id, *args, **kwargs)

        with patch.object(match_service.ledger, "credit", side_effect=flaky_credit):
            result = match_service.cancel_match(match_id, "Server outage", admin_id=admin_id)

        assert result.refunded_count == 2
        assert [f.user_id for f in result.failures] == [unlucky]
        assert result.refunds_processed is False
        assert match_service.get_match(match_id).refunds_processed is False
        assert ledger.get_balance(unlucky) == Decimal("0")

        retry = match_service.retry_cancellation_refunds(match_id, admin_id=admin_id)

        assert retry.refunded_count == 1
        assert retry.failures == []
        assert retry.refunds_processed is True
        assert match_service.get_match(match_id).refunds_processed is True
        for user_id in players:
            assert ledger.get_balance(user_id) == Decimal("100")
            assert ledger.verify_integrity(user_id).status == "OK"

    def test_retry_after_full_refund_pays_nothing(
        self, match_service, ledger, make_user, make_match, admin_id
    ):
        match_id = make_match(entry_fee="100", max_slots=2)
        user_id = make_user(balance="100")
        _join(match_service, match_id, user_id)
        match_service.cancel_match(match_id, "Weather", admin_id=admin_id)

        retry = match_service.retry_cancellation_refunds(match_id, admin_id=admin_id)

        assert retry.refunded_count == 0
        assert ledger.get_balance(user_id) == Decimal("100")

    def test_cancel_requires_reason_and_non_terminal_status(
        self, match_service, make_match, admin_id
    ):
        match_id = make_match()

        with pytest.raises(ValidationError):
            match_service.cancel_match(match_id, "   ", admin_id=admin_id)

        match_service.cancel_match(match_id, "No players", admin_id=admin_id)
        with pytest.raises(BadRequestError):
            match_service.cancel_match(match_id, "Again", admin_id=admin_id)

    def test_retry_only_for_cancelled_match(self, match_service, make_match, admin_id):
        match_id = make_match()

        with pytest.raises(BadRequestError):
            match_service.retry_cancellation_refunds(match_id, admin_id=admin_id)
