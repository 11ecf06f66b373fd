import pytest
from decimal import Decimal
from unittest.mock import patch

from arenaapi.core.exceptions import (
    BadRequestError,
    EligibilityError,
    ForbiddenError,
    InsufficientBalanceError,
    ValidationError,
)
from arenaapi.models.transaction import TransactionCategory, TransactionStatus
from arenaapi.models.withdrawal import PaymentMethodEnum, WithdrawalStatusEnum
from arenaapi.repositories.user_repository import UserRepository
from arenaapi.repositories.wallet_transaction_repository import (
    WalletTransactionRepository,
)
from arenaapi.schemas.withdrawal import (
    BankDetails,
    EligibilityResult,
    WithdrawalCreateRequest,
)
from arenaapi.services.tds_policy import FlatRateTdsPolicy
from arenaapi.services.wallet_ledger_service import WalletLedgerService
from arenaapi.services.withdrawal_service import WithdrawalService


@pytest.fixture
def withdrawal_service(db_session):
    return WithdrawalService(db_session, tds_policy=FlatRateTdsPolicy(Decimal("0.02")))


@pytest.fixture
def ledger(db_session):
    return WalletLedgerService(db_session)


@pytest.fixture
def finance_id(make_user):
    return make_user(role="finance")


def upi_request(amount="1000", **kwargs):
    return WithdrawalCreateRequest(
        amount=Decimal(amount), method=PaymentMethodEnum.UPI, upi_id="player@okbank", **kwargs
    )


class TestCreateRequest:
    def test_kyc_unverified_user_is_refused_without_ledger_entry(
        self, withdrawal_service, ledger, make_user
    ):
        user_id = make_user(balance="5000", is_kyc_verified=False)

        with pytest.raises(EligibilityError) as exc_info:
            withdrawal_service.create_request(user_id, upi_request())

        assert exc_info.value.message == "KYC verification required"
        assert ledger.get_balance(user_id) == Decimal("5000")
        assert ledger.get_history(user_id).total_count == 1  # 초기 입금만

    def test_gross_amount_is_held_and_net_is_after_tds(
        self, db_session, withdrawal_service, ledger, make_user
    ):
        user_id = make_user(balance="5000", is_kyc_verified=True)

        withdrawal = withdrawal_service.create_request(user_id, upi_request("1000"))

        assert withdrawal.status == WithdrawalStatusEnum.PENDING
        assert withdrawal.amount == Decimal("1000")
        assert withdrawal.tds == Decimal("20")
        assert withdrawal.net_amount == Decimal("980")
        assert withdrawal.wallet_balance_at_request == Decimal("5000")
        assert ledger.get_balance(user_id) == Decimal("4000")

        hold = WalletTransactionRepository(db_session).get_by_id(withdrawal.hold_transaction_id)
        assert hold.amount == Decimal("1000")
        assert hold.status == TransactionStatus.PENDING
        assert hold.category == TransactionCategory.WITHDRAWAL
        assert ledger.verify_integrity(user_id).status == "OK"

    def test_reject_restores_gross_amount(
        self, db_session, withdrawal_service, ledger, make_user, finance_id
    ):
        user_id = make_user(balance="5000", is_kyc_verified=True)
        withdrawal = withdrawal_service.create_request(user_id, upi_request("1000"))

        rejected = withdrawal_service.reject(withdrawal.id, finance_id, "Name mismatch")

        assert rejected.status == WithdrawalStatusEnum.REJECTED
        assert rejected.rejection_reason == "Name mismatch"
        assert ledger.get_balance(user_id) == Decimal("5000")

        refunds = ledger.get_history(user_id, category=TransactionCategory.WITHDRAWAL_REFUND)
        assert refunds.total_count == 1
        assert refunds.entries[0].amount == Decimal("1000")
        hold = WalletTransactionRepository(db_session).get_by_id(withdrawal.hold_transaction_id)
        assert hold.status == TransactionStatus.REVERSED
        assert ledger.verify_integrity(user_id).status == "OK"

    def test_minimum_amount_and_balance(self, withdrawal_service, ledger, make_user):
        user_id = make_user(balance="300", is_kyc_verified=True)

        with pytest.raises(ValidationError):
            withdrawal_service.create_request(user_id, upi_request("50"))
        with pytest.raises(InsufficientBalanceError):
            withdrawal_service.create_request(user_id, upi_request("500"))

        assert ledger.get_balance(user_id) == Decimal("300")

    def test_invalid_upi_id(self, withdrawal_service, make_user):
        user_id = make_user(balance="1000", is_kyc_verified=True)
        request = WithdrawalCreateRequest(
            amount=Decimal("200"), method=PaymentMethodEnum.UPI, upi_id="not-a-upi"
        )

        with pytest.raises(ValidationError):
            withdrawal_service.create_request(user_id, request)

    def test_saved_bank_method_is_deduplicated(self, withdrawal_service, make_user, finance_id):
        user_id = make_user(balance="5000", is_kyc_verified=True)
        bank = BankDetails(
            account_holder_name="Asha Rao",
            account_number="001122334455",
            ifsc_code="hdfc0001234",
            bank_name="HDFC",
        )

        first = withdrawal_service.create_request(
            user_id,
            WithdrawalCreateRequest(
                amount=Decimal("200"),
                method=PaymentMethodEnum.BANK,
                bank_details=bank,
                save_payment_method=True,
            ),
        )
        withdrawal_service.cancel(first.id, user_id)
        withdrawal_service.create_request(
            user_id,
            WithdrawalCreateRequest(
                amount=Decimal("200"),
                method=PaymentMethodEnum.BANK,
                bank_details=bank,
                save_payment_method=True,
            ),
        )

        saved = withdrawal_service.list_saved_methods(user_id)
        assert len(saved) == 1
        assert saved[0].bank_ifsc == "HDFC0001234"
        assert saved[0].is_default is True
        assert first.bank_ifsc == "HDFC0001234"

    def test_pending_limit_rechecked_under_user_lock(
        self, withdrawal_service, ledger, make_user
    ):
        user_id = make_user(balance="5000", is_kyc_verified=True)
        first = withdrawal_service.create_request(user_id, upi_request("1000"))

        # 동시 요청이 이미 자격 확인을 통과한 상황
        with patch.object(
            withdrawal_service,
            "check_eligibility",
            return_value=EligibilityResult(allowed=True),
        ), patch.object(
            withdrawal_service.user_repo,
            "lock_for_update",
            wraps=withdrawal_service.user_repo.lock_for_update,
        ) as lock:
            with pytest.raises(EligibilityError) as exc_info:
                withdrawal_service.create_request(user_id, upi_request("1000"))

        lock.assert_called_once_with(user_id)
        assert exc_info.value.message == "You already have a pending withdrawal request"
        assert ledger.get_balance(user_id) == Decimal("4000")
        assert withdrawal_service.withdrawal_repo.count_pending(user_id) == 1
        assert first.status == WithdrawalStatusEnum.PENDING


class TestEligibilityOrder:
    def test_kyc_is_checked_before_ban(self, withdrawal_service, make_user):
        user_id = make_user(balance="1000", is_kyc_verified=False, is_banned=True)

        result = withdrawal_service.check_eligibility(user_id)

        assert result.allowed is False
        assert result.reason == "KYC verification required"

    def test_pending_limit_is_checked_before_ban(
        self, db_session, withdrawal_service, make_user
    ):
        user_id = make_user(balance="1000", is_kyc_verified=True)
        withdrawal_service.create_request(user_id, upi_request("200"))
        UserRepository(db_session).set_banned(user_id)
        db_session.commit()

        result = withdrawal_service.check_eligibility(user_id)

        assert result.allowed is False
        assert result.reason == "You already have a pending withdrawal request"

    def test_banned_user(self, withdrawal_service, make_user):
        user_id = make_user(balance="1000", is_kyc_verified=True, is_banned=True)

        with pytest.raises(EligibilityError) as exc_info:
            withdrawal_service.create_request(user_id, upi_request("200"))

        assert exc_info.value.message == "Account is banned"

    def test_eligibility_response(self, withdrawal_service, make_user):
        user_id = make_user(balance="750", is_kyc_verified=True)

        response = withdrawal_service.get_eligibility(user_id)

        assert response.eligible is True
        assert response.reason is None
        assert response.wallet_balance == Decimal("750")
        assert response.minimum_withdrawal == Decimal("100")


class TestProcessing:
    def test_approve_then_complete_keeps_hold_debited(
        self, db_session, withdrawal_service, ledger, make_user, finance_id
    ):
        user_id = make_user(balance="2000", is_kyc_verified=True)
        withdrawal = withdrawal_service.create_request(user_id, upi_request("1000"))

        withdrawal_service.approve(withdrawal.id, finance_id, "KYC docs ok")
        completed = withdrawal_service.complete(withdrawal.id, finance_id, "UTR123456")

        assert completed.status == WithdrawalStatusEnum.COMPLETED
        assert completed.external_reference == "UTR123456"
        assert completed.completed_at is not None
        assert ledger.get_balance(user_id) == Decimal("1000")
        hold = WalletTransactionRepository(db_session).get_by_id(withdrawal.hold_transaction_id)
        assert hold.status == TransactionStatus.COMPLETED
        assert ledger.verify_integrity(user_id).status == "OK"

    def test_cooldown_after_completed_withdrawal(
        self, withdrawal_service, make_user, finance_id
    ):
        user_id = make_user(balance="2000", is_kyc_verified=True)
        withdrawal = withdrawal_service.create_request(user_id, upi_request("500"))
        withdrawal_service.approve(withdrawal.id, finance_id)
        withdrawal_service.complete(withdrawal.id, finance_id, "UTR1")

        with pytest.raises(EligibilityError) as exc_info:
            withdrawal_service.create_request(user_id, upi_request("500"))

        assert "24 hours" in exc_info.value.message

    def test_complete_requires_approval(self, withdrawal_service, make_user, finance_id):
        user_id = make_user(balance="2000", is_kyc_verified=True)
        withdrawal = withdrawal_service.create_request(user_id, upi_request("500"))

        with pytest.raises(BadRequestError):
            withdrawal_service.complete(withdrawal.id, finance_id, "UTR1")

    def test_reject_requires_reason(self, withdrawal_service, make_user, finance_id):
        user_id = make_user(balance="2000", is_kyc_verified=True)
        withdrawal = withdrawal_service.create_request(user_id, upi_request("500"))

        with pytest.raises(ValidationError):
            withdrawal_service.reject(withdrawal.id, finance_id, " ")

    def test_cancel_by_owner_releases_hold(self, withdrawal_service, ledger, make_user):
        owner = make_user(balance="1000", is_kyc_verified=True)
        other = make_user(balance="1000", is_kyc_verified=True)
        withdrawal = withdrawal_service.create_request(owner, upi_request("400"))

        with pytest.raises(ForbiddenError):
            withdrawal_service.cancel(withdrawal.id, other)
        cancelled = withdrawal_service.cancel(withdrawal.id, owner)

        assert cancelled.status == WithdrawalStatusEnum.CANCELLED
        assert ledger.get_balance(owner) == Decimal("1000")
        with pytest.raises(BadRequestError):
            withdrawal_service.cancel(withdrawal.id, owner)

    def test_queue_reports_pending_totals(self, withdrawal_service, make_user):
        first = make_user(balance="1000", is_kyc_verified=True)
        second = make_user(balance="1000", is_kyc_verified=True)
        withdrawal_service.create_request(first, upi_request("300"))
        withdrawal_service.create_request(second, upi_request("200"))

        queue = withdrawal_service.get_queue()

        assert queue.total_count == 2
        assert queue.pending_count == 2
        assert queue.pending_amount == Decimal("500")
