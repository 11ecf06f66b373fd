"""
출금 워크플로 서비스

상태 전이:
    pending  -> approved | cancelled | rejected
    approved -> completed | rejected
    completed / cancelled / rejected 는 종료 상태

요청 시 총액(amount)을 pending debit(보류)으로 차감한다. TDS는 정산 시
원천징수되므로 보류 금액은 순액이 아닌 총액이다.
    - complete: 보류 확정 (추가 금액 이동 없음)
    - reject / cancel: 보류 역분개로 총액 환불
"""

import logging
import re
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from arenaapi.config import Settings, settings as default_settings
from arenaapi.core.exceptions import (
    BadRequestError,
    ConflictError,
    EligibilityError,
    ForbiddenError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from arenaapi.database.session import transactional
from arenaapi.models.transaction import (
    ReferenceType,
    TransactionCategory,
    TransactionStatus,
)
from arenaapi.models.user import UserRole
from arenaapi.models.withdrawal import PaymentMethodEnum, WithdrawalStatusEnum
from arenaapi.repositories.user_repository import UserRepository
from arenaapi.repositories.withdrawal_repository import (
    SavedPaymentMethodRepository,
    WithdrawalRepository,
)
from arenaapi.schemas.pagination import PaginationLimits
from arenaapi.schemas.user import User
from arenaapi.schemas.wallet import LedgerReference
from arenaapi.schemas.withdrawal import (
    EligibilityResponse,
    EligibilityResult,
    SavedPaymentMethod,
    Withdrawal,
    WithdrawalCreateRequest,
    WithdrawalListResponse,
    WithdrawalQueueResponse,
)
from arenaapi.services.admin_log_service import AdminLogService
from arenaapi.services.notification_service import NotificationService
from arenaapi.services.tds_policy import TdsPolicy, ThresholdTdsPolicy
from arenaapi.services.wallet_ledger_service import WalletLedgerService
from arenaapi.utils.money import ZERO, to_money, to_positive_money
from arenaapi.utils.timezone_utils import as_utc, get_utc_now

logger = logging.getLogger(__name__)

UPI_ID_PATTERN = re.compile(r"^[\w.-]+@[\w.-]+$")

KYC_REQUIRED_REASON = "KYC verification required"


class WithdrawalService:
    def __init__(
        self,
        db: Session,
        tds_policy: Optional[TdsPolicy] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or default_settings
        self.tds_policy = tds_policy or ThresholdTdsPolicy.from_settings(self.settings)
        self.user_repo = UserRepository(db)
        self.withdrawal_repo = WithdrawalRepository(db)
        self.saved_method_repo = SavedPaymentMethodRepository(db)
        self.ledger = WalletLedgerService(db)
        self.notifications = NotificationService(db)
        self.admin_logs = AdminLogService(db)

    # ------------------------------------------------------------------
    # 자격 확인
    # ------------------------------------------------------------------

    def _get_user(self, user_id: int) -> User:
        user = self.user_repo.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def check_eligibility(self, user_id: int) -> EligibilityResult:
        """출금 가능 여부 (읽기 전용).

        검사 순서: KYC -> 대기 중인 요청 수 -> 정지 계정 -> 최근 출금 대기시간
        """
        user = self._get_user(user_id)

        if not user.is_kyc_verified:
            return EligibilityResult(allowed=False, reason=KYC_REQUIRED_REASON)

        pending = self.withdrawal_repo.count_pending(user_id)
        if pending >= self.settings.MAX_PENDING_WITHDRAWALS:
            return EligibilityResult(
                allowed=False,
                reason="You already have a pending withdrawal request",
            )

        if user.is_banned:
            return EligibilityResult(allowed=False, reason="Account is banned")

        cooldown_hours = self.settings.WITHDRAWAL_COOLDOWN_HOURS
        if cooldown_hours > 0:
            last_completed = self.withdrawal_repo.last_completed_at(user_id)
            if last_completed is not None:
                next_allowed = as_utc(last_completed) + timedelta(hours=cooldown_hours)
                if get_utc_now() < next_allowed:
                    return EligibilityResult(
                        allowed=False,
                        reason=f"Please wait {cooldown_hours} hours between withdrawals",
                    )

        return EligibilityResult(allowed=True)

    def get_eligibility(self, user_id: int) -> EligibilityResponse:
        user = self._get_user(user_id)
        result = self.check_eligibility(user_id)
        return EligibilityResponse(
            eligible=result.allowed,
            reason=result.reason,
            wallet_balance=user.wallet_balance,
            is_kyc_verified=user.is_kyc_verified,
            minimum_withdrawal=to_money(self.settings.MIN_WITHDRAWAL_AMOUNT),
        )

    # ------------------------------------------------------------------
    # 지급 수단
    # ------------------------------------------------------------------

    def _resolve_method_details(
        self, user_id: int, request: WithdrawalCreateRequest
    ) -> Dict[str, Optional[str]]:
        if request.saved_payment_method_id is not None:
            saved = self.saved_method_repo.get_owned(request.saved_payment_method_id, user_id)
            if saved is None:
                raise NotFoundError("Saved payment method not found")
            return {
                "method": saved.method,
                "upi_id": saved.upi_id,
                "bank_account_holder": saved.bank_account_holder,
                "bank_account_number": saved.bank_account_number,
                "bank_ifsc": saved.bank_ifsc,
                "bank_name": saved.bank_name,
            }

        if request.method == PaymentMethodEnum.UPI:
            upi_id = (request.upi_id or "").strip()
            if not upi_id:
                raise ValidationError("UPI ID is required")
            if not UPI_ID_PATTERN.match(upi_id):
                raise ValidationError("Invalid UPI ID format")
            return {"method": PaymentMethodEnum.UPI, "upi_id": upi_id.lower()}

        bank = request.bank_details
        if bank is None or not (
            bank.account_holder_name.strip()
            and bank.account_number.strip()
            and bank.ifsc_code.strip()
        ):
            raise ValidationError("Complete bank details are required")
        return {
            "method": PaymentMethodEnum.BANK,
            "bank_account_holder": bank.account_holder_name.strip(),
            "bank_account_number": bank.account_number.strip(),
            "bank_ifsc": bank.ifsc_code.strip().upper(),
            "bank_name": bank.bank_name,
        }

    def _save_payment_method(self, user_id: int, details: Dict[str, Optional[str]]) -> None:
        """지급 수단 저장 (best-effort, 실패해도 출금 요청에는 영향 없음)"""
        try:
            with transactional(self.db):
                duplicate = self.saved_method_repo.find_duplicate(
                    user_id,
                    details["method"],
                    upi_id=details.get("upi_id"),
                    account_number=details.get("bank_account_number"),
                )
                if duplicate is not None:
                    self.saved_method_repo.touch(duplicate.id, get_utc_now())
                    return
                has_default = bool(self.saved_method_repo.list_for_user(user_id))
                self.saved_method_repo.create(
                    user_id=user_id,
                    is_default=not has_default,
                    last_used_at=get_utc_now(),
                    **details,
                )
        except Exception as e:
            logger.warning(
                f"Failed to save payment method for user {user_id}: {str(e)}",
                exc_info=True,
            )

    def list_saved_methods(self, user_id: int) -> List[SavedPaymentMethod]:
        return self.saved_method_repo.list_for_user(user_id)

    # ------------------------------------------------------------------
    # 출금 요청 / 취소
    # ------------------------------------------------------------------

    def create_request(self, user_id: int, request: WithdrawalCreateRequest) -> Withdrawal:
        """출금 요청: 자격 확인 -> 금액 검증 -> 총액 보류 + Withdrawal 생성"""
        eligibility = self.check_eligibility(user_id)
        if not eligibility.allowed:
            raise EligibilityError(eligibility.reason)

        amount = to_positive_money(request.amount)
        minimum = to_money(self.settings.MIN_WITHDRAWAL_AMOUNT)
        if amount < minimum:
            raise ValidationError(f"Minimum withdrawal amount is {minimum}")

        details = self._resolve_method_details(user_id, request)

        balance = self.ledger.get_balance(user_id)
        if balance < amount:
            raise InsufficientBalanceError(
                "Insufficient wallet balance",
                details={"required": str(amount), "available": str(balance)},
            )

        tds = to_money(self.tds_policy.compute(amount))
        net_amount = to_money(amount - tds)
        if tds < ZERO or net_amount <= ZERO:
            raise ValidationError("Withdrawal amount too small after tax deduction")

        with transactional(self.db):
            # 잠금 후 대기 건수 재확인. 위의 자격 확인은 잠금 밖의 읽기
            if not self.user_repo.lock_for_update(user_id):
                raise NotFoundError("User not found")
            pending = self.withdrawal_repo.count_pending(user_id)
            if pending >= self.settings.MAX_PENDING_WITHDRAWALS:
                raise EligibilityError("You already have a pending withdrawal request")

            withdrawal = self.withdrawal_repo.create(
                user_id=user_id,
                amount=amount,
                tds=tds,
                net_amount=net_amount,
                status=WithdrawalStatusEnum.PENDING,
                wallet_balance_at_request=balance,
                **details,
            )
            hold = self.ledger.debit(
                user_id,
                amount,
                TransactionCategory.WITHDRAWAL,
                reference=LedgerReference(type=ReferenceType.WITHDRAWAL, id=withdrawal.id),
                description=f"Withdrawal request #{withdrawal.id}",
                status=TransactionStatus.PENDING,
            )
            withdrawal = self.withdrawal_repo.update(
                withdrawal.id, hold_transaction_id=hold.id
            )
            if request.saved_payment_method_id is not None:
                self.saved_method_repo.touch(request.saved_payment_method_id, get_utc_now())

        logger.info(
            f"Withdrawal {withdrawal.id} requested by user {user_id}: amount {amount}, "
            f"tds {tds}, net {net_amount}"
        )

        if request.save_payment_method and request.saved_payment_method_id is None:
            self._save_payment_method(user_id, details)

        self.notifications.notify(
            user_id,
            "withdrawal_requested",
            "Withdrawal Requested",
            f"Your withdrawal request of {amount} has been received.",
            reference_type="withdrawal",
            reference_id=withdrawal.id,
        )
        return withdrawal

    def _get_withdrawal(self, withdrawal_id: int) -> Withdrawal:
        withdrawal = self.withdrawal_repo.get_by_id(withdrawal_id)
        if withdrawal is None:
            raise NotFoundError("Withdrawal not found")
        return withdrawal

    def _release_hold(
        self, withdrawal: Withdrawal, description: str, processed_by: Optional[int] = None
    ) -> None:
        """보류 역분개로 총액 환불 (호출자의 트랜잭션 안에서)"""
        if withdrawal.hold_transaction_id is not None:
            self.ledger.reverse(
                withdrawal.hold_transaction_id,
                category=TransactionCategory.WITHDRAWAL_REFUND,
                description=description,
                processed_by=processed_by,
            )
        else:
            self.ledger.credit(
                withdrawal.user_id,
                withdrawal.amount,
                TransactionCategory.WITHDRAWAL_REFUND,
                reference=LedgerReference(type=ReferenceType.WITHDRAWAL, id=withdrawal.id),
                description=description,
                idempotency_key=f"withdrawal_refund:{withdrawal.id}",
                processed_by=processed_by,
            )

    def _transition(
        self,
        withdrawal: Withdrawal,
        from_statuses: List[WithdrawalStatusEnum],
        to_status: WithdrawalStatusEnum,
        **values,
    ) -> None:
        if withdrawal.status not in from_statuses:
            raise BadRequestError(
                f"Cannot move withdrawal from {withdrawal.status.value} to {to_status.value}"
            )
        if not self.withdrawal_repo.transition_status(
            withdrawal.id, from_statuses, to_status, **values
        ):
            raise ConflictError(
                "Withdrawal status changed concurrently, please retry",
                details={"withdrawal_id": withdrawal.id},
            )

    def cancel(self, withdrawal_id: int, user_id: int) -> Withdrawal:
        """사용자 취소 (본인, pending 상태만)"""
        withdrawal = self._get_withdrawal(withdrawal_id)
        if withdrawal.user_id != user_id:
            raise ForbiddenError("You can only cancel your own withdrawals")
        if withdrawal.status != WithdrawalStatusEnum.PENDING:
            raise BadRequestError(
                f"Cannot cancel withdrawal in {withdrawal.status.value} status"
            )

        with transactional(self.db):
            self._transition(
                withdrawal,
                [WithdrawalStatusEnum.PENDING],
                WithdrawalStatusEnum.CANCELLED,
                cancelled_at=get_utc_now(),
            )
            self._release_hold(withdrawal, f"Withdrawal #{withdrawal_id} cancelled")

        logger.info(f"Withdrawal {withdrawal_id} cancelled by user {user_id}")
        return self._get_withdrawal(withdrawal_id)

    # ------------------------------------------------------------------
    # 재무 담당 처리
    # ------------------------------------------------------------------

    def approve(
        self, withdrawal_id: int, admin_id: int, notes: Optional[str] = None
    ) -> Withdrawal:
        """pending -> approved (금액 이동 없음)"""
        withdrawal = self._get_withdrawal(withdrawal_id)
        now = get_utc_now()
        with transactional(self.db):
            self._transition(
                withdrawal,
                [WithdrawalStatusEnum.PENDING],
                WithdrawalStatusEnum.APPROVED,
                processed_by=admin_id,
                processed_at=now,
                processing_notes=notes,
            )

        logger.info(f"Withdrawal {withdrawal_id} approved by {admin_id}")
        self.admin_logs.log(
            admin_id,
            "withdrawal_approve",
            "withdrawal",
            withdrawal_id,
            f"Approved withdrawal of {withdrawal.amount}",
            severity="medium",
        )
        self.notifications.notify(
            withdrawal.user_id,
            "withdrawal_approved",
            "Withdrawal Approved",
            f"Your withdrawal of {withdrawal.amount} has been approved.",
            reference_type="withdrawal",
            reference_id=withdrawal_id,
        )
        return self._get_withdrawal(withdrawal_id)

    def complete(
        self,
        withdrawal_id: int,
        admin_id: int,
        external_reference: str,
        notes: Optional[str] = None,
    ) -> Withdrawal:
        """approved -> completed, 외부 지급 확인 정보 기록 + 보류 확정"""
        if not external_reference or not external_reference.strip():
            raise ValidationError("External payment reference is required")
        withdrawal = self._get_withdrawal(withdrawal_id)
        now = get_utc_now()

        values = {
            "external_reference": external_reference.strip(),
            "completed_at": now,
            "processed_by": admin_id,
            "processed_at": now,
        }
        if notes:
            values["processing_notes"] = notes

        with transactional(self.db):
            self._transition(
                withdrawal,
                [WithdrawalStatusEnum.APPROVED],
                WithdrawalStatusEnum.COMPLETED,
                **values,
            )
            if withdrawal.hold_transaction_id is not None:
                self.ledger.complete_hold(withdrawal.hold_transaction_id)

        logger.info(
            f"Withdrawal {withdrawal_id} completed by {admin_id}: ref {external_reference}"
        )
        self.admin_logs.log(
            admin_id,
            "withdrawal_complete",
            "withdrawal",
            withdrawal_id,
            f"Completed withdrawal of {withdrawal.amount} (net {withdrawal.net_amount}, ref {external_reference})",
            severity="high",
        )
        self.notifications.notify(
            withdrawal.user_id,
            "withdrawal_completed",
            "Withdrawal Completed",
            f"{withdrawal.net_amount} has been sent to your account.",
            reference_type="withdrawal",
            reference_id=withdrawal_id,
        )
        return self._get_withdrawal(withdrawal_id)

    def reject(self, withdrawal_id: int, admin_id: int, reason: str) -> Withdrawal:
        """pending|approved -> rejected, 총액 환불. 사유 필수."""
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required")
        withdrawal = self._get_withdrawal(withdrawal_id)
        now = get_utc_now()

        with transactional(self.db):
            self._transition(
                withdrawal,
                [WithdrawalStatusEnum.PENDING, WithdrawalStatusEnum.APPROVED],
                WithdrawalStatusEnum.REJECTED,
                rejection_reason=reason.strip(),
                processed_by=admin_id,
                processed_at=now,
            )
            self._release_hold(
                withdrawal,
                f"Withdrawal #{withdrawal_id} rejected: {reason.strip()}",
                processed_by=admin_id,
            )

        logger.info(f"Withdrawal {withdrawal_id} rejected by {admin_id}: {reason}")
        self.admin_logs.log(
            admin_id,
            "withdrawal_reject",
            "withdrawal",
            withdrawal_id,
            f"Rejected withdrawal of {withdrawal.amount}: {reason}",
            severity="medium",
        )
        self.notifications.notify(
            withdrawal.user_id,
            "withdrawal_rejected",
            "Withdrawal Rejected",
            f"Your withdrawal of {withdrawal.amount} was rejected and refunded. Reason: {reason}",
            reference_type="withdrawal",
            reference_id=withdrawal_id,
        )
        return self._get_withdrawal(withdrawal_id)

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------

    def get_withdrawal(self, withdrawal_id: int, requester: User) -> Withdrawal:
        withdrawal = self._get_withdrawal(withdrawal_id)
        if withdrawal.user_id != requester.id and not requester.has_permission(
            UserRole.FINANCE
        ):
            raise ForbiddenError("Access to this withdrawal is not allowed")
        return withdrawal

    def list_user_withdrawals(
        self,
        user_id: int,
        status: Optional[WithdrawalStatusEnum] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> WithdrawalListResponse:
        limit = min(limit, PaginationLimits.WITHDRAWAL_LIST["max"])
        withdrawals, total_count = self.withdrawal_repo.list_by_user(
            user_id, status=status, limit=limit, offset=offset
        )
        return WithdrawalListResponse(
            withdrawals=withdrawals,
            total_count=total_count,
            has_next=offset + len(withdrawals) < total_count,
        )

    def get_queue(
        self,
        status: Optional[WithdrawalStatusEnum] = WithdrawalStatusEnum.PENDING,
        limit: int = 50,
        offset: int = 0,
    ) -> WithdrawalQueueResponse:
        limit = min(limit, PaginationLimits.WITHDRAWAL_QUEUE["max"])
        withdrawals, total_count = self.withdrawal_repo.list_by_status(
            status=status, limit=limit, offset=offset
        )
        pending_count, pending_amount = self.withdrawal_repo.pending_totals()
        return WithdrawalQueueResponse(
            withdrawals=withdrawals,
            total_count=total_count,
            has_next=offset + len(withdrawals) < total_count,
            pending_count=pending_count,
            pending_amount=to_money(pending_amount),
        )
