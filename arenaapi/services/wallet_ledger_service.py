"""
지갑 원장 서비스

users.wallet_balance를 변경하는 유일한 경로. 모든 잔액 변경은
(조건부 UPDATE로 잔액 반영) + (원장 행 추가) 쌍으로 수행되며, 두 작업은
호출자의 DB 트랜잭션에 함께 포함된다. 이 서비스의 기본 연산
(debit/credit/reverse/settle_pending/...)은 commit 하지 않는다.
호출자가 transactional() 블록으로 감싸야 한다.

잔액 재계산 규칙:
    wallet_balance = Σ completed credit - Σ completed debit - Σ pending debit

- pending debit은 출금 보류(hold)로, 생성 시점에 잔액에서 이미 차감된다.
- pending credit(입금 대기)은 정산(settle_pending) 전까지 잔액에 반영되지 않는다.
- reverse()는 원 거래와 보상 거래를 모두 reversed로 표시한다. 두 행은 합이
  0이므로 재계산에서 제외된다.
"""

import logging
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from arenaapi.core.exceptions import (
    BadRequestError,
    ConflictError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from arenaapi.database.session import transactional
from arenaapi.models.transaction import (
    ReferenceType,
    TransactionCategory,
    TransactionStatus,
    TransactionType,
)
from arenaapi.repositories.user_repository import UserRepository
from arenaapi.repositories.wallet_transaction_repository import (
    WalletTransactionRepository,
)
from arenaapi.schemas.pagination import PaginationLimits
from arenaapi.schemas.wallet import (
    LedgerReference,
    WalletBalanceResponse,
    WalletHistoryResponse,
    WalletIntegrityResponse,
    WalletTransaction,
)
from arenaapi.services.admin_log_service import AdminLogService
from arenaapi.services.notification_service import NotificationService
from arenaapi.utils.money import ZERO, Amount, to_money, to_positive_money

logger = logging.getLogger(__name__)


class WalletLedgerService:
    """지갑 잔액과 원장 관리"""

    def __init__(self, db: Session):
        self.db = db
        self.user_repo = UserRepository(db)
        self.tx_repo = WalletTransactionRepository(db)

    # ------------------------------------------------------------------
    # 기본 연산 (commit 하지 않음)
    # ------------------------------------------------------------------

    def debit(
        self,
        user_id: int,
        amount: Amount,
        category: TransactionCategory,
        reference: Optional[LedgerReference] = None,
        description: Optional[str] = None,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        idempotency_key: Optional[str] = None,
        processed_by: Optional[int] = None,
    ) -> WalletTransaction:
        """잔액 차감 + 원장 기록.

        status=PENDING 이면 출금 보류(hold)로 기록된다. 잔액은 즉시 차감되고,
        이후 complete_hold() 또는 reverse()로 종결된다.

        Raises:
            InsufficientBalanceError: 잔액 부족
            NotFoundError: 사용자 없음
        """
        if status not in (TransactionStatus.COMPLETED, TransactionStatus.PENDING):
            raise ValidationError(f"Invalid debit status: {status.value}")
        amount = to_positive_money(amount)

        existing = self._find_existing(idempotency_key)
        if existing is not None:
            return existing

        if not self.user_repo.apply_debit(user_id, amount):
            available = self.user_repo.get_wallet_balance(user_id)
            if available is None:
                raise NotFoundError("User not found")
            raise InsufficientBalanceError(
                "Insufficient wallet balance",
                details={"required": str(amount), "available": str(available)},
            )

        balance_after = self.user_repo.get_wallet_balance(user_id)
        transaction = self._insert(
            user_id=user_id,
            type=TransactionType.DEBIT,
            category=category,
            amount=amount,
            balance_before=balance_after + amount,
            balance_after=balance_after,
            status=status,
            reference=reference,
            description=description,
            idempotency_key=idempotency_key,
            processed_by=processed_by,
        )
        logger.info(
            f"Debited {amount} from user {user_id} ({category.value}, {status.value}): "
            f"{transaction.balance_before} -> {transaction.balance_after}"
        )
        return transaction

    def credit(
        self,
        user_id: int,
        amount: Amount,
        category: TransactionCategory,
        reference: Optional[LedgerReference] = None,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        processed_by: Optional[int] = None,
    ) -> WalletTransaction:
        """잔액 증가 + 원장 기록 (잔액 조건 없음)"""
        amount = to_positive_money(amount)

        existing = self._find_existing(idempotency_key)
        if existing is not None:
            return existing

        balance_after = self._apply_credit(user_id, amount)
        transaction = self._insert(
            user_id=user_id,
            type=TransactionType.CREDIT,
            category=category,
            amount=amount,
            balance_before=balance_after - amount,
            balance_after=balance_after,
            status=TransactionStatus.COMPLETED,
            reference=reference,
            description=description,
            idempotency_key=idempotency_key,
            processed_by=processed_by,
        )
        logger.info(
            f"Credited {amount} to user {user_id} ({category.value}): "
            f"{transaction.balance_before} -> {transaction.balance_after}"
        )
        return transaction

    def record_pending_credit(
        self,
        user_id: int,
        amount: Amount,
        category: TransactionCategory,
        reference: Optional[LedgerReference] = None,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        payment_order_id: Optional[str] = None,
        payment_details: Optional[dict] = None,
    ) -> WalletTransaction:
        """외부 확인 대기 중인 입금. 잔액은 변경하지 않는다."""
        amount = to_positive_money(amount)

        existing = self._find_existing(idempotency_key)
        if existing is not None:
            return existing

        current = self.user_repo.get_wallet_balance(user_id)
        if current is None:
            raise NotFoundError("User not found")

        return self._insert(
            user_id=user_id,
            type=TransactionType.CREDIT,
            category=category,
            amount=amount,
            balance_before=current,
            balance_after=current + amount,
            status=TransactionStatus.PENDING,
            reference=reference,
            description=description,
            idempotency_key=idempotency_key,
            payment_order_id=payment_order_id,
            payment_details=payment_details,
        )

    def settle_pending(
        self,
        transaction_id: int,
        payment_id: Optional[str] = None,
        payment_details: Optional[dict] = None,
    ) -> Tuple[WalletTransaction, bool]:
        """pending credit을 completed로 전환하고 잔액에 반영.

        이미 pending이 아니면 아무것도 하지 않는다 (중복 웹훅/검증 요청).

        Returns:
            (거래, 이번 호출에서 정산되었는지 여부)
        """
        transaction = self._get_or_404(transaction_id)
        if transaction.type != TransactionType.CREDIT:
            raise BadRequestError("Only pending credits can be settled")

        values = {}
        if payment_id is not None:
            values["payment_id"] = payment_id
        if payment_details is not None:
            values["payment_details"] = payment_details

        # 사용자 행 잠금 후 잔액 스냅샷을 상태 전이와 함께 기록
        if not self.user_repo.lock_for_update(transaction.user_id):
            raise NotFoundError("User not found")
        balance_before = self.user_repo.get_wallet_balance(transaction.user_id)
        values["balance_before"] = balance_before
        values["balance_after"] = balance_before + transaction.amount

        if not self.tx_repo.transition_status(
            transaction_id,
            [TransactionStatus.PENDING],
            TransactionStatus.COMPLETED,
            **values,
        ):
            logger.info(
                f"Transaction {transaction_id} already {transaction.status.value}; settle skipped"
            )
            return self._get_or_404(transaction_id), False

        balance_after = self._apply_credit(transaction.user_id, transaction.amount)
        settled = self._get_or_404(transaction_id)
        logger.info(
            f"Settled pending credit {transaction_id} of {transaction.amount} for user "
            f"{transaction.user_id}: balance {balance_after}"
        )
        return settled, True

    def fail_pending(
        self, transaction_id: int, reason: Optional[str] = None
    ) -> Tuple[WalletTransaction, bool]:
        """pending credit을 failed로 전환 (잔액 변경 없음)"""
        transaction = self._get_or_404(transaction_id)
        if transaction.type != TransactionType.CREDIT:
            raise BadRequestError("Only pending credits can be failed")

        values = {}
        if reason:
            values["description"] = f"{transaction.description or ''} [failed: {reason}]".strip()

        changed = self.tx_repo.transition_status(
            transaction_id, [TransactionStatus.PENDING], TransactionStatus.FAILED, **values
        )
        if changed:
            logger.info(f"Marked pending transaction {transaction_id} as failed: {reason}")
        return self._get_or_404(transaction_id), changed

    def complete_hold(self, transaction_id: int) -> WalletTransaction:
        """보류(pending debit)를 확정. 잔액은 보류 시점에 이미 차감되었다."""
        transaction = self._get_or_404(transaction_id)
        if transaction.type != TransactionType.DEBIT:
            raise BadRequestError("Only debit holds can be completed")
        if transaction.status == TransactionStatus.COMPLETED:
            return transaction

        if not self.tx_repo.transition_status(
            transaction_id, [TransactionStatus.PENDING], TransactionStatus.COMPLETED
        ):
            raise ConflictError(
                f"Hold {transaction_id} is no longer pending",
                details={"transaction_id": transaction_id},
            )
        logger.info(f"Completed hold {transaction_id} for user {transaction.user_id}")
        return self._get_or_404(transaction_id)

    def reverse(
        self,
        transaction_id: int,
        category: Optional[TransactionCategory] = None,
        description: Optional[str] = None,
        processed_by: Optional[int] = None,
    ) -> WalletTransaction:
        """거래 역분개.

        반대 방향의 보상 거래를 추가하고 원 거래를 reversed로 표시한다. 이미
        역분개된 거래는 기존 보상 거래를 반환한다. 정산 전 입금(pending credit)은
        잔액에 반영된 적이 없으므로 보상 거래 없이 failed로 처리한다.

        Returns:
            보상 거래 (pending credit의 경우 원 거래)
        """
        original = self._get_or_404(transaction_id)
        reversal_key = f"reversal:{transaction_id}"

        if original.status == TransactionStatus.REVERSED:
            existing = self.tx_repo.get_by_idempotency_key(reversal_key)
            if existing is not None:
                return existing
            raise ConflictError(f"Transaction {transaction_id} is itself a reversal")
        if original.status == TransactionStatus.FAILED:
            raise BadRequestError("Cannot reverse a failed transaction")
        if (
            original.type == TransactionType.CREDIT
            and original.status == TransactionStatus.PENDING
        ):
            transaction, _ = self.fail_pending(transaction_id, description or "reversed")
            return transaction

        if not self.tx_repo.transition_status(
            transaction_id, [original.status], TransactionStatus.REVERSED
        ):
            raise ConflictError(
                f"Transaction {transaction_id} changed concurrently",
                details={"transaction_id": transaction_id},
            )

        amount = original.amount
        if original.type == TransactionType.DEBIT:
            # completed debit과 보류(pending debit) 모두 잔액에서 이미 빠져 있음
            balance_after = self._apply_credit(original.user_id, amount)
            reversal_type = TransactionType.CREDIT
            balance_before = balance_after - amount
        else:
            if not self.user_repo.apply_debit(original.user_id, amount):
                raise InsufficientBalanceError(
                    "Insufficient wallet balance to reverse credit",
                    details={"transaction_id": transaction_id, "amount": str(amount)},
                )
            balance_after = self.user_repo.get_wallet_balance(original.user_id)
            reversal_type = TransactionType.DEBIT
            balance_before = balance_after + amount

        reference = None
        if original.reference_type is not None:
            reference = LedgerReference(type=original.reference_type, id=original.reference_id)

        reversal = self._insert(
            user_id=original.user_id,
            type=reversal_type,
            category=category or original.category,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            status=TransactionStatus.REVERSED,
            reference=reference,
            description=description or f"Reversal of transaction {transaction_id}",
            idempotency_key=reversal_key,
            reversal_of_id=transaction_id,
            processed_by=processed_by,
        )
        logger.info(
            f"Reversed transaction {transaction_id} ({original.type.value} {amount}) "
            f"for user {original.user_id}: balance {balance_after}"
        )
        return reversal

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------

    def get_balance(self, user_id: int) -> Decimal:
        balance = self.user_repo.get_wallet_balance(user_id)
        if balance is None:
            raise NotFoundError("User not found")
        return balance

    def get_balance_summary(self, user_id: int) -> WalletBalanceResponse:
        user = self.user_repo.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return WalletBalanceResponse(
            wallet_balance=user.wallet_balance,
            bonus_balance=user.bonus_balance,
            total_balance=user.wallet_balance + user.bonus_balance,
        )

    def get_history(
        self,
        user_id: int,
        transaction_type: Optional[TransactionType] = None,
        category: Optional[TransactionCategory] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> WalletHistoryResponse:
        limit = min(limit, PaginationLimits.WALLET_HISTORY["max"])
        entries, total_count = self.tx_repo.get_history(
            user_id,
            transaction_type=transaction_type,
            category=category,
            limit=limit,
            offset=offset,
        )
        return WalletHistoryResponse(
            balance=self.get_balance(user_id),
            entries=entries,
            total_count=total_count,
            has_next=offset + len(entries) < total_count,
        )

    def calculate_balance(self, user_id: int) -> Decimal:
        """원장 재계산 잔액"""
        sums = self.tx_repo.sum_by_type_and_status(user_id)
        credits = sums.get((TransactionType.CREDIT, TransactionStatus.COMPLETED), ZERO)
        debits = sums.get((TransactionType.DEBIT, TransactionStatus.COMPLETED), ZERO)
        holds = sums.get((TransactionType.DEBIT, TransactionStatus.PENDING), ZERO)
        return to_money(credits - debits - holds)

    def verify_integrity(self, user_id: int) -> WalletIntegrityResponse:
        stored = self.get_balance(user_id)
        calculated = self.calculate_balance(user_id)
        difference = to_money(stored - calculated)
        status = "OK" if difference == ZERO else "MISMATCH"
        if status != "OK":
            logger.warning(
                f"Wallet integrity mismatch for user {user_id}: stored={stored}, "
                f"ledger={calculated}, diff={difference}"
            )
        return WalletIntegrityResponse(
            user_id=user_id,
            status=status,
            stored_balance=stored,
            calculated_balance=calculated,
            difference=difference,
            transaction_count=self.tx_repo.count(filters={"user_id": user_id}),
        )

    # ------------------------------------------------------------------
    # 관리자 조정 (자체 트랜잭션)
    # ------------------------------------------------------------------

    def admin_adjust(
        self, admin_id: int, user_id: int, amount: Amount, reason: str
    ) -> WalletTransaction:
        """관리자 잔액 조정. 양수는 지급, 음수는 차감."""
        if not reason or not reason.strip():
            raise ValidationError("Adjustment reason is required")
        amount = to_money(amount)
        if amount == ZERO:
            raise ValidationError("Adjustment amount must not be zero")

        reference = LedgerReference(type=ReferenceType.ADMIN, id=admin_id)
        with transactional(self.db):
            if amount > ZERO:
                transaction = self.credit(
                    user_id,
                    amount,
                    TransactionCategory.ADMIN_CREDIT,
                    reference=reference,
                    description=reason,
                    processed_by=admin_id,
                )
            else:
                transaction = self.debit(
                    user_id,
                    -amount,
                    TransactionCategory.ADMIN_DEBIT,
                    reference=reference,
                    description=reason,
                    processed_by=admin_id,
                )

        AdminLogService(self.db).log(
            admin_id,
            "wallet_adjust",
            "user",
            user_id,
            f"Adjusted wallet by {amount}: {reason}",
            severity="high",
        )
        NotificationService(self.db).notify(
            user_id,
            "wallet_adjustment",
            "Wallet Adjusted",
            f"Your wallet was adjusted by {amount}. Reason: {reason}",
            reference_type="transaction",
            reference_id=transaction.id,
        )
        return transaction

    # ------------------------------------------------------------------
    # 내부
    # ------------------------------------------------------------------

    def _get_or_404(self, transaction_id: int) -> WalletTransaction:
        transaction = self.tx_repo.get_by_id(transaction_id)
        if transaction is None:
            raise NotFoundError("Transaction not found")
        return transaction

    def _find_existing(self, idempotency_key: Optional[str]) -> Optional[WalletTransaction]:
        if not idempotency_key:
            return None
        existing = self.tx_repo.get_by_idempotency_key(idempotency_key)
        if existing is not None:
            logger.info(
                f"Ledger operation '{idempotency_key}' already recorded as "
                f"transaction {existing.id} (idempotent)"
            )
        return existing

    def _apply_credit(self, user_id: int, amount: Decimal) -> Decimal:
        if not self.user_repo.apply_credit(user_id, amount):
            raise NotFoundError("User not found")
        return self.user_repo.get_wallet_balance(user_id)

    def _insert(
        self,
        reference: Optional[LedgerReference] = None,
        **fields,
    ) -> WalletTransaction:
        if reference is not None:
            fields["reference_type"] = reference.type
            fields["reference_id"] = reference.id
        try:
            return self.tx_repo.create(**fields)
        except IntegrityError as e:
            # 동일 idempotency_key 동시 요청: 호출자의 트랜잭션 전체가 롤백된다
            logger.warning(f"Ledger insert conflict for user {fields.get('user_id')}: {e.orig}")
            raise ConflictError(
                "Duplicate ledger operation",
                details={"idempotency_key": fields.get("idempotency_key")},
            )
