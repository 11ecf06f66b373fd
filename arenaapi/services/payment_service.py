"""
입금(결제 게이트웨이) 서비스

    1. create_deposit: 게이트웨이 주문 ID로 pending credit 기록 (잔액 변동 없음)
    2. verify_payment: checkout 서명 검증 후 정산
    3. process_webhook: payment.captured -> 정산, payment.failed -> 실패 처리

정산은 pending 상태에서만 한 번 수행되므로 verify와 웹훅이 중복으로 도착해도
잔액은 한 번만 증가한다.
"""

import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from arenaapi.config import Settings, settings as default_settings
from arenaapi.core.exceptions import (
    AuthenticationError,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from arenaapi.database.session import transactional
from arenaapi.models.transaction import (
    ReferenceType,
    TransactionCategory,
    TransactionStatus,
)
from arenaapi.providers.payment.razorpay import RazorpayGateway
from arenaapi.repositories.wallet_transaction_repository import (
    WalletTransactionRepository,
)
from arenaapi.schemas.wallet import LedgerReference, WalletTransaction, WebhookResult
from arenaapi.services.notification_service import NotificationService
from arenaapi.services.wallet_ledger_service import WalletLedgerService
from arenaapi.utils.money import to_money, to_positive_money

logger = logging.getLogger(__name__)


class PaymentService:
    def __init__(
        self,
        db: Session,
        gateway: Optional[RazorpayGateway] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or default_settings
        self.gateway = gateway or RazorpayGateway()
        self.tx_repo = WalletTransactionRepository(db)
        self.ledger = WalletLedgerService(db)
        self.notifications = NotificationService(db)

    def create_deposit(self, user_id: int, amount, order_id: str) -> WalletTransaction:
        amount = to_positive_money(amount)
        minimum = to_money(self.settings.MIN_DEPOSIT_AMOUNT)
        maximum = to_money(self.settings.MAX_DEPOSIT_AMOUNT)
        if amount < minimum or amount > maximum:
            raise ValidationError(f"Deposit amount must be between {minimum} and {maximum}")

        existing = self.tx_repo.get_by_order_id(order_id)
        if existing is not None:
            if existing.user_id != user_id or existing.amount != amount:
                raise ConflictError("Order ID already used for a different deposit")
            return existing

        with transactional(self.db):
            transaction = self.ledger.record_pending_credit(
                user_id,
                amount,
                TransactionCategory.DEPOSIT,
                reference=LedgerReference(type=ReferenceType.DEPOSIT),
                description="Wallet deposit",
                idempotency_key=f"deposit:{order_id}",
                payment_order_id=order_id,
                payment_details={"gateway": "razorpay", "order_id": order_id},
            )
        logger.info(f"Deposit order {order_id} created for user {user_id}: {amount}")
        return transaction

    def verify_payment(
        self, user_id: int, order_id: str, payment_id: str, signature: str
    ) -> WalletTransaction:
        """checkout 완료 후 클라이언트가 보낸 서명 검증 + 정산"""
        transaction = self.tx_repo.get_by_order_id(order_id)
        if transaction is None:
            raise NotFoundError("Deposit not found")
        if transaction.user_id != user_id:
            raise ForbiddenError("This deposit belongs to another user")

        if not self.gateway.verify_signature(order_id, payment_id, signature):
            logger.warning(f"Invalid payment signature for order {order_id} (user {user_id})")
            with transactional(self.db):
                self.ledger.fail_pending(transaction.id, "signature verification failed")
            raise BadRequestError("Payment verification failed")

        if transaction.status == TransactionStatus.FAILED:
            raise BadRequestError("Deposit has already failed")

        with transactional(self.db):
            settled, changed = self.ledger.settle_pending(
                transaction.id,
                payment_id=payment_id,
                payment_details={
                    "gateway": "razorpay",
                    "order_id": order_id,
                    "payment_id": payment_id,
                    "verified_via": "checkout",
                },
            )
        if changed:
            self._notify_deposit(settled)
        return settled

    def process_webhook(self, body: bytes, signature: str) -> WebhookResult:
        """게이트웨이 웹훅 처리 (중복 수신 시 no-op)"""
        if not self.gateway.verify_webhook_signature(body, signature):
            logger.warning("Rejected webhook with invalid signature")
            raise AuthenticationError("Invalid webhook signature")

        try:
            payload: Dict[str, Any] = json.loads(body)
        except (ValueError, TypeError):
            raise ValidationError("Malformed webhook payload")

        event = payload.get("event", "")
        entity = payload.get("payload", {}).get("payment", {}).get("entity", {}) or {}
        order_id = entity.get("order_id")

        if event not in ("payment.captured", "payment.failed") or not order_id:
            logger.info(f"Ignoring webhook event {event}")
            return WebhookResult(event=event, handled=False)

        transaction = self.tx_repo.get_by_order_id(order_id)
        if transaction is None:
            logger.warning(f"Webhook {event} for unknown order {order_id}")
            return WebhookResult(event=event, handled=False)

        if event == "payment.captured":
            with transactional(self.db):
                settled, changed = self.ledger.settle_pending(
                    transaction.id,
                    payment_id=entity.get("id"),
                    payment_details={
                        "gateway": "razorpay",
                        "order_id": order_id,
                        "payment_id": entity.get("id"),
                        "method": entity.get("method"),
                        "verified_via": "webhook",
                    },
                )
            if changed:
                self._notify_deposit(settled)
            return WebhookResult(event=event, handled=changed, transaction_id=transaction.id)

        with transactional(self.db):
            _, changed = self.ledger.fail_pending(
                transaction.id, entity.get("error_description") or "payment failed"
            )
        return WebhookResult(event=event, handled=changed, transaction_id=transaction.id)

    def _notify_deposit(self, transaction: WalletTransaction) -> None:
        self.notifications.notify(
            transaction.user_id,
            "deposit_success",
            "Deposit Successful",
            f"{transaction.amount} has been added to your wallet.",
            reference_type="transaction",
            reference_id=transaction.id,
        )
