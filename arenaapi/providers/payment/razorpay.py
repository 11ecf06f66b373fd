import hashlib
import hmac
import logging
from typing import Optional, Union

from arenaapi.config import settings

logger = logging.getLogger(__name__)


class RazorpayGateway:
    """결제 게이트웨이 서명 검증

    주문 생성은 클라이언트/게이트웨이 측에서 처리하고, 서버는 결과 서명만 검증한다.
    """

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        webhook_secret: Optional[str] = None,
    ):
        self.key_id = key_id if key_id is not None else settings.RAZORPAY_KEY_ID
        self.key_secret = (
            key_secret if key_secret is not None else settings.RAZORPAY_KEY_SECRET
        )
        self.webhook_secret = (
            webhook_secret
            if webhook_secret is not None
            else settings.RAZORPAY_WEBHOOK_SECRET
        )

    @staticmethod
    def _hmac_sha256(secret: str, payload: Union[str, bytes]) -> str:
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()

    def generate_signature(self, order_id: str, payment_id: str) -> str:
        return self._hmac_sha256(self.key_secret, f"{order_id}|{payment_id}")

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """checkout 완료 서명 검증: HMAC_SHA256(order_id|payment_id, key_secret)"""
        if not self.key_secret:
            logger.error("Payment signature verification attempted without key secret")
            return False
        expected = self.generate_signature(order_id, payment_id)
        return hmac.compare_digest(expected, signature or "")

    def verify_webhook_signature(self, body: bytes, signature: str) -> bool:
        """웹훅 원문(body) 서명 검증"""
        if not self.webhook_secret:
            logger.error("Webhook signature verification attempted without webhook secret")
            return False
        expected = self._hmac_sha256(self.webhook_secret, body)
        return hmac.compare_digest(expected, signature or "")
