"""출금 원천징수(TDS) 정책

출금 요청 시 WithdrawalService에 주입되며, 총액(gross)에서 원천징수할
금액을 돌려준다. 실제 지급액은 amount - tds.
"""

from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal

from arenaapi.utils.money import ZERO, Amount, to_money


class TdsPolicy(ABC):
    @abstractmethod
    def compute(self, amount: Decimal) -> Decimal:
        """원천징수액 계산"""


class ThresholdTdsPolicy(TdsPolicy):
    """임계 금액을 초과하는 출금에만 정률 적용 (정수 단위 반올림)"""

    def __init__(self, threshold: Amount = 10000, rate: Amount = Decimal("0.30")):
        self.threshold = to_money(threshold)
        self.rate = Decimal(str(rate))

    @classmethod
    def from_settings(cls, settings) -> "ThresholdTdsPolicy":
        return cls(threshold=settings.TDS_THRESHOLD, rate=settings.TDS_RATE)

    def compute(self, amount: Decimal) -> Decimal:
        amount = to_money(amount)
        if amount <= self.threshold:
            return ZERO
        return to_money((amount * self.rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class FlatRateTdsPolicy(TdsPolicy):
    """모든 출금에 정률 적용"""

    def __init__(self, rate: Amount):
        self.rate = Decimal(str(rate))

    def compute(self, amount: Decimal) -> Decimal:
        return to_money(to_money(amount) * self.rate)
