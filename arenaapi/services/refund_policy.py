"""
매치 자발적 이탈 환불 정책

관리자/시스템에 의한 매치 취소는 전액 환불이며 이 정책을 거치지 않는다.
사용자가 스스로 이탈할 때만 수수료가 차감된다.

    refund = floor(entry_fee * (1 - fee_rate))

fee_rate는 기본 수수료율이며, 시작 시각에 가까울수록 높은 수수료율을
적용하는 구간(tier)을 설정으로 추가할 수 있다. 시작 cutoff_minutes 이내에는
이탈 자체가 불가하다.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_FLOOR, Decimal
from typing import Iterable, List, Optional

from arenaapi.utils.money import ZERO, Amount, to_money
from arenaapi.utils.timezone_utils import minutes_until


@dataclass(frozen=True)
class LeaveFeeTier:
    """시작 minutes_before_start 분 이내 이탈 시 fee_rate 적용"""

    minutes_before_start: int
    fee_rate: Decimal


@dataclass(frozen=True)
class LeaveRefundQuote:
    allowed: bool
    refund_amount: Decimal = ZERO
    cancellation_fee: Decimal = ZERO
    fee_rate: Decimal = ZERO
    reason: Optional[str] = None


class RefundPolicy:
    def __init__(
        self,
        cancellation_fee_rate: Amount = Decimal("0.10"),
        cutoff_minutes: int = 60,
        tiers: Optional[Iterable[LeaveFeeTier]] = None,
    ):
        self.cancellation_fee_rate = self._validate_rate(cancellation_fee_rate)
        self.cutoff_minutes = cutoff_minutes
        # 가까운 구간부터 검사하도록 오름차순
        self.tiers: List[LeaveFeeTier] = sorted(
            [
                LeaveFeeTier(t.minutes_before_start, self._validate_rate(t.fee_rate))
                for t in (tiers or [])
            ],
            key=lambda t: t.minutes_before_start,
        )

    @classmethod
    def from_settings(cls, settings) -> "RefundPolicy":
        tiers = [
            LeaveFeeTier(
                minutes_before_start=int(tier["minutes_before_start"]),
                fee_rate=Decimal(str(tier["fee_rate"])),
            )
            for tier in settings.LEAVE_FEE_TIERS
        ]
        return cls(
            cancellation_fee_rate=settings.LEAVE_CANCELLATION_FEE_RATE,
            cutoff_minutes=settings.LEAVE_CUTOFF_MINUTES,
            tiers=tiers,
        )

    @staticmethod
    def _validate_rate(rate: Amount) -> Decimal:
        value = Decimal(str(rate))
        if value < 0 or value > 1:
            raise ValueError(f"Fee rate must be between 0 and 1: {rate}")
        return value

    def fee_rate_for(self, minutes_to_start: float) -> Decimal:
        for tier in self.tiers:
            if minutes_to_start < tier.minutes_before_start:
                return tier.fee_rate
        return self.cancellation_fee_rate

    def compute_leave_refund(
        self, entry_fee: Amount, scheduled_at: datetime, now: Optional[datetime] = None
    ) -> LeaveRefundQuote:
        """이탈 시 환불액 계산 (부수 효과 없음)"""
        remaining = minutes_until(scheduled_at, now)
        if remaining < self.cutoff_minutes:
            return LeaveRefundQuote(
                allowed=False,
                reason=f"Cannot leave match within {self.cutoff_minutes} minutes of start",
            )

        fee = to_money(entry_fee)
        rate = self.fee_rate_for(remaining)
        refund = (fee * (Decimal("1") - rate)).quantize(Decimal("1"), rounding=ROUND_FLOOR)
        refund = max(refund, ZERO)
        return LeaveRefundQuote(
            allowed=True,
            refund_amount=to_money(refund),
            cancellation_fee=to_money(fee - refund),
            fee_rate=rate,
        )
