import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from arenaapi.services.refund_policy import LeaveFeeTier, RefundPolicy
from arenaapi.services.tds_policy import FlatRateTdsPolicy, ThresholdTdsPolicy

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestRefundPolicy:
    """이탈 환불액 계산"""

    def test_default_fee_is_ten_percent(self):
        policy = RefundPolicy()

        quote = policy.compute_leave_refund("100", NOW + timedelta(hours=5), now=NOW)

        assert quote.allowed is True
        assert quote.refund_amount == Decimal("90")
        assert quote.cancellation_fee == Decimal("10")
        assert quote.fee_rate == Decimal("0.10")

    def test_refund_is_floored_to_whole_unit(self):
        policy = RefundPolicy(cancellation_fee_rate="0.10")

        quote = policy.compute_leave_refund("25", NOW + timedelta(hours=5), now=NOW)

        # 25 * 0.9 = 22.5 -> 22
        assert quote.refund_amount == Decimal("22")
        assert quote.cancellation_fee == Decimal("3")

    def test_leave_refused_inside_cutoff(self):
        policy = RefundPolicy(cutoff_minutes=60)

        quote = policy.compute_leave_refund("100", NOW + timedelta(minutes=59), now=NOW)

        assert quote.allowed is False
        assert quote.refund_amount == Decimal("0")
        assert "60 minutes" in quote.reason

    def test_cutoff_boundary_is_allowed(self):
        policy = RefundPolicy(cutoff_minutes=60)

        quote = policy.compute_leave_refund("100", NOW + timedelta(minutes=60), now=NOW)

        assert quote.allowed is True

    def test_tiers_apply_closest_window_first(self):
        policy = RefundPolicy(
            cancellation_fee_rate="0.10",
            cutoff_minutes=30,
            tiers=[
                LeaveFeeTier(minutes_before_start=360, fee_rate=Decimal("0.25")),
                LeaveFeeTier(minutes_before_start=120, fee_rate=Decimal("0.50")),
            ],
        )

        assert policy.fee_rate_for(90) == Decimal("0.50")
        assert policy.fee_rate_for(200) == Decimal("0.25")
        assert policy.fee_rate_for(600) == Decimal("0.10")

        quote = policy.compute_leave_refund("100", NOW + timedelta(minutes=90), now=NOW)
        assert quote.refund_amount == Decimal("50")

    def test_invalid_rate_rejected(self):
        with pytest.raises(ValueError):
            RefundPolicy(cancellation_fee_rate="1.5")


class TestTdsPolicy:
    def test_threshold_policy_exempts_small_withdrawals(self):
        policy = ThresholdTdsPolicy()

        assert policy.compute(Decimal("1000")) == Decimal("0")
        assert policy.compute(Decimal("10000")) == Decimal("0")

    def test_threshold_policy_above_limit(self):
        policy = ThresholdTdsPolicy()

        assert policy.compute(Decimal("20000")) == Decimal("6000")
        # 10001 * 0.3 = 3000.3 -> 3000
        assert policy.compute(Decimal("10001")) == Decimal("3000")

    def test_flat_rate_policy(self):
        policy = FlatRateTdsPolicy(Decimal("0.02"))

        assert policy.compute(Decimal("1000")) == Decimal("20")
        assert policy.compute(Decimal("150")) == Decimal("3")
