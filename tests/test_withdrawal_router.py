import pytest
from decimal import Decimal
from fastapi.testclient import TestClient
from unittest.mock import Mock

from arenaapi.core.auth_middleware import get_current_active_user
from arenaapi.core.exceptions import EligibilityError
from arenaapi.main import app
from arenaapi.models.user import UserRole
from arenaapi.models.withdrawal import PaymentMethodEnum, WithdrawalStatusEnum
from arenaapi.schemas.user import User as UserSchema
from arenaapi.schemas.withdrawal import EligibilityResponse, Withdrawal


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()


def _login(role=UserRole.USER, user_id=1):
    app.dependency_overrides[get_current_active_user] = lambda: UserSchema(
        id=user_id,
        email=f"user{user_id}@example.com",
        nickname=f"user{user_id}",
        role=role,
        is_kyc_verified=True,
    )


def _withdrawal(status=WithdrawalStatusEnum.PENDING):
    return Withdrawal(
        id=7,
        user_id=1,
        amount=Decimal("1000"),
        tds=Decimal("20"),
        net_amount=Decimal("980"),
        method=PaymentMethodEnum.UPI,
        upi_id="player@okbank",
        status=status,
        wallet_balance_at_request=Decimal("5000"),
        hold_transaction_id=3,
    )


class TestWithdrawalRequest:
    """출금 요청 API"""

    def test_create_withdrawal(self, client):
        _login()
        mock_service = Mock()
        mock_service.create_request.return_value = _withdrawal()

        with app.container.services.withdrawal_service.override(mock_service):
            response = client.post(
                "/api/v1/withdrawals",
                json={"amount": "1000", "method": "upi", "upi_id": "player@okbank"},
            )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "pending"
        assert Decimal(str(data["net_amount"])) == Decimal("980")
        user_id, request = mock_service.create_request.call_args.args
        assert user_id == 1
        assert request.amount == Decimal("1000")

    def test_ineligible_user_gets_403(self, client):
        _login()
        mock_service = Mock()
        mock_service.create_request.side_effect = EligibilityError("KYC verification required")

        with app.container.services.withdrawal_service.override(mock_service):
            response = client.post(
                "/api/v1/withdrawals",
                json={"amount": "1000", "method": "upi", "upi_id": "player@okbank"},
            )

        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == "ELIGIBILITY_001"
        assert error["message"] == "KYC verification required"

    def test_request_without_method_is_rejected(self, client):
        _login()
        mock_service = Mock()

        with app.container.services.withdrawal_service.override(mock_service):
            response = client.post("/api/v1/withdrawals", json={"amount": "1000"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_001"
        mock_service.create_request.assert_not_called()

    def test_eligibility_endpoint(self, client):
        _login()
        mock_service = Mock()
        mock_service.get_eligibility.return_value = EligibilityResponse(
            eligible=False,
            reason="You already have a pending withdrawal request",
            wallet_balance=Decimal("4000"),
            is_kyc_verified=True,
            minimum_withdrawal=Decimal("100"),
        )

        with app.container.services.withdrawal_service.override(mock_service):
            response = client.get("/api/v1/withdrawals/check-eligibility")

        assert response.status_code == 200
        assert response.json()["eligible"] is False

    def test_cancel_uses_current_user(self, client):
        _login(user_id=1)
        mock_service = Mock()
        mock_service.cancel.return_value = _withdrawal(WithdrawalStatusEnum.CANCELLED)

        with app.container.services.withdrawal_service.override(mock_service):
            response = client.delete("/api/v1/withdrawals/7")

        assert response.status_code == 200
        mock_service.cancel.assert_called_once_with(7, 1)


class TestFinanceEndpoints:
    def test_regular_user_cannot_approve(self, client):
        _login(UserRole.USER)
        mock_service = Mock()

        with app.container.services.withdrawal_service.override(mock_service):
            response = client.post("/api/v1/withdrawals/7/approve", json={})

        assert response.status_code == 403
        mock_service.approve.assert_not_called()

    def test_finance_user_can_reject(self, client):
        _login(UserRole.FINANCE, user_id=50)
        mock_service = Mock()
        mock_service.reject.return_value = _withdrawal(WithdrawalStatusEnum.REJECTED)

        with app.container.services.withdrawal_service.override(mock_service):
            response = client.post(
                "/api/v1/withdrawals/7/reject", json={"reason": "Name mismatch"}
            )

        assert response.status_code == 200
        assert response.json()["status"] == "rejected"
        mock_service.reject.assert_called_once_with(7, 50, "Name mismatch")

    def test_admin_inherits_finance_role(self, client):
        _login(UserRole.ADMIN, user_id=99)
        mock_service = Mock()
        mock_service.complete.return_value = _withdrawal(WithdrawalStatusEnum.COMPLETED)

        with app.container.services.withdrawal_service.override(mock_service):
            response = client.post(
                "/api/v1/withdrawals/7/complete",
                json={"external_reference": "UTR123"},
            )

        assert response.status_code == 200
        mock_service.complete.assert_called_once_with(7, 99, "UTR123", None)
