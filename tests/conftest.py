import itertools
import os

# arenaapi.config 로드 전에 설정
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "test_key_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "test_webhook_secret"

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from arenaapi.database.session import transactional
from arenaapi.models.base import Base
from arenaapi.models import audit, match, transaction, user, withdrawal  # noqa: F401
from arenaapi.models.match import Match as MatchModel, MatchStatusEnum
from arenaapi.models.transaction import TransactionCategory
from arenaapi.models.user import User as UserModel
from arenaapi.services.wallet_ledger_service import WalletLedgerService
from arenaapi.utils.timezone_utils import get_utc_now


@pytest.fixture
def db_session():
    """테스트마다 새 in-memory sqlite DB"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(
        autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def make_user(db_session):
    """사용자 생성 + 원장(deposit)으로 초기 잔액 지급"""
    counter = itertools.count(1)

    def _make_user(balance="0", role="user", is_kyc_verified=False, is_banned=False):
        n = next(counter)
        instance = UserModel(
            email=f"player{n}@example.com",
            nickname=f"player{n}",
            role=role,
            is_active=True,
            is_banned=is_banned,
            is_kyc_verified=is_kyc_verified,
            wallet_balance=Decimal("0"),
            bonus_balance=Decimal("0"),
        )
        db_session.add(instance)
        db_session.commit()

        if Decimal(str(balance)) > 0:
            with transactional(db_session):
                WalletLedgerService(db_session).credit(
                    instance.id,
                    balance,
                    TransactionCategory.DEPOSIT,
                    description="Initial deposit",
                )
        return instance.id

    return _make_user


@pytest.fixture
def admin_id(make_user):
    return make_user(role="admin")


@pytest.fixture
def make_match(db_session, admin_id):
    """DB에 직접 매치 생성 (기본: 모집 중, 48시간 후 시작)"""

    def _make_match(
        entry_fee="50",
        max_slots=2,
        status=MatchStatusEnum.REGISTRATION_OPEN,
        starts_in=timedelta(hours=48),
        per_kill_prize="0",
        prize_distribution=None,
        room_id=None,
        room_password=None,
        room_credentials_visible=False,
        title="Evening Squad Cup",
    ):
        instance = MatchModel(
            title=title,
            game_type="battle_royale",
            mode="solo",
            entry_fee=Decimal(entry_fee),
            prize_pool=Decimal("0"),
            per_kill_prize=Decimal(per_kill_prize),
            prize_distribution=prize_distribution or [],
            max_slots=max_slots,
            filled_slots=0,
            room_id=room_id,
            room_password=room_password,
            room_credentials_visible=room_credentials_visible,
            scheduled_at=get_utc_now() + starts_in,
            status=status,
            created_by=admin_id,
        )
        db_session.add(instance)
        db_session.commit()
        return instance.id

    return _make_match
