from dependency_injector import containers, providers

from arenaapi.config import Settings
from arenaapi.providers.payment.razorpay import RazorpayGateway
from arenaapi.services.refund_policy import RefundPolicy
from arenaapi.services.tds_policy import ThresholdTdsPolicy
from arenaapi.services.match_service import MatchService
from arenaapi.services.withdrawal_service import WithdrawalService
from arenaapi.services.wallet_ledger_service import WalletLedgerService
from arenaapi.services.payment_service import PaymentService


class ConfigModule(containers.DeclarativeContainer):
    """Application configuration."""

    config = providers.Singleton(Settings)


class PolicyModule(containers.DeclarativeContainer):
    """Business rules and external gateways."""

    config = providers.DependenciesContainer()

    refund_policy = providers.Singleton(RefundPolicy.from_settings, settings=config.config)
    tds_policy = providers.Singleton(ThresholdTdsPolicy.from_settings, settings=config.config)
    payment_gateway = providers.Singleton(
        RazorpayGateway,
        key_id=config.config.provided.RAZORPAY_KEY_ID,
        key_secret=config.config.provided.RAZORPAY_KEY_SECRET,
        webhook_secret=config.config.provided.RAZORPAY_WEBHOOK_SECRET,
    )


class ServiceModule(containers.DeclarativeContainer):
    """Service layer dependencies. `db`는 요청 단위 세션으로 호출 시점에 주입."""

    config = providers.DependenciesContainer()
    policies = providers.DependenciesContainer()

    match_service = providers.Factory(
        MatchService, refund_policy=policies.refund_policy, settings=config.config
    )
    withdrawal_service = providers.Factory(
        WithdrawalService, tds_policy=policies.tds_policy, settings=config.config
    )
    wallet_service = providers.Factory(WalletLedgerService)
    payment_service = providers.Factory(
        PaymentService, gateway=policies.payment_gateway, settings=config.config
    )


class Container(containers.DeclarativeContainer):
    """Application container."""

    config = providers.Container(ConfigModule)
    policies = providers.Container(PolicyModule, config=config)
    services = providers.Container(ServiceModule, config=config, policies=policies)


container = Container()
