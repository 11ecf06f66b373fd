# Repository layer - Data access with Pydantic responses

from .base import BaseRepository
from .user_repository import UserRepository
from .wallet_transaction_repository import WalletTransactionRepository
from .match_repository import MatchRepository, MatchParticipantRepository
from .withdrawal_repository import WithdrawalRepository, SavedPaymentMethodRepository
from .audit_repository import AdminLogRepository, NotificationRepository

__all__ = [
    "BaseRepository",
    "UserRepository",
    "WalletTransactionRepository",
    "MatchRepository",
    "MatchParticipantRepository",
    "WithdrawalRepository",
    "SavedPaymentMethodRepository",
    "AdminLogRepository",
    "NotificationRepository",
]
