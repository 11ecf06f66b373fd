from .user import User
from .wallet import WalletTransaction
from .match import Match, MatchParticipant
from .withdrawal import Withdrawal, SavedPaymentMethod
