from fastapi import Depends
from sqlalchemy.orm import Session

from arenaapi.containers import container
from arenaapi.database.session import get_db

# Services
from arenaapi.services.match_service import MatchService
from arenaapi.services.withdrawal_service import WithdrawalService
from arenaapi.services.wallet_ledger_service import WalletLedgerService
from arenaapi.services.payment_service import PaymentService


def get_match_service(db: Session = Depends(get_db)) -> MatchService:
    return container.services.match_service(db=db)


def get_withdrawal_service(db: Session = Depends(get_db)) -> WithdrawalService:
    return container.services.withdrawal_service(db=db)


def get_wallet_service(db: Session = Depends(get_db)) -> WalletLedgerService:
    return container.services.wallet_service(db=db)


def get_payment_service(db: Session = Depends(get_db)) -> PaymentService:
    return container.services.payment_service(db=db)
