from loyalty.db.repo.accounts_repo import AccountsRepo
from loyalty.db.repo.events_repo import EventsRepo
from loyalty.db.repo.ledger_repo import LedgerRepo
from loyalty.db.repo.promotions_repo import PromotionsRepo
from loyalty.db.repo.transactions_repo import TransactionFilters, TransactionsRepo
from loyalty.db.repo.users_repo import UsersRepo

__all__ = [
    "AccountsRepo",
    "EventsRepo",
    "LedgerRepo",
    "PromotionsRepo",
    "TransactionFilters",
    "TransactionsRepo",
    "UsersRepo",
]
