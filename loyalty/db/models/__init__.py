from loyalty.db.models.events import Event, EventGuest, EventOrganizer
from loyalty.db.models.ledger_entries import LedgerEntry
from loyalty.db.models.loyalty_accounts import LoyaltyAccount
from loyalty.db.models.points_transactions import PointsTransaction, TransactionPromotion
from loyalty.db.models.promotions import Promotion, PromotionUsage
from loyalty.db.models.users import User, UserRole

from loyalty.db.models import guards  # noqa: E402,F401  isort: skip

__all__ = [
    "Event",
    "EventGuest",
    "EventOrganizer",
    "LedgerEntry",
    "LoyaltyAccount",
    "PointsTransaction",
    "Promotion",
    "PromotionUsage",
    "TransactionPromotion",
    "User",
    "UserRole",
]
