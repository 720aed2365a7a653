from loyalty.ledger.users.service import UserAdministration
from loyalty.ledger.users.types import UserProfile

__all__ = ["UserAdministration", "UserProfile"]
