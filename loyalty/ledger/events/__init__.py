from loyalty.ledger.events.service import EventPointsPool
from loyalty.ledger.events.types import EventPoolStatus

__all__ = ["EventPointsPool", "EventPoolStatus"]
