from loyalty.ledger.accounts.service import AccountLedger

__all__ = ["AccountLedger"]
