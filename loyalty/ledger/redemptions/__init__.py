from loyalty.ledger.redemptions.service import RedemptionStateMachine

__all__ = ["RedemptionStateMachine"]
