from loyalty.ledger.promotions.service import PromotionEngine

__all__ = ["PromotionEngine"]
