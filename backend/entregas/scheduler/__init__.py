from entregas.scheduler.offer_expiry import OfferExpiryScheduler

__all__ = ["OfferExpiryScheduler"]
