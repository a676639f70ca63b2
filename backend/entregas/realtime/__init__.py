"""
실시간 조정 계층 패키지
"""

from entregas.realtime.feed import ViewerFeed
from entregas.realtime.reconciler import COURIER_FEED_STATES, ShipmentReconciler

__all__ = ["ViewerFeed", "ShipmentReconciler", "COURIER_FEED_STATES"]
