"""Tick engines and service wiring."""

from dca_service.engine.app import TradingService, build_service
from dca_service.engine.report import ItemResult, Outcome, TickReport

__all__ = [
    "TradingService",
    "build_service",
    "ItemResult",
    "Outcome",
    "TickReport",
]
