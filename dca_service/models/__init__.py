"""Database models."""

from dca_service.models.campaign import Campaign
from dca_service.models.position import Position, PositionStatus, PositionType
from dca_service.models.trade import TradeRecord
from dca_service.models.tick_log import TickLog
from dca_service.models.credential import Credential

__all__ = [
    "Campaign",
    "Position",
    "PositionStatus",
    "PositionType",
    "TradeRecord",
    "TickLog",
    "Credential",
]
