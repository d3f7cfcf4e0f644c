"""TickLog model: one row per evaluated item per tick."""

from datetime import datetime, timezone
from typing import Any

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON


class TickLog(SQLModel, table=True):
    __tablename__ = "tick_log"

    id: int | None = Field(default=None, primary_key=True)
    tick_id: str = Field(index=True)
    tick_kind: str  # "dca", "trailing_stop"
    item_kind: str  # "campaign", "position"
    item_id: int | None = Field(default=None, index=True)
    symbol: str | None = None
    outcome: str  # "EXECUTED", "UPDATED", "CLOSED", "SKIPPED", "COMPLETED", "ERROR"
    message: str | None = None
    details: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
