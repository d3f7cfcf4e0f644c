"""Per-tick report: one tagged result per evaluated item plus aggregate counts."""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from dca_service.models.tick_log import TickLog


class Outcome(str, Enum):
    EXECUTED = "EXECUTED"
    UPDATED = "UPDATED"
    CLOSED = "CLOSED"
    SKIPPED = "SKIPPED"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


@dataclass
class ItemResult:
    item_id: int | None
    symbol: str | None
    outcome: Outcome
    message: str = ""
    detail: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def error(cls, item_id, symbol, exc: BaseException) -> "ItemResult":
        return cls(item_id, symbol, Outcome.ERROR, str(exc) or type(exc).__name__, {"error_type": type(exc).__name__})


@dataclass
class TickReport:
    kind: str  # "dca" or "trailing_stop"
    tick_id: str = field(default_factory=lambda: uuid4().hex[:12])
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    skipped_overlap: bool = False
    items: list[ItemResult] = field(default_factory=list)

    def add(self, result: ItemResult) -> ItemResult:
        self.items.append(result)
        return result

    @property
    def counts(self) -> dict[str, int]:
        counter = Counter(item.outcome.value for item in self.items)
        return {outcome.value: counter.get(outcome.value, 0) for outcome in Outcome}

    def outcome_for(self, item_id: int) -> Outcome | None:
        for item in self.items:
            if item.item_id == item_id:
                return item.outcome
        return None

    def summary(self) -> str:
        parts = [f"{name.lower()}={count}" for name, count in self.counts.items() if count]
        return f"{self.kind} tick {self.tick_id}: {len(self.items)} items" + (f" ({', '.join(parts)})" if parts else "")

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "tick_id": self.tick_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "skipped_overlap": self.skipped_overlap,
            "counts": self.counts,
            "items": [
                {
                    "item_id": item.item_id,
                    "symbol": item.symbol,
                    "outcome": item.outcome.value,
                    "message": item.message,
                    "detail": item.detail,
                }
                for item in self.items
            ],
        }

    def to_tick_logs(self, item_kind: str) -> list[TickLog]:
        return [
            TickLog(
                tick_id=self.tick_id,
                tick_kind=self.kind,
                item_kind=item_kind,
                item_id=item.item_id,
                symbol=item.symbol,
                outcome=item.outcome.value,
                message=item.message,
                details=item.detail or None,
            )
            for item in self.items
        ]
