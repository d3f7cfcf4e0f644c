"""SQLModel-backed store for campaigns, positions, trade records and tick logs.

Every update of a Campaign or Position is guarded by its `version` column:
the row is only written if it still carries the version that was loaded,
otherwise StaleRecord is raised and nothing is written.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from dca_service.errors import ConfigurationError, NotFound, StaleRecord
from dca_service.models import Campaign, Position, PositionStatus, TickLog, TradeRecord

logger = logging.getLogger(__name__)

VERSIONED = (Campaign, Position)


class SqlStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    # -- loading -------------------------------------------------------------

    def load_active_campaigns(self) -> list[Campaign]:
        try:
            with Session(self.engine) as session:
                return list(session.exec(
                    select(Campaign).where(Campaign.is_active == True).order_by(Campaign.id)
                ).all())
        except SQLAlchemyError as e:
            raise ConfigurationError(f"Store unavailable: {e}") from e

    def load_active_positions(self, trailing_only: bool = True) -> list[Position]:
        stmt = select(Position).where(Position.status == PositionStatus.ACTIVE)
        if trailing_only:
            stmt = stmt.where(Position.trailing_stop_enabled == True)
        try:
            with Session(self.engine) as session:
                return list(session.exec(stmt.order_by(Position.id)).all())
        except SQLAlchemyError as e:
            raise ConfigurationError(f"Store unavailable: {e}") from e

    def load_pending_campaigns(self) -> list[Campaign]:
        """Campaigns with an order intent that was never confirmed."""
        with Session(self.engine) as session:
            return list(session.exec(
                select(Campaign).where(Campaign.pending_client_order_id != None).order_by(Campaign.id)
            ).all())

    def get_campaign(self, campaign_id: int) -> Campaign:
        with Session(self.engine) as session:
            campaign = session.get(Campaign, campaign_id)
        if campaign is None:
            raise NotFound(f"Campaign {campaign_id} not found")
        return campaign

    def get_campaign_by_symbol(self, symbol: str) -> Campaign | None:
        with Session(self.engine) as session:
            return session.exec(select(Campaign).where(Campaign.symbol == symbol)).first()

    def get_position(self, position_id: int) -> Position:
        with Session(self.engine) as session:
            position = session.get(Position, position_id)
        if position is None:
            raise NotFound(f"Position {position_id} not found")
        return position

    def list_trade_records(self, symbol: str | None = None, limit: int = 50) -> list[TradeRecord]:
        stmt = select(TradeRecord).order_by(TradeRecord.timestamp.desc(), TradeRecord.id.desc())
        if symbol is not None:
            stmt = stmt.where(TradeRecord.symbol == symbol)
        with Session(self.engine) as session:
            return list(session.exec(stmt.limit(limit)).all())

    def list_tick_logs(self, tick_id: str | None = None, limit: int = 100) -> list[TickLog]:
        stmt = select(TickLog).order_by(TickLog.id.desc())
        if tick_id is not None:
            stmt = stmt.where(TickLog.tick_id == tick_id)
        with Session(self.engine) as session:
            return list(session.exec(stmt.limit(limit)).all())

    # -- writing -------------------------------------------------------------

    def save(self, entity):
        """Insert a new record, or write a loaded one back with a version check."""
        if entity.id is None:
            with Session(self.engine) as session:
                session.add(entity)
                session.commit()
                session.refresh(entity)
            return entity

        if not isinstance(entity, VERSIONED):
            with Session(self.engine) as session:
                merged = session.merge(entity)
                session.commit()
                session.refresh(merged)
            return merged

        with Session(self.engine) as session:
            _versioned_update(session, entity)
            session.commit()
        entity.version += 1
        return entity

    def save_with_trade(self, entity, record: TradeRecord) -> TradeRecord:
        """Version-checked update of `entity` and the trade record it produced, in one transaction."""
        if record.id is not None:
            raise ValueError("Trade records are append-only")
        with Session(self.engine) as session:
            _versioned_update(session, entity)
            session.add(record)
            session.commit()
            session.refresh(record)
        entity.version += 1
        logger.info(
            f"[{record.symbol}] Trade recorded: {record.side} {record.quantity} @ {record.price} ({record.reason})"
        )
        return record

    def append_tick_logs(self, logs: list[TickLog]) -> None:
        if not logs:
            return
        with Session(self.engine) as session:
            session.add_all(logs)
            session.commit()


def _versioned_update(session: Session, entity):
    """UPDATE ... WHERE id = ? AND version = ?; StaleRecord when no row matches."""
    model = type(entity)
    if not isinstance(entity, VERSIONED) or entity.id is None:
        raise ValueError(f"{model.__name__} is not a stored versioned record")
    entity.updated_at = datetime.now(timezone.utc)
    values = entity.model_dump(exclude={"id", "version"})
    stmt = (
        update(model)
        .where(model.id == entity.id, model.version == entity.version)
        .values(**values, version=entity.version + 1)
    )
    result = session.connection().execute(stmt)
    if result.rowcount != 1:
        raise StaleRecord(
            f"{model.__name__} {entity.id} changed since it was loaded (version {entity.version})"
        )
