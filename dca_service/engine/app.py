"""Service wiring.

Builds every collaborator explicitly from Settings and exposes the
operations the scheduler and CLI call.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from dca_service.config import Settings
from dca_service.database import create_db_and_tables, make_engine
from dca_service.engine.dca_job import DcaEngine
from dca_service.engine.report import TickReport
from dca_service.engine.scheduler import DCA_JOB_ID, TRAILING_STOP_JOB_ID, TickScheduler
from dca_service.engine.trailing_stop_job import TrailingStopEngine
from dca_service.models import Credential, Position
from dca_service.models.credential import DEFAULT_LIGHTER_HOST
from dca_service.services.lighter_client import LighterGateway
from dca_service.services.market_data import HyperliquidMarketData
from dca_service.services.ports import MarketDataProvider, OrderGateway
from dca_service.store import SqlStore

logger = logging.getLogger(__name__)


def build_gateway(engine: Engine, settings: Settings) -> LighterGateway:
    """Create a LighterGateway from the active credential.

    Without a credential the gateway has no key and fails its readiness check,
    which aborts DCA ticks with a ConfigurationError.
    """
    with Session(engine) as session:
        cred = session.exec(
            select(Credential).where(Credential.is_active == True)
        ).first()

    if cred:
        kwargs = cred.gateway_kwargs(settings.encryption_key)
    else:
        logger.warning("No active credential; DCA ticks will fail until one is added")
        kwargs = {"host": DEFAULT_LIGHTER_HOST, "private_key": "", "api_key_index": 0, "account_index": 0}

    return LighterGateway(**kwargs, slippage_pct=settings.order_slippage_pct, dry_run=settings.dry_run)


@dataclass
class TradingService:
    settings: Settings
    store: SqlStore
    market_data: MarketDataProvider
    gateway: OrderGateway
    dca: DcaEngine
    trailing: TrailingStopEngine
    scheduler: TickScheduler

    async def run_dca_tick(self) -> TickReport:
        return await self.dca.run_dca_tick()

    async def run_trailing_stop_tick(self) -> TickReport:
        return await self.trailing.run_trailing_stop_tick()

    def set_trailing_stop(self, position_id: int, enabled: bool, distance=None, current_price=None) -> Position:
        return self.trailing.set_trailing_stop(position_id, enabled, distance, current_price)

    async def startup(self):
        """Reconcile interrupted orders, then start the tick jobs."""
        await self.dca.reconcile_pending_orders()
        self.scheduler.add_tick_job(DCA_JOB_ID, self.run_dca_tick, self.settings.dca_schedule_interval)
        self.scheduler.add_tick_job(
            TRAILING_STOP_JOB_ID, self.run_trailing_stop_tick, self.settings.trailing_stop_schedule_interval
        )
        self.scheduler.start()

    async def shutdown(self):
        self.scheduler.stop()
        close = getattr(self.gateway, "close", None)
        if close is not None:
            await close()


def build_service(
    settings: Settings,
    engine: Engine | None = None,
    market_data: MarketDataProvider | None = None,
    gateway: OrderGateway | None = None,
    scheduler: TickScheduler | None = None,
) -> TradingService:
    """Construct the service graph; any collaborator can be passed in to replace the default."""
    engine = engine or make_engine(settings.database_url)
    create_db_and_tables(engine)
    store = SqlStore(engine)
    market_data = market_data or HyperliquidMarketData()
    gateway = gateway or build_gateway(engine, settings)
    return TradingService(
        settings=settings,
        store=store,
        market_data=market_data,
        gateway=gateway,
        dca=DcaEngine(store, market_data, gateway, settings),
        trailing=TrailingStopEngine(store, market_data),
        scheduler=scheduler or TickScheduler(),
    )
