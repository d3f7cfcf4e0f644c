"""SQLModel database engine construction and schema setup."""

import logging

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

logger = logging.getLogger(__name__)


def make_engine(database_url: str, echo: bool = False) -> Engine:
    """Create a SQLAlchemy engine for the given URL."""
    connect_args = {}
    kwargs = {}
    # SQLite needs check_same_thread=False; PostgreSQL does not
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        # In-memory databases live per connection; share one across sessions
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    return create_engine(
        database_url,
        echo=echo,
        connect_args=connect_args,
        **kwargs,
    )


def _run_migrations(engine: Engine):
    """Run lightweight schema migrations for columns added after first release."""
    from sqlalchemy import text

    inspector = inspect(engine)

    if "campaign" not in inspector.get_table_names():
        return

    columns = {col["name"] for col in inspector.get_columns("campaign")}
    for column, ddl in (
        ("version", "version INTEGER NOT NULL DEFAULT 0"),
        ("order_sequence", "order_sequence INTEGER NOT NULL DEFAULT 0"),
    ):
        if column not in columns:
            logger.info(f"Migrating: adding campaign.{column}")
            with engine.connect() as conn:
                conn.execute(text(f"ALTER TABLE campaign ADD COLUMN {ddl}"))
                conn.commit()

    if "position" in inspector.get_table_names():
        columns = {col["name"] for col in inspector.get_columns("position")}
        if "version" not in columns:
            logger.info("Migrating: adding position.version")
            with engine.connect() as conn:
                conn.execute(text("ALTER TABLE position ADD COLUMN version INTEGER NOT NULL DEFAULT 0"))
                conn.commit()


def create_db_and_tables(engine: Engine):
    """Create all tables. Called on startup."""
    # Register table metadata
    import dca_service.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
    _run_migrations(engine)
