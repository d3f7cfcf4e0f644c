"""Application configuration via environment variables."""

from pydantic import field_validator
from pydantic_settings import BaseSettings

from dca_service.utils.constants import VALID_INTERVALS


class Settings(BaseSettings):
    database_url: str = "sqlite:///dca_service.db"
    encryption_key: str = ""  # Fernet key; generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    log_level: str = "INFO"

    # DCA trigger
    quote_asset: str = "USDC"
    candle_interval_minutes: int = 30
    candle_limit: int = 200
    ema_period: int = 89
    order_multiplier: float = 1.5

    # Execution
    order_slippage_pct: float = 1.0  # worst acceptable price for market orders
    dry_run: bool = False

    # Scheduling
    dca_schedule_interval: str = "30m"
    trailing_stop_schedule_interval: str = "1m"

    model_config = {"env_prefix": "DCA_", "env_file": ".env"}

    @field_validator("dca_schedule_interval", "trailing_stop_schedule_interval")
    @classmethod
    def _validate_interval(cls, value: str) -> str:
        if value not in VALID_INTERVALS:
            allowed = ", ".join(VALID_INTERVALS)
            raise ValueError(f"must be one of: {allowed}")
        return value

    @field_validator("candle_limit", "ema_period", "candle_interval_minutes")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be positive")
        return value


def get_settings(**overrides) -> Settings:
    """Build a Settings instance from the environment plus explicit overrides."""
    return Settings(**overrides)
