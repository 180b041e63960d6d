"""Application configuration via environment variables."""

from pathlib import Path
from pydantic_settings import BaseSettings

PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    database_url: str = f"sqlite:///{PROJECT_ROOT / 'hedgebot.db'}"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173"]

    # Telegram
    telegram_bot_token: str = ""

    # Deribit public API
    deribit_base_url: str = "https://www.deribit.com/api/v2"
    deribit_timeout_seconds: float = 10.0
    deribit_max_concurrency: int = 4  # venue is rate-limited
    supported_assets: list[str] = ["BTC", "ETH"]

    # Expiry horizons
    reference_timezone: str = "Europe/London"
    expiry_cutoff_hour: int = 9
    daily_horizon_days: int = 3
    weekly_horizon_count: int = 4
    monthly_horizon_months: int = 3

    # Threshold monitor
    price_check_interval_seconds: int = 5
    percent_check_interval_seconds: int = 5
    default_percent_sensitivity: float = 10.0

    model_config = {"env_prefix": "HB_", "env_file": ".env"}


settings = Settings()
