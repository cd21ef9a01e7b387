"""Application configuration via environment variables."""

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from hedgebot.utils.constants import VALID_INTERVALS

PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    database_url: str = f"sqlite:///{PROJECT_ROOT / 'hedgebot.db'}"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173"]
    api_token: str = ""  # empty disables bearer auth on the control API

    # Exchange (Binance USDT-M futures, hedge mode)
    binance_api_key: str = ""
    binance_api_secret: str = ""
    binance_testnet: bool = False
    dry_run: bool = True
    symbol: str = "BTCUSDT"
    leverage: int = Field(default=10, ge=1, le=125)
    order_qty: float = Field(default=0.001, gt=0)
    order_timeout_seconds: float = Field(default=15.0, gt=0)
    max_consecutive_order_failures: int = Field(default=20, ge=0)  # 0 = never halt

    # Strategy distances, in price units
    profit_point: float = Field(default=300.0, gt=0)
    boundary_gap: float = Field(default=300.0, gt=0)
    trail_activation: float = Field(default=400.0, gt=0)
    hedge_reentry_distance: float = Field(default=250.0, gt=0)
    hedge_cooldown_seconds: float = Field(default=60.0, ge=0)
    promotion_boundary_policy: Literal["reset", "hedge_entry"] = "reset"

    # Monitor loop
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    price_backoff_seconds: float = Field(default=0.25, gt=0)
    error_backoff_seconds: float = Field(default=2.0, gt=0)
    first_price_timeout_seconds: float = Field(default=30.0, gt=0)
    auto_start: bool = False

    # Signal generator
    signal_interval: str = "3m"
    signal_lookback: int = Field(default=20, ge=2)
    signal_tp_sl_delta: float = Field(default=300.0, gt=0)
    signal_refresh_seconds: int = Field(default=2, ge=1)

    # Price feed
    price_ws_url: str = "wss://fstream.binance.com/ws"
    price_reconnect_seconds: float = Field(default=5.0, gt=0)

    # Telegram
    telegram_bot_token: str = ""
    telegram_chat_ids: list[int] = []

    model_config = {"env_prefix": "HB_", "env_file": ".env"}

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, value: str) -> str:
        text = value.strip().upper()
        if not text:
            raise ValueError("must not be empty")
        return text

    @field_validator("signal_interval")
    @classmethod
    def _known_interval(cls, value: str) -> str:
        if value not in VALID_INTERVALS:
            raise ValueError(f"must be one of {VALID_INTERVALS}")
        return value


settings = Settings()
