from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = Field(default="Trade Journal", description="Display name for the API")

    database_path: str = Field(default="data/journal.db", description="SQLite database file")

    session_secret: str = Field(default="", description="Secret mixed into password hashes")
    session_cookie: str = Field(default="tj_session", description="Session cookie name")
    session_expiry_days: int = Field(default=7, description="Session lifetime in days")
    max_login_attempts: int = Field(default=5, description="Failed logins allowed per window")
    login_window_seconds: int = Field(default=900, description="Failed login window in seconds")
    cors_origins: list[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")

    ai_gateway_url: str = Field(
        default="https://ai.gateway.lovable.dev/v1/chat/completions",
        description="OpenAI-compatible chat completions endpoint",
    )
    ai_gateway_key: str = Field(default="", description="AI gateway bearer key")
    ai_model: str = Field(default="google/gemini-2.5-flash", description="Model requested from the gateway")
    ai_timeout: float = Field(default=60.0, description="AI request timeout in seconds")
    ai_rate_limit: float = Field(default=2.0, description="AI requests per second")
    ai_history_limit: int = Field(default=20, description="Past trades used as prediction context")

    coingecko_base_url: str = Field(default="https://api.coingecko.com/api/v3", description="CoinGecko REST base")
    twelve_data_base_url: str = Field(default="https://api.twelvedata.com", description="Twelve Data REST base")
    twelve_data_api_key: str = Field(default="", description="Twelve Data API key")
    finnhub_base_url: str = Field(default="https://finnhub.io/api/v1", description="Finnhub REST base")
    finnhub_api_key: str = Field(default="", description="Finnhub API key")
    binance_ws_url: str = Field(default="wss://stream.binance.com:9443/stream", description="Binance combined stream")

    ticker_enabled: bool = Field(default=False, description="Start market ticker polling with the app")
    binance_stream_enabled: bool = Field(default=False, description="Subscribe to Binance websocket ticks")
    coingecko_interval: float = Field(default=60.0, description="CoinGecko poll interval in seconds")
    twelve_data_interval: float = Field(default=30.0, description="Twelve Data poll interval in seconds")
    finnhub_interval: float = Field(default=15.0, description="Finnhub poll interval in seconds")
    ws_max_reconnect_attempts: int = Field(default=5, description="Websocket reconnect attempts")
    ws_reconnect_delay: float = Field(default=1.0, description="Base websocket reconnect delay in seconds")
    market_timeout: float = Field(default=10.0, description="Market data request timeout in seconds")

    starting_balance: float = Field(default=10000.0, description="Equity curve starting balance")

    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/journal.log", description="Log file path")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    global _settings
    _settings = Settings()
    return _settings
