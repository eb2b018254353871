"""
Market Relay - Configuration Settings
"""
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
import json


def _parse_list(v):
    if isinstance(v, str):
        try:
            return json.loads(v)
        except json.JSONDecodeError:
            return [item.strip() for item in v.split(",") if item.strip()]
    return v


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # =========================
    # Application Settings
    # =========================
    APP_NAME: str = "Market Relay"
    APP_ENV: str = "development"
    DEBUG: bool = False
    API_V1_PREFIX: str = "/api/v1"

    # =========================
    # Server Configuration
    # =========================
    BACKEND_HOST: str = "0.0.0.0"
    BACKEND_PORT: int = 8080
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # =========================
    # Data Source Routing
    # =========================
    # Real-time suffixes are checked first. An empty suffix matches every id.
    REAL_TIME_SUFFIXES: List[str] = [".HK", ".T"]
    DELAYED_SUFFIXES: List[str] = [""]

    @field_validator("CORS_ORIGINS", "REAL_TIME_SUFFIXES", "DELAYED_SUFFIXES", mode="before")
    @classmethod
    def parse_list_fields(cls, v):
        return _parse_list(v)

    # =========================
    # Data Providers - API Keys
    # =========================
    # Delayed quotes
    ALPHA_VANTAGE_API_KEY: str = "demo"
    ALPHA_VANTAGE_BASE_URL: str = "https://www.alphavantage.co/query"
    ALPHA_VANTAGE_BATCH_SIZE: int = 5
    ALPHA_VANTAGE_MIN_BATCH_INTERVAL_SECONDS: Optional[int] = None

    # Real-time quotes
    ALLTICK_API_KEY: str = ""
    ALLTICK_BASE_URL: str = "https://quote.alltick.io"

    # Crypto quotes
    COINMARKETCAP_API_KEY: str = ""
    COINMARKETCAP_BASE_URL: str = "https://pro-api.coinmarketcap.com"
    COINMARKETCAP_CONVERT: str = "USD"

    UPSTREAM_TIMEOUT_SECONDS: float = 10.0

    # =========================
    # Synthetic Data
    # =========================
    GAUSSIAN_BASE_PRICE: float = 100.0
    GAUSSIAN_VOLATILITY: float = 0.02
    GAUSSIAN_DRIFT: float = 0.0001
    GAUSSIAN_SEED: Optional[int] = None

    # =========================
    # Throttle Settings
    # =========================
    MIN_THROTTLE_SECONDS: int = 1
    MAX_THROTTLE_SECONDS: int = 3600
    DEFAULT_THROTTLE_SECONDS: int = 5

    # =========================
    # Scheduler Settings
    # =========================
    SCHEDULER_ENABLED: bool = True
    FETCH_INTERVAL_SECONDS: int = 30
    MAX_CONCURRENT_FETCHES: int = 10

    # =========================
    # Resilience
    # =========================
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_OPEN_SECONDS: float = 60.0
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_MS: int = 1000
    RETRY_MAX_DELAY_MS: int = 30000
    # Provider names (DataSource values) wrapped by retry and circuit breaker
    RESILIENT_PROVIDERS: List[str] = ["alpha_vantage", "all_tick", "coin_market_cap"]
    # Provider names that fall back to synthetic quotes on failure
    FALLBACK_PROVIDERS: List[str] = []
    SUPPRESS_ZERO_PRICE: bool = False

    @field_validator("RESILIENT_PROVIDERS", "FALLBACK_PROVIDERS", mode="before")
    @classmethod
    def parse_provider_lists(cls, v):
        return _parse_list(v)

    # =========================
    # Message Bus (Redis pub/sub)
    # =========================
    BUS_ENABLED: bool = False
    REDIS_URL: str = "redis://localhost:6379/0"
    BUS_TOPIC_PREFIX: str = "market.data"
    BUS_CLIENT_NAME: str = "market-relay-publisher"

    # =========================
    # Logging
    # =========================
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_TO_FILE: bool = False


# Create global settings instance
settings = Settings()
