from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator

from market_tracker.core.errors import ConfigurationError

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    APP_NAME: str = "BconomyMarketTracker"
    APP_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Storage
    DB_URL: str = Field(default="", description="Database connection string (SQLite file path)")

    # Marketplace API
    BCONOMY_API_KEY: str = Field(default="", description="Bconomy API Key")
    BCONOMY_API_URL: str = Field(default="https://bconomy.net/api/data", description="Bconomy data endpoint")
    HTTP_TIMEOUT: float = Field(default=10.0, description="Per-request timeout in seconds")
    RATE_LIMIT_PER_SECOND: float = Field(default=10.0, description="Max API requests per second")

    # Item Catalog
    ITEM_COUNT: int = Field(default=165, description="Size of the generated catalog (ids 0..N-1)")
    ITEM_CATALOG_PATH: Optional[str] = Field(default=None, description="JSON catalog overriding the generated one")

    # Jobs
    TICKER_USE_BULK: bool = Field(default=True, description="Use the bulk marketPreview endpoint")
    CANDLE_INTERVAL: str = Field(default="1h", description="Candle interval code")
    CANDLE_LOOKBACK_BUCKETS: int = Field(default=1, description="Buckets rebuilt per run, current one included")
    STATS_BATCH_COUNT: int = Field(default=2, description="Number of disjoint stats batches")
    STATS_CONCURRENCY: int = Field(default=50, description="Max in-flight item refreshes")

    # Scheduler timeouts (seconds)
    TICKER_TIMEOUT: float = 5.0
    CANDLE_TIMEOUT: float = 15.0
    STATS_TIMEOUT: float = 30.0

    @field_validator("RATE_LIMIT_PER_SECOND", "STATS_BATCH_COUNT", "STATS_CONCURRENCY", "CANDLE_LOOKBACK_BUCKETS")
    @classmethod
    def must_be_positive(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v

    def require(self, *names: str):
        """Raise ConfigurationError listing every blank setting in `names`."""
        missing = [name for name in names if not str(getattr(self, name) or "").strip()]
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}", missing=missing)

settings = Settings()
