"""Application configuration schema and validation."""

from typing import Literal

from pydantic import Field, PostgresDsn, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SHARP_BOOKS = ["pinnacle", "lowvig", "betonlineag", "fanduel", "draftkings"]

DEFAULT_SPORTS = [
    "basketball_nba",
    "basketball_ncaab",
    "americanfootball_nfl",
    "americanfootball_ncaaf",
    "icehockey_nhl",
    "baseball_mlb",
]


class AppConfig(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    env: Literal["dev", "staging", "prod"] = Field(
        ...,
        description="Application environment",
    )
    db_dsn: PostgresDsn = Field(
        ...,
        description="PostgreSQL database connection string",
    )
    db_pool_min: int = Field(
        default=2,
        ge=1,
        description="Minimum database connection pool size",
    )
    db_pool_max: int = Field(
        default=10,
        ge=1,
        description="Maximum database connection pool size",
    )
    odds_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="API key for the sportsbook odds feed",
    )
    odds_api_base_url: str = Field(
        default="https://api.the-odds-api.com/v4",
        description="Base URL of the sportsbook odds feed",
    )
    gamma_api_base_url: str = Field(
        default="https://gamma-api.polymarket.com",
        description="Base URL of the exchange listing feed",
    )
    clob_api_base_url: str = Field(
        default="https://clob.polymarket.com",
        description="Base URL of the exchange order book (live prices)",
    )
    discord_token: SecretStr = Field(
        default=SecretStr(""),
        description="Discord bot token for bet notifications",
    )
    discord_guild_id: str = Field(
        default="",
        description="Discord guild (server) ID for bot operations",
    )
    alerts_channel: str = Field(
        default="bet-alerts",
        description="Channel name for bet placed/sold/resolved notifications",
    )
    owner_id: str = Field(
        default="default",
        description="Policy owner this engine instance trades for",
    )
    dry_run: bool = Field(
        default=True,
        description="Trade against the in-memory paper client instead of the exchange",
    )
    paper_starting_balance: float = Field(
        default=1000.0,
        ge=0.0,
        description="Starting USD balance of the paper trading client",
    )
    sports: list[str] = Field(
        default=DEFAULT_SPORTS,
        description="Odds feed sport keys to scan each cycle",
    )
    sharp_books: list[str] = Field(
        default=DEFAULT_SHARP_BOOKS,
        description="Trusted sportsbooks that contribute to consensus (equal weight)",
    )
    max_odds_age_seconds: int = Field(
        default=120,
        ge=10,
        le=3600,
        description="Quotes older than this are excluded from consensus",
    )
    poll_interval_seconds: float = Field(
        default=5.0,
        ge=1.0,
        le=300.0,
        description="Seconds between poll cycles",
    )
    resolution_sweep_every: int = Field(
        default=12,
        ge=1,
        le=1000,
        description="Run the market-resolution sweep every N poll cycles",
    )
    http_timeout_seconds: float = Field(
        default=10.0,
        ge=1.0,
        le=60.0,
        description="Total timeout for a single collaborator HTTP request",
    )
    max_retry_attempts: int = Field(
        default=3,
        ge=0,
        le=5,
        description="Retries for bulk fetches (odds, listings, positions)",
    )
    price_retry_attempts: int = Field(
        default=2,
        ge=0,
        le=5,
        description="Retries for latency-sensitive price lookups",
    )
    retry_base_delay_ms: int = Field(
        default=500,
        ge=10,
        le=10000,
        description="Base delay for exponential backoff (milliseconds)",
    )
    retry_max_delay_ms: int = Field(
        default=5000,
        ge=10,
        le=60000,
        description="Upper bound on a single backoff delay (milliseconds)",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("db_pool_max")
    @classmethod
    def validate_pool_max(cls, v: int, info) -> int:
        """Ensure pool_max >= pool_min."""
        if "db_pool_min" in info.data and v < info.data["db_pool_min"]:
            raise ValueError("db_pool_max must be >= db_pool_min")
        return v

    @field_validator("retry_max_delay_ms")
    @classmethod
    def validate_retry_delays(cls, v: int, info) -> int:
        """Ensure retry_max_delay_ms >= retry_base_delay_ms."""
        if "retry_base_delay_ms" in info.data and v < info.data["retry_base_delay_ms"]:
            raise ValueError("retry_max_delay_ms must be >= retry_base_delay_ms")
        return v


_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get or create the singleton AppConfig instance."""
    global _config
    if _config is None:
        _config = AppConfig()
    return _config
