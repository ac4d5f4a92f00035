"""Application configuration via Pydantic Settings."""

from typing import List

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shopcrawl.core.constants import CrawlMode, SourcePlatform
from shopcrawl.core.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Run configuration loaded from environment variables and .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # App
    APP_ENV: str = "development"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = ""
    DB_ECHO: bool = False

    @model_validator(mode="after")
    def fix_database_url(self) -> "Settings":
        """Hosted Postgres hands out postgresql:// but asyncpg needs postgresql+asyncpg://"""
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            self.DATABASE_URL = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgres://"):
            self.DATABASE_URL = url.replace("postgres://", "postgresql+asyncpg://", 1)
        return self

    # Crawl run
    CRAWL_PLATFORM: SourcePlatform = SourcePlatform.ALIEXPRESS
    CRAWL_MODE: CrawlMode = CrawlMode.DIRECT_URL
    PRODUCT_URLS: str = ""  # Comma-separated list of item URLs for direct-url mode
    SEARCH_KEYWORD: str = ""
    CATEGORY: str = ""
    MAX_PRODUCTS: int = Field(default=20, ge=1)
    CRAWL_REVIEWS: bool = True
    MAX_REVIEWS: int = Field(default=20, ge=0)

    # Browser
    HEADLESS: bool = True
    PAGE_LOAD_TIMEOUT_MS: int = Field(default=30000, gt=0)
    CRAWL_DELAY_SECONDS: float = Field(default=3.0, gt=0)
    CRAWL_DELAY_JITTER_SECONDS: float = Field(default=2.0, ge=0)

    # Currency
    DISPLAY_CURRENCY: str = "KRW"
    EXCHANGE_RATE_URL: str = "https://api.exchangerate-api.com/v4/latest"
    EXCHANGE_RATE_TTL_SECONDS: int = Field(default=3600, gt=0)

    # Image filter rule table
    IMAGE_MIN_DIMENSION: int = Field(default=200, ge=0)
    IMAGE_MIN_AMAZON_DIMENSION: int = Field(default=500, ge=0)
    IMAGE_BLOCKED_HOSTS: str = ""  # Comma-separated glob patterns added to the defaults
    IMAGE_BLOCKED_PATH_TOKENS: str = ""  # Comma-separated words added to the defaults

    # AliExpress affiliate API
    ALIEXPRESS_APP_KEY: str = ""
    ALIEXPRESS_APP_SECRET: str = ""
    ALIEXPRESS_TRACKING_ID: str = ""
    ALIEXPRESS_API_URL: str = "https://api-sg.aliexpress.com/sync"
    AFFILIATE_MAX_ATTEMPTS: int = Field(default=5, ge=1)
    AFFILIATE_BACKOFF_SECONDS: float = Field(default=1.0, ge=0)

    # Scheduler
    SCHEDULE_PLATFORMS: str = ""  # Comma-separated platforms; empty means CRAWL_PLATFORM only
    SCHEDULE_INTERVAL_MINUTES: int = Field(default=360, ge=1)

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.lower() == "production"

    def get_product_urls(self) -> List[str]:
        """Parse PRODUCT_URLS into a list of URLs.

        Returns:
            List of URL strings, empty if PRODUCT_URLS is not set
        """
        return _split_csv(self.PRODUCT_URLS)

    def get_blocked_image_hosts(self) -> List[str]:
        return _split_csv(self.IMAGE_BLOCKED_HOSTS)

    def get_blocked_image_tokens(self) -> List[str]:
        return [token.lower() for token in _split_csv(self.IMAGE_BLOCKED_PATH_TOKENS)]

    def get_schedule_platforms(self) -> List[SourcePlatform]:
        names = _split_csv(self.SCHEDULE_PLATFORMS)
        if not names:
            return [self.CRAWL_PLATFORM]
        platforms = []
        for name in names:
            try:
                platforms.append(SourcePlatform(name.lower()))
            except ValueError:
                raise ConfigurationError(f"Unknown platform in SCHEDULE_PLATFORMS: {name}")
        return platforms

    def crawl_request(self):
        """Build and validate the CrawlRequest described by this configuration.

        Raises:
            ConfigurationError: if the request cannot start
        """
        from shopcrawl.scrapers.crawl_service import CrawlRequest

        request = CrawlRequest.from_settings(self)
        request.validate()
        return request

    def require_database(self) -> None:
        """Raise ConfigurationError unless storage credentials are configured."""
        if not self.DATABASE_URL:
            raise ConfigurationError("DATABASE_URL is required")

    def require_affiliate_credentials(self) -> None:
        """Raise ConfigurationError unless the partner API credentials are configured."""
        missing = [
            name
            for name in ("ALIEXPRESS_APP_KEY", "ALIEXPRESS_APP_SECRET", "ALIEXPRESS_TRACKING_ID")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(f"Missing affiliate credentials: {', '.join(missing)}")


def _split_csv(value: str) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]
