"""Tests for settings, crawl requests and pacing."""

import pytest
from pydantic import ValidationError

from shopcrawl.config import Settings
from shopcrawl.core.constants import CrawlMode, SourcePlatform
from shopcrawl.core.exceptions import ConfigurationError
from shopcrawl.scrapers.crawl_service import CrawlRequest
from shopcrawl.scrapers.utils.rate_limiter import PacingLimiter


class TestSettings:

    @pytest.mark.parametrize("url", ["postgresql://u:p@db:5432/shop", "postgres://u:p@db:5432/shop"])
    def test_postgres_url_gets_async_driver(self, settings, url):
        fixed = Settings(_env_file=None, DATABASE_URL=url)
        assert fixed.DATABASE_URL == "postgresql+asyncpg://u:p@db:5432/shop"

    def test_sqlite_url_untouched(self, settings):
        assert settings.DATABASE_URL == "sqlite+aiosqlite:///:memory:"

    def test_csv_lists(self, settings):
        settings = settings.model_copy(update={
            "PRODUCT_URLS": " https://www.ebay.com/itm/123456789012 ,,https://www.ebay.com/itm/223456789012",
            "IMAGE_BLOCKED_PATH_TOKENS": "Promo, WATERMARK",
        })
        assert settings.get_product_urls() == [
            "https://www.ebay.com/itm/123456789012",
            "https://www.ebay.com/itm/223456789012",
        ]
        assert settings.get_blocked_image_tokens() == ["promo", "watermark"]

    def test_schedule_platforms(self, settings):
        assert settings.get_schedule_platforms() == [SourcePlatform.ALIEXPRESS]
        settings = settings.model_copy(update={"SCHEDULE_PLATFORMS": "ebay, Wadiz"})
        assert settings.get_schedule_platforms() == [SourcePlatform.EBAY, SourcePlatform.WADIZ]

    def test_unknown_schedule_platform(self, settings):
        settings = settings.model_copy(update={"SCHEDULE_PLATFORMS": "ebay,etsy"})
        with pytest.raises(ConfigurationError):
            settings.get_schedule_platforms()

    def test_invalid_values_rejected(self, settings):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, MAX_PRODUCTS=0)
        with pytest.raises(ValidationError):
            Settings(_env_file=None, CRAWL_DELAY_SECONDS=0)
        with pytest.raises(ValidationError):
            Settings(_env_file=None, CRAWL_MODE="trending")

    def test_reads_environment(self, settings, monkeypatch):
        monkeypatch.setenv("CRAWL_PLATFORM", "kickstarter")
        monkeypatch.setenv("CRAWL_MODE", "amount")
        monkeypatch.setenv("MAX_PRODUCTS", "5")
        loaded = Settings(_env_file=None)
        assert loaded.CRAWL_PLATFORM is SourcePlatform.KICKSTARTER
        assert loaded.CRAWL_MODE is CrawlMode.AMOUNT
        assert loaded.MAX_PRODUCTS == 5

    def test_require_database(self, settings):
        with pytest.raises(ConfigurationError):
            settings.model_copy(update={"DATABASE_URL": ""}).require_database()
        settings.require_database()

    def test_require_affiliate_credentials_names_missing(self, settings):
        settings = settings.model_copy(update={"ALIEXPRESS_APP_KEY": "123"})
        with pytest.raises(ConfigurationError) as exc_info:
            settings.require_affiliate_credentials()
        assert "ALIEXPRESS_APP_KEY" not in exc_info.value.message
        assert "ALIEXPRESS_APP_SECRET" in exc_info.value.message


class TestCrawlRequest:

    def test_from_settings(self, settings):
        settings = settings.model_copy(update={
            "CRAWL_PLATFORM": SourcePlatform.EBAY,
            "CRAWL_MODE": CrawlMode.SEARCH,
            "SEARCH_KEYWORD": "film camera",
            "MAX_PRODUCTS": 7,
            "CRAWL_REVIEWS": False,
        })
        request = settings.crawl_request()

        assert request == CrawlRequest(
            platform=SourcePlatform.EBAY,
            mode=CrawlMode.SEARCH,
            urls=[],
            keyword="film camera",
            category="",
            max_items=7,
            crawl_reviews=False,
            max_reviews=20,
        )

    def test_direct_url_needs_urls(self, settings):
        with pytest.raises(ConfigurationError):
            settings.crawl_request()

    def test_limits_validated(self):
        with pytest.raises(ConfigurationError):
            CrawlRequest(platform=SourcePlatform.AMAZON, mode=CrawlMode.POPULAR, max_items=0).validate()
        with pytest.raises(ConfigurationError):
            CrawlRequest(platform=SourcePlatform.AMAZON, mode=CrawlMode.POPULAR, max_reviews=-1).validate()


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestPacingLimiter:

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def limiter(self, clock):
        async def fake_sleep(seconds: float) -> None:
            clock.now += seconds

        return PacingLimiter(floor_seconds=2.0, clock=clock, sleep=fake_sleep)

    async def test_first_visit_is_immediate(self, limiter):
        assert await limiter.acquire() == 0.0

    async def test_waits_out_the_floor(self, limiter, clock):
        await limiter.acquire()
        clock.now += 0.5
        assert await limiter.acquire() == pytest.approx(1.5)
        clock.now += 5
        assert await limiter.acquire() == 0.0

    async def test_gap_never_below_floor(self, limiter, clock):
        visits = []
        for _ in range(4):
            await limiter.acquire()
            visits.append(clock.now)
        gaps = [b - a for a, b in zip(visits, visits[1:])]
        assert all(gap >= 2.0 for gap in gaps)

    async def test_jitter_added_on_top(self, clock, monkeypatch):
        async def fake_sleep(seconds: float) -> None:
            clock.now += seconds

        monkeypatch.setattr("shopcrawl.scrapers.utils.rate_limiter.random.uniform", lambda low, high: high)
        limiter = PacingLimiter(floor_seconds=2.0, jitter_seconds=1.5, clock=clock, sleep=fake_sleep)
        await limiter.acquire()
        assert await limiter.acquire() == pytest.approx(3.5)

    def test_floor_must_be_positive(self):
        with pytest.raises(ValueError):
            PacingLimiter(floor_seconds=0)
        with pytest.raises(ValueError):
            PacingLimiter(floor_seconds=1, jitter_seconds=-1)
