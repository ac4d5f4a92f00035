"""Pytest configuration and shared fixtures."""

from decimal import Decimal
from typing import Dict

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shopcrawl.config import Settings
from shopcrawl.db.session import create_session_factory, init_models
from shopcrawl.scrapers.utils.normalizer import CurrencyConverter


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite database shared by every session of a test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        echo=False,
    )
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings(monkeypatch) -> Settings:
    """Settings isolated from the developer's environment and .env file."""
    for key in (
        "DATABASE_URL", "CRAWL_PLATFORM", "CRAWL_MODE", "PRODUCT_URLS", "DISPLAY_CURRENCY",
        "SEARCH_KEYWORD", "CATEGORY", "SCHEDULE_PLATFORMS",
        "ALIEXPRESS_APP_KEY", "ALIEXPRESS_APP_SECRET", "ALIEXPRESS_TRACKING_ID",
    ):
        monkeypatch.delenv(key, raising=False)
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        CRAWL_DELAY_SECONDS=0.01,
        CRAWL_DELAY_JITTER_SECONDS=0,
    )


class FixedRateConverter(CurrencyConverter):
    """Converter with a preloaded rate table that never touches the network."""

    def __init__(self, display_currency: str = "KRW", rates: Dict[str, str] = None):
        super().__init__(display_currency=display_currency)
        self._rates = {code: Decimal(rate) for code, rate in (rates or {}).items()}
        self._rates[self.display_currency] = Decimal("1")
        self._fetched_at = self._clock()
        self._next_refresh_at = float("inf")


@pytest.fixture
def converter() -> FixedRateConverter:
    return FixedRateConverter("KRW", {"USD": "1300"})


@pytest.fixture
def make_converter():
    return FixedRateConverter
