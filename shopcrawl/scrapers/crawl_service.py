"""Crawl orchestration service.

Connects the platform adapters with the normalization chain and storage. One
run opens one browser session, walks the item URLs of the requested mode one
at a time and records an outcome for each:

    navigate -> extract -> reviews -> normalize -> resolve identity -> upsert

A single bad item never stops the run; only startup problems (configuration,
browser launch) are fatal.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Dict, List, Optional

import structlog
from playwright.async_api import Error as PlaywrightError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shopcrawl.core.constants import CrawlMode, OutcomeStatus, SourcePlatform
from shopcrawl.core.exceptions import ConfigurationError, ExtractionFailure, NavigationError, RateUnavailable
from shopcrawl.scrapers.base import BasePlatformAdapter, RawReview
from shopcrawl.scrapers.factory import AdapterFactory, build_default_factory
from shopcrawl.scrapers.utils.browser_manager import BrowserSession
from shopcrawl.scrapers.utils.image_filter import DEFAULT_RULES, ImageRuleTable
from shopcrawl.scrapers.utils.normalizer import CurrencyConverter
from shopcrawl.scrapers.utils.rate_limiter import PacingLimiter
from shopcrawl.services.normalization import normalize_record
from shopcrawl.services.product_service import ProductService

logger = structlog.get_logger(__name__)

# Per-item failures that mean "this item could not be read", not "something is broken"
SKIP_ERRORS = (NavigationError, ExtractionFailure, RateUnavailable, PlaywrightError)


@dataclass
class CrawlRequest:
    platform: SourcePlatform
    mode: CrawlMode = CrawlMode.DIRECT_URL
    urls: List[str] = field(default_factory=list)
    keyword: str = ""
    category: str = ""
    max_items: int = 20
    crawl_reviews: bool = True
    max_reviews: int = 20

    @classmethod
    def from_settings(cls, settings) -> "CrawlRequest":
        return cls(
            platform=settings.CRAWL_PLATFORM,
            mode=settings.CRAWL_MODE,
            urls=settings.get_product_urls(),
            keyword=settings.SEARCH_KEYWORD,
            category=settings.CATEGORY,
            max_items=settings.MAX_PRODUCTS,
            crawl_reviews=settings.CRAWL_REVIEWS,
            max_reviews=settings.MAX_REVIEWS,
        )

    def validate(self) -> None:
        """Raise ConfigurationError for requests that cannot start."""
        if self.mode is CrawlMode.DIRECT_URL and not self.urls:
            raise ConfigurationError("direct-url mode requires at least one URL (PRODUCT_URLS)")
        if self.max_items < 1:
            raise ConfigurationError("max_items must be at least 1")
        if self.max_reviews < 0:
            raise ConfigurationError("max_reviews must not be negative")


@dataclass
class ItemOutcome:
    url: str
    status: OutcomeStatus
    reason: Optional[str] = None
    product_id: Optional[str] = None


@dataclass
class CrawlReport:
    platform: SourcePlatform
    mode: CrawlMode
    outcomes: List[ItemOutcome] = field(default_factory=list)
    cancelled: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def counts(self) -> Dict[str, int]:
        totals = {status.value: 0 for status in OutcomeStatus}
        for outcome in self.outcomes:
            totals[outcome.status.value] += 1
        return totals

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


class CrawlService:
    """Runs one crawl request end to end.

    Every collaborator is injected: the session factory for storage, the
    currency converter, the adapter factory, the pacing limiter and a browser
    factory that builds a BrowserSession-like async context manager for an
    adapter.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        converter: CurrencyConverter,
        browser_factory: Callable[[BasePlatformAdapter], BrowserSession],
        pacer: PacingLimiter,
        adapter_factory: Optional[AdapterFactory] = None,
        image_rules: ImageRuleTable = DEFAULT_RULES,
    ):
        self.session_factory = session_factory
        self.converter = converter
        self.browser_factory = browser_factory
        self.pacer = pacer
        self.adapter_factory = adapter_factory or build_default_factory()
        self.image_rules = image_rules
        self.logger = logger.bind(service="crawl_service")

    @classmethod
    def from_settings(
        cls,
        settings,
        session_factory: async_sessionmaker[AsyncSession],
        converter: Optional[CurrencyConverter] = None,
    ) -> "CrawlService":
        return cls(
            session_factory=session_factory,
            converter=converter or CurrencyConverter.from_settings(settings),
            browser_factory=lambda adapter: BrowserSession.from_settings(settings, locale=adapter.browser_locale),
            pacer=PacingLimiter.from_settings(settings),
            image_rules=ImageRuleTable.from_settings(settings),
        )

    async def run(self, request: CrawlRequest, cancel_event: Optional[asyncio.Event] = None) -> CrawlReport:
        """Crawl every item of ``request`` and report the outcome of each.

        Raises:
            ConfigurationError: if the platform cannot serve the request
            BrowserLaunchError: if the browser cannot be started
        """
        cancel_event = cancel_event or asyncio.Event()
        request.validate()
        adapter = self.adapter_factory.create_adapter(request.platform)
        adapter.validate_request(request.mode, request.keyword, request.category)

        report = CrawlReport(platform=request.platform, mode=request.mode)
        log = self.logger.bind(platform=request.platform.value, mode=request.mode.value)
        log.info("crawl_started", max_items=request.max_items, urls=len(request.urls))

        async with self.browser_factory(adapter) as browser:
            items = self._item_urls(adapter, browser, request)
            try:
                async for url in items:
                    if cancel_event.is_set():
                        report.cancelled = True
                        log.info("crawl_cancelled", processed=len(report.outcomes))
                        break
                    outcome = await self._process_item(adapter, browser, request, url)
                    report.outcomes.append(outcome)
                    if request.mode is not CrawlMode.DIRECT_URL and len(report.outcomes) >= request.max_items:
                        log.info("crawl_cap_reached", max_items=request.max_items)
                        break
            finally:
                await items.aclose()

        report.finished_at = datetime.now(timezone.utc)
        log.info(
            "crawl_complete",
            cancelled=report.cancelled,
            duration_seconds=round(report.duration_seconds or 0, 2),
            **report.counts(),
        )
        return report

    async def _item_urls(
        self, adapter: BasePlatformAdapter, browser: BrowserSession, request: CrawlRequest
    ) -> AsyncIterator[str]:
        """Item URLs in crawl order; listing pages are fetched only as needed."""
        if request.mode is CrawlMode.DIRECT_URL:
            for url in request.urls:
                yield adapter.canonical_item_url(url)
            return

        seen = set()
        page_number = 1
        while True:
            listing_url = adapter.listing_url(request.mode, request.keyword, request.category, page_number)
            if listing_url is None:
                return

            await self.pacer.acquire()
            async with browser.page() as page:
                try:
                    await browser.navigate(page, listing_url)
                    await adapter.settle(page)
                    html = await page.content()
                except PlaywrightError as e:
                    self.logger.warning("listing_page_failed", url=listing_url, page=page_number, error=str(e))
                    return

            new_urls = []
            for url in adapter.parse_listing(html):
                url = adapter.canonical_item_url(url)
                if url not in seen:
                    seen.add(url)
                    new_urls.append(url)
            self.logger.info("listing_page_parsed", url=listing_url, page=page_number, new_items=len(new_urls))
            if not new_urls:
                return

            for url in new_urls:
                yield url

            if not adapter.has_next_page(html, page_number):
                return
            page_number += 1

    async def _process_item(
        self, adapter: BasePlatformAdapter, browser: BrowserSession, request: CrawlRequest, url: str
    ) -> ItemOutcome:
        log = self.logger.bind(platform=request.platform.value, url=url)
        await self.pacer.acquire()
        try:
            async with browser.page() as page:
                try:
                    await browser.navigate(page, url)
                except PlaywrightError as e:
                    raise NavigationError(request.platform.value, url, str(e)) from e
                raw = await adapter.extract(page)
                reviews = []
                if request.crawl_reviews:
                    reviews = await self._fetch_reviews(adapter, browser, page, raw.source_url, request.max_reviews)

            normalized = await normalize_record(raw, self.converter, self.image_rules)
            async with self.session_factory() as db:
                result = await ProductService(db).ingest(normalized, reviews)

        except SKIP_ERRORS as e:
            log.warning("item_skipped", error_type=type(e).__name__, reason=str(e))
            return ItemOutcome(url=url, status=OutcomeStatus.SKIPPED, reason=str(e))
        except Exception as e:
            log.error("item_failed", error=str(e), exc_info=True)
            return ItemOutcome(url=url, status=OutcomeStatus.FAILED, reason=str(e))

        status = OutcomeStatus.CREATED if result.created else OutcomeStatus.UPDATED
        log.info(
            "item_persisted",
            status=status.value,
            product_id=str(result.product.id),
            price_changed=result.price_changed,
            reviews_added=result.reviews_added,
        )
        return ItemOutcome(url=url, status=status, product_id=str(result.product.id))

    async def _fetch_reviews(
        self, adapter: BasePlatformAdapter, browser: BrowserSession, page, item_url: str, max_reviews: int
    ) -> List[RawReview]:
        """Reviews for the item loaded in ``page``, visiting its review page first if it has one."""
        if max_reviews <= 0:
            return []
        review_url = adapter.review_page_url(item_url) if adapter.review_extractor is not None else None
        if review_url is not None:
            await self.pacer.acquire()
            try:
                await browser.navigate(page, review_url)
                await adapter.settle(page)
            except PlaywrightError as e:
                self.logger.warning("review_page_failed", url=review_url, error=str(e))
                return []
        return await adapter.fetch_reviews(page, max_reviews)
