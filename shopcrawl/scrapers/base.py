"""Base platform adapter interface.

Every supported site is a BasePlatformAdapter subclass implementing the same
capabilities: build listing URLs for a crawl mode, pull item URLs out of a
listing page, and turn a loaded item page into a RawRecord. Reviews are an
optional capability provided by a ReviewExtractor.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Iterable, List, Optional
from urllib.parse import urljoin

import structlog
from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError, Page

from shopcrawl.core.constants import CrawlMode, SourcePlatform
from shopcrawl.core.exceptions import ConfigurationError, ExtractionFailure

if TYPE_CHECKING:
    from shopcrawl.scrapers.reviews import ReviewExtractor


@dataclass
class RawReview:
    """Review as extracted from a page, rating already on the 0-5 scale."""

    content: str
    reviewer_name: Optional[str] = None
    reviewer_country: Optional[str] = None
    rating: Optional[Decimal] = None
    review_date: Optional[str] = None
    helpful_count: int = 0
    is_verified_purchase: bool = False
    source_review_id: Optional[str] = None


@dataclass
class RawRecord:
    """Product data extracted by an adapter, mapped onto canonical field names.

    Platform-native values with no canonical column (funding rate, backers,
    seller, ...) are kept in ``metadata``.
    """

    source_platform: SourcePlatform
    source_url: str
    title: str
    currency: str
    price: Optional[Decimal] = None
    price_unavailable: bool = False
    source_item_id: Optional[str] = None
    original_price: Optional[Decimal] = None
    description: Optional[str] = None
    thumbnail_url: Optional[str] = None
    video_url: Optional[str] = None
    detail_images: List[str] = field(default_factory=list)
    external_rating: Optional[Decimal] = None
    external_review_count: int = 0
    category_hint: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    is_active: bool = True
    is_featured: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate required fields."""
        if not self.source_url:
            raise ValueError("source_url is required")
        if not self.title or not self.title.strip():
            raise ValueError("title is required")
        if self.price is None and not self.price_unavailable:
            raise ValueError("price is required unless marked unavailable")
        if self.price is not None and self.price < 0:
            raise ValueError("price must be a non-negative Decimal")
        if not self.currency:
            raise ValueError("currency is required")
        if self.external_rating is not None and not (0 <= self.external_rating <= 5):
            raise ValueError("external_rating must be between 0 and 5")
        self.title = " ".join(self.title.split())
        self.currency = self.currency.upper()


class BasePlatformAdapter(ABC):
    """Abstract base class for all platform adapters.

    Subclasses set ``platform``, ``supported_modes`` and implement
    listing_url(), parse_listing() and parse_product().
    """

    platform: SourcePlatform
    base_url: str = ""
    default_currency: str = "USD"
    supported_modes: FrozenSet[CrawlMode] = frozenset({CrawlMode.DIRECT_URL})
    max_listing_pages: int = 10
    scroll_steps: int = 0
    browser_locale: str = "en-US"
    review_extractor: Optional["ReviewExtractor"] = None

    def __init__(self):
        self.logger = structlog.get_logger(__name__).bind(adapter=self.platform.value)

    # Discovery

    def validate_request(self, mode: CrawlMode, keyword: str = "", category: str = "") -> None:
        """Raise ConfigurationError when this platform cannot serve ``mode``."""
        if mode not in self.supported_modes:
            supported = ", ".join(sorted(m.value for m in self.supported_modes))
            raise ConfigurationError(
                f"{self.platform.value} does not support crawl mode '{mode.value}' (supported: {supported})"
            )
        if mode is CrawlMode.SEARCH and not keyword:
            raise ConfigurationError("search mode requires a keyword")
        if mode is CrawlMode.CATEGORY and not category:
            raise ConfigurationError("category mode requires a category")

    @abstractmethod
    def listing_url(
        self, mode: CrawlMode, keyword: str = "", category: str = "", page_number: int = 1
    ) -> Optional[str]:
        """URL of listing page ``page_number`` for a list-based mode."""

    @abstractmethod
    def parse_listing(self, html: str) -> List[str]:
        """Absolute item URLs found on a listing page, in page order."""

    def has_next_page(self, html: str, page_number: int) -> bool:
        """Whether another listing page follows ``page_number``."""
        return page_number < self.max_listing_pages

    def canonical_item_url(self, url: str) -> str:
        return url

    # Extraction

    async def settle(self, page: Page) -> None:
        """Give lazy-loaded content a chance to render after navigation."""
        for _ in range(self.scroll_steps):
            await page.evaluate("window.scrollBy(0, 800)")
            await asyncio.sleep(0.3)

    async def extract(self, page: Page) -> RawRecord:
        """Extract a RawRecord from a loaded item page.

        Raises:
            ExtractionFailure: if a required field is missing
        """
        await self.settle(page)
        html = await page.content()
        return self.build_record(html, page.url)

    def build_record(self, html: str, url: str) -> RawRecord:
        soup = BeautifulSoup(html, "html.parser")
        try:
            return self.parse_product(soup, url)
        except ValueError as e:
            raise ExtractionFailure(self.platform.value, url, str(e)) from e

    @abstractmethod
    def parse_product(self, soup: BeautifulSoup, url: str) -> RawRecord:
        """Map a parsed item page onto a RawRecord.

        Missing required fields surface as ValueError (from RawRecord validation)
        or ExtractionFailure.
        """

    def review_page_url(self, item_url: str) -> Optional[str]:
        """Separate page holding the item's reviews, or None when they are on the item page."""
        return None

    async def fetch_reviews(self, page: Page, max_count: int) -> List[RawReview]:
        """Reviews on the loaded page; empty when unsupported or on failure."""
        if self.review_extractor is None or max_count <= 0:
            return []
        try:
            html = await page.content()
        except PlaywrightError as e:
            self.logger.warning("review_page_unreadable", url=page.url, error=str(e))
            return []
        return self.review_extractor.extract_reviews(html, max_count)

    # Parsing helpers

    def _fail(self, url: str, reason: str) -> ExtractionFailure:
        return ExtractionFailure(self.platform.value, url, reason)

    def _absolute(self, href: str) -> str:
        return urljoin(self.base_url, href)

    @staticmethod
    def _meta(soup: BeautifulSoup, prop: str) -> Optional[str]:
        tag = soup.find("meta", attrs={"property": prop}) or soup.find("meta", attrs={"name": prop})
        content = tag.get("content") if tag else None
        return content.strip() if content and content.strip() else None

    @staticmethod
    def _text(soup, *selectors: str) -> Optional[str]:
        """Stripped text of the first selector that matches a non-empty element."""
        for selector in selectors:
            elem = soup.select_one(selector)
            if elem:
                text = elem.get_text(" ", strip=True)
                if text:
                    return text
        return None

    @staticmethod
    def _json_ld(soup: BeautifulSoup, type_name: str) -> Optional[dict]:
        """First JSON-LD object of @type ``type_name``."""
        for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
            try:
                data = json.loads(script.string or "")
            except ValueError:
                continue
            if isinstance(data, list):
                candidates = data
            elif isinstance(data, dict):
                candidates = data.get("@graph", [data])
            else:
                continue
            for item in candidates:
                if not isinstance(item, dict):
                    continue
                types = item.get("@type")
                if types == type_name or (isinstance(types, list) and type_name in types):
                    return item
        return None

    @staticmethod
    def _decimal(value: Any) -> Optional[Decimal]:
        if value is None or value == "":
            return None
        try:
            return Decimal(str(value).replace(",", "").strip())
        except InvalidOperation:
            return None

    @staticmethod
    def _int(text: Optional[str]) -> int:
        if not text:
            return 0
        digits = "".join(ch for ch in text if ch.isdigit())
        return int(digits) if digits else 0

    @staticmethod
    def _unique(urls: Iterable[str]) -> List[str]:
        seen = set()
        result = []
        for url in urls:
            if url and url not in seen:
                seen.add(url)
                result.append(url)
        return result

    @staticmethod
    def _funding_rating(rate: Optional[Decimal]) -> Optional[Decimal]:
        """Crowdfunding achievement rate mapped onto 0-5 (20% per point)."""
        if rate is None:
            return None
        return min(rate / 20, Decimal("5")).quantize(Decimal("0.01"))

    def _calculate_discount_percentage(
        self, original: Optional[Decimal], current: Optional[Decimal]
    ) -> Optional[Decimal]:
        """Discount percentage rounded to 2 decimal places, or None."""
        if original and current is not None and original > 0 and current < original:
            return round((original - current) / original * 100, 2)
        return None
