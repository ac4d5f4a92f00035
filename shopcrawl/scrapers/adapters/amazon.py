"""Amazon item-page adapter.

Crawls www.amazon.com product pages (/dp/<ASIN>) reached directly, from search
results, or from the best-seller and new-release charts. Prices are read in the
page's currency (USD on amazon.com).
"""

import json
import re
from decimal import Decimal
from typing import List, Optional
from urllib.parse import quote_plus

from bs4 import BeautifulSoup

from shopcrawl.core.constants import CrawlMode, SourcePlatform
from shopcrawl.scrapers.base import BasePlatformAdapter, RawRecord
from shopcrawl.scrapers.reviews import AmazonReviewExtractor
from shopcrawl.scrapers.utils.image_filter import to_high_resolution
from shopcrawl.scrapers.utils.normalizer import PriceNormalizer

# Amazon CAPTCHA indicators - must be specific to avoid false positives
# "robot" alone triggers on normal pages (meta robots tag), so use full phrases
_CAPTCHA_MARKERS = [
    "enter the characters you see below",
    "type the characters you see",
    "sorry, we just need to make sure you're not a robot",
    "to discuss automated access to amazon data",
]

# USD price pattern: $xx.xx or $x,xxx.xx
_USD_PRICE_PATTERN = re.compile(r"\$\s*(\d{1,3}(?:,\d{3})*(?:\.\d{2})?)")
_ASIN_PATTERNS = (
    re.compile(r"/dp/([A-Z0-9]{10})"),
    re.compile(r"/gp/product/([A-Z0-9]{10})"),
)

_PRICE_SELECTORS = (
    "#corePrice_feature_div .a-offscreen",
    "#corePriceDisplay_desktop_feature_div .a-price:not(.a-text-price) .a-offscreen",
    "#apex_desktop .a-price:not(.a-text-price) .a-offscreen",
    "#priceblock_dealprice",
    "#priceblock_ourprice",
    "#price_inside_buybox",
)
_ORIGINAL_PRICE_SELECTORS = (
    ".basisPrice .a-offscreen",
    "#corePriceDisplay_desktop_feature_div .a-text-price .a-offscreen",
    "#listPrice",
    "#priceblock_listprice",
)


class AmazonAdapter(BasePlatformAdapter):
    """Amazon product page extraction via Playwright-rendered HTML."""

    platform = SourcePlatform.AMAZON
    base_url = "https://www.amazon.com"
    default_currency = "USD"
    supported_modes = frozenset({
        CrawlMode.DIRECT_URL,
        CrawlMode.SEARCH,
        CrawlMode.CATEGORY,
        CrawlMode.POPULAR,
        CrawlMode.RECENT,
    })
    max_listing_pages = 5
    scroll_steps = 3
    review_extractor = AmazonReviewExtractor()

    def listing_url(
        self, mode: CrawlMode, keyword: str = "", category: str = "", page_number: int = 1
    ) -> Optional[str]:
        if mode is CrawlMode.SEARCH:
            return f"{self.base_url}/s?k={quote_plus(keyword)}&page={page_number}"
        if mode is CrawlMode.CATEGORY:
            # Browse node id, e.g. 172282 for Electronics
            return f"{self.base_url}/s?rh=n%3A{quote_plus(category)}&page={page_number}"
        if mode is CrawlMode.POPULAR:
            path = f"/gp/bestsellers/{category}" if category else "/gp/bestsellers"
            return f"{self.base_url}{path}?pg={page_number}"
        if mode is CrawlMode.RECENT:
            path = f"/gp/new-releases/{category}" if category else "/gp/new-releases"
            return f"{self.base_url}{path}?pg={page_number}"
        return None

    def parse_listing(self, html: str) -> List[str]:
        soup = BeautifulSoup(html, "html.parser")
        urls = []
        for link in soup.select("a[href*='/dp/'], a[href*='/gp/product/']"):
            asin = self._extract_asin(link.get("href", ""))
            if asin:
                urls.append(self._dp_url(asin))
        # Search result cards carry the ASIN even when the link is rewritten
        for card in soup.select("[data-component-type='s-search-result'][data-asin]"):
            asin = card.get("data-asin", "").strip()
            if len(asin) == 10:
                urls.append(self._dp_url(asin))
        return self._unique(urls)

    def has_next_page(self, html: str, page_number: int) -> bool:
        if page_number >= self.max_listing_pages:
            return False
        soup = BeautifulSoup(html, "html.parser")
        next_link = soup.select_one(
            "a.s-pagination-next:not(.s-pagination-disabled), li.a-last a"
        )
        return next_link is not None

    def canonical_item_url(self, url: str) -> str:
        asin = self._extract_asin(url)
        return self._dp_url(asin) if asin else url

    def parse_product(self, soup: BeautifulSoup, url: str) -> RawRecord:
        page_text = soup.get_text(" ", strip=True).lower()
        marker = next((m for m in _CAPTCHA_MARKERS if m in page_text), None)
        if marker:
            raise self._fail(url, "captcha page")

        asin = self._extract_asin(url)
        if not asin:
            asin_input = soup.select_one("input#ASIN, input[name='ASIN']")
            asin = asin_input.get("value") if asin_input else None

        title = self._text(soup, "#productTitle", "h1#title", "h1 span") or self._meta(soup, "og:title")
        price_text = self._first_price_text(soup, _PRICE_SELECTORS)
        price = self._parse_usd_price(price_text) if price_text else None
        availability = (self._text(soup, "#availability") or "").lower()
        price_unavailable = price is None and "unavailable" in availability

        original_text = self._first_price_text(soup, _ORIGINAL_PRICE_SELECTORS)
        original_price = self._parse_usd_price(original_text) if original_text else None
        if original_price is not None and (price is None or original_price <= price):
            original_price = None

        rating = self._parse_rating(soup)
        review_count = self._int(self._text(soup, "#acrCustomerReviewText"))
        images = self._images(soup)
        category = None
        crumbs = soup.select("#wayfinding-breadcrumbs_feature_div a")
        if crumbs:
            category = crumbs[-1].get_text(strip=True) or None
        brand = self._text(soup, "#bylineInfo")
        bullets = [li.get_text(" ", strip=True) for li in soup.select("#feature-bullets li")]
        description = "\n".join(b for b in bullets if b) or self._text(soup, "#productDescription")
        video = soup.select_one("video source[src], video[src]")
        discount = self._calculate_discount_percentage(original_price, price)

        return RawRecord(
            source_platform=self.platform,
            source_url=self._dp_url(asin) if asin else url,
            source_item_id=asin,
            title=title or "",
            price=price,
            price_unavailable=price_unavailable,
            currency=PriceNormalizer.detect_currency(price_text or "", self.default_currency),
            original_price=original_price,
            description=description,
            thumbnail_url=images[0] if images else self._meta(soup, "og:image"),
            video_url=video.get("src") if video else None,
            detail_images=images,
            external_rating=rating,
            external_review_count=review_count,
            category_hint=category,
            tags=[t for t in (category, brand) if t],
            is_featured=bool(rating and rating >= Decimal("4.5") and review_count >= 1000),
            metadata={
                "brand": brand,
                "discount_percentage": str(discount) if discount else None,
            },
        )

    def _dp_url(self, asin: str) -> str:
        return f"{self.base_url}/dp/{asin}"

    def _extract_asin(self, href: str) -> Optional[str]:
        """Extract ASIN (10-char alphanumeric ID) from Amazon URL."""
        for pattern in _ASIN_PATTERNS:
            match = pattern.search(href or "")
            if match:
                return match.group(1)
        return None

    def _parse_usd_price(self, text: str) -> Optional[Decimal]:
        """Parse a price from text like '$29.99' or '$1,299.00'."""
        match = _USD_PRICE_PATTERN.search(text)
        if match:
            return Decimal(match.group(1).replace(",", ""))
        return PriceNormalizer.extract_price_from_text(text)

    def _first_price_text(self, soup: BeautifulSoup, selectors) -> Optional[str]:
        for selector in selectors:
            elem = soup.select_one(selector)
            if elem:
                text = elem.get_text(strip=True)
                if any(ch.isdigit() for ch in text):
                    return text
        return None

    def _parse_rating(self, soup: BeautifulSoup) -> Optional[Decimal]:
        popover = soup.select_one("#acrPopover")
        text = popover.get("title") if popover else None
        text = text or self._text(soup, "#averageCustomerReviews .a-icon-alt", "[data-hook='rating-out-of-text']")
        if not text:
            return None
        match = re.search(r"(\d(?:\.\d)?)\s*out of\s*5", text)
        return Decimal(match.group(1)) if match else None

    def _images(self, soup: BeautifulSoup) -> List[str]:
        images = []
        landing = soup.select_one("#landingImage, #imgBlkFront")
        if landing:
            dynamic = landing.get("data-a-dynamic-image")
            hires = landing.get("data-old-hires")
            if hires:
                images.append(hires)
            elif dynamic:
                try:
                    images.extend(json.loads(dynamic).keys())
                except ValueError:
                    pass
            elif landing.get("src"):
                images.append(landing["src"])
        for img in soup.select("#altImages img, #imageBlock img"):
            src = img.get("src")
            if src and src.startswith("http"):
                images.append(src)
        return self._unique(to_high_resolution(src) for src in images)
