"""eBay item-page adapter.

Items are discovered from the deals pages, search results (best match, newly
listed or ending soonest) and category browse pages. eBay exposes no product
reviews on item pages, so the seller feedback score stands in for the rating.
"""

import re
from decimal import Decimal
from typing import List, Optional
from urllib.parse import quote_plus

from bs4 import BeautifulSoup

from shopcrawl.core.constants import CrawlMode, SourcePlatform
from shopcrawl.core.exceptions import ConfigurationError
from shopcrawl.scrapers.base import BasePlatformAdapter, RawRecord
from shopcrawl.scrapers.utils.image_filter import to_high_resolution
from shopcrawl.scrapers.utils.normalizer import PriceNormalizer

_ITEM_ID = re.compile(r"/itm/(?:[^/?#]+/)?(\d{9,})")

# Search sort orders (_sop)
_SORT_BEST_MATCH = 12
_SORT_NEWLY_LISTED = 10
_SORT_ENDING_SOONEST = 1

_DEAL_CATEGORIES = {
    "tech": "https://www.ebay.com/deals/tech",
    "fashion": "https://www.ebay.com/deals/fashion",
    "home-garden": "https://www.ebay.com/deals/home-garden",
    "trending": "https://www.ebay.com/deals/trending",
}


class EbayAdapter(BasePlatformAdapter):
    """eBay listing extraction via Playwright-rendered HTML."""

    platform = SourcePlatform.EBAY
    base_url = "https://www.ebay.com"
    default_currency = "USD"
    supported_modes = frozenset({
        CrawlMode.DIRECT_URL,
        CrawlMode.SEARCH,
        CrawlMode.CATEGORY,
        CrawlMode.POPULAR,
        CrawlMode.RECENT,
        CrawlMode.CLOSING,
    })
    max_listing_pages = 5

    def validate_request(self, mode: CrawlMode, keyword: str = "", category: str = "") -> None:
        super().validate_request(mode, keyword, category)
        # Sort-order modes are search sorts, so they need something to search for
        if mode in (CrawlMode.RECENT, CrawlMode.CLOSING) and not (keyword or category):
            raise ConfigurationError(f"ebay {mode.value} mode requires a keyword or category")

    def listing_url(
        self, mode: CrawlMode, keyword: str = "", category: str = "", page_number: int = 1
    ) -> Optional[str]:
        if mode is CrawlMode.POPULAR:
            # Deals pages are a single infinite-scroll page
            if page_number > 1:
                return None
            return _DEAL_CATEGORIES.get(category, f"{self.base_url}/deals")
        if mode is CrawlMode.CATEGORY:
            return f"{self.base_url}/sch/i.html?_sacat={quote_plus(category)}&_sop={_SORT_BEST_MATCH}&_pgn={page_number}"

        sort = {
            CrawlMode.SEARCH: _SORT_BEST_MATCH,
            CrawlMode.RECENT: _SORT_NEWLY_LISTED,
            CrawlMode.CLOSING: _SORT_ENDING_SOONEST,
        }.get(mode)
        if sort is None:
            return None
        query = f"_nkw={quote_plus(keyword)}" if keyword else f"_sacat={quote_plus(category)}"
        return f"{self.base_url}/sch/i.html?{query}&_sop={sort}&_pgn={page_number}"

    def parse_listing(self, html: str) -> List[str]:
        soup = BeautifulSoup(html, "html.parser")
        urls = []
        for link in soup.select("a[href*='/itm/']"):
            item_id = self._item_id(link.get("href", ""))
            if item_id:
                urls.append(f"{self.base_url}/itm/{item_id}")
        return self._unique(urls)

    def has_next_page(self, html: str, page_number: int) -> bool:
        if page_number >= self.max_listing_pages:
            return False
        soup = BeautifulSoup(html, "html.parser")
        next_link = soup.select_one("a.pagination__next, a[type='next']")
        return next_link is not None and next_link.get("aria-disabled") != "true"

    def canonical_item_url(self, url: str) -> str:
        item_id = self._item_id(url)
        return f"{self.base_url}/itm/{item_id}" if item_id else url

    def parse_product(self, soup: BeautifulSoup, url: str) -> RawRecord:
        item_id = self._item_id(url)

        title = self._text(
            soup,
            "h1.x-item-title__mainTitle span",
            "h1[itemprop='name']",
            ".x-item-title",
        ) or self._meta(soup, "og:title")

        price_elem = soup.select_one(".x-price-primary span[itemprop='price']")
        price = self._decimal(price_elem.get("content")) if price_elem and price_elem.get("content") else None
        price_text = self._text(
            soup,
            ".x-price-primary .ux-textspans",
            "[data-testid='x-price-primary']",
            ".x-bin-price__content .ux-textspans",
        ) or ""
        if price is None:
            price = PriceNormalizer.extract_price_from_text(price_text)
        currency_elem = soup.select_one("[itemprop='priceCurrency']")
        currency = (
            currency_elem.get("content") if currency_elem and currency_elem.get("content")
            else PriceNormalizer.detect_currency(price_text, self.default_currency)
        )

        original_text = self._text(
            soup,
            ".x-price-primary .ux-textspans--STRIKETHROUGH",
            ".x-additional-info .ux-textspans--STRIKETHROUGH",
        )
        original_price = PriceNormalizer.extract_price_from_text(original_text or "")
        if original_price is not None and (price is None or original_price <= price):
            original_price = None

        feedback_text = self._text(
            soup,
            ".x-sellercard-atf__info__feedback span",
            "[data-testid='str-feedback']",
        )
        rating = None
        feedback_match = re.search(r"([\d.]+)%", feedback_text or "")
        if feedback_match:
            rating = min(Decimal(feedback_match.group(1)) / 100 * 5, Decimal("5")).quantize(Decimal("0.01"))

        seller = self._text(soup, ".x-sellercard-atf__info__about-seller a", "[data-testid='str-title'] a")
        condition = self._text(soup, "[data-testid='x-item-condition'] .ux-textspans", ".x-item-condition-text span")
        shipping = self._text(soup, "[data-testid='x-shipping-cost']", ".ux-labels-values--shipping .ux-textspans") or ""
        free_shipping = "free" in shipping.lower()
        crumbs = soup.select(".x-breadcrumb__link span, nav.breadcrumbs a span")
        category = crumbs[-1].get_text(strip=True) if crumbs else None
        bid_count = self._int(self._text(soup, "[data-testid='x-bid-count']", ".x-bid-count"))

        images = self._images(soup)

        return RawRecord(
            source_platform=self.platform,
            source_url=f"{self.base_url}/itm/{item_id}" if item_id else url,
            source_item_id=item_id,
            title=title or "",
            price=price,
            currency=currency,
            original_price=original_price,
            description=self._meta(soup, "og:description"),
            thumbnail_url=images[0] if images else self._meta(soup, "og:image"),
            detail_images=images,
            external_rating=rating,
            external_review_count=0,
            category_hint=category,
            tags=[t for t in (category, condition, "Free Shipping" if free_shipping else None, seller) if t],
            is_featured=bool(rating is not None and rating >= Decimal("4.5")),
            metadata={
                "seller": seller,
                "seller_feedback": feedback_text,
                "condition": condition,
                "free_shipping": free_shipping,
                "bid_count": bid_count,
                "location": self._text(soup, "[data-testid='x-item-location']"),
            },
        )

    def _item_id(self, href: str) -> Optional[str]:
        match = _ITEM_ID.search(href or "")
        return match.group(1) if match else None

    def _images(self, soup: BeautifulSoup) -> List[str]:
        images = []
        for img in soup.select(
            ".ux-image-carousel-item img, .ux-image-filmstrip-carousel-item img, "
            "[data-testid='ux-image-magnify-container'] img"
        ):
            src = img.get("data-zoom-src") or img.get("src") or img.get("data-src")
            if src and src.startswith("http"):
                images.append(to_high_resolution(src))
        return self._unique(images)
