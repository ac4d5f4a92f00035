"""AliExpress item-page adapter.

Item pages (/item/<id>.html) are reached directly, from wholesale search
results or from category pages. The page's JSON-LD Product block is preferred
for price and rating; rendered markup is the fallback.
"""

import re
from decimal import Decimal
from typing import List, Optional

from bs4 import BeautifulSoup

from shopcrawl.core.constants import CrawlMode, SourcePlatform
from shopcrawl.core.exceptions import ConfigurationError
from shopcrawl.scrapers.base import BasePlatformAdapter, RawRecord
from shopcrawl.scrapers.reviews import AliExpressReviewExtractor
from shopcrawl.scrapers.utils.normalizer import PriceNormalizer

_ITEM_ID = re.compile(r"/item/(\d+)\.html")
_ITEM_ID_QUERY = re.compile(r"productId=(\d+)")
_TITLE_SUFFIX = re.compile(r"\s*-\s*AliExpress.*$", re.I)
_ORDERS = re.compile(r"([\d,]+)\+?\s*(?:sold|orders)", re.I)
_DOLLAR_PRICE = re.compile(r"(?:US\s?)?\$\s?(\d{1,3}(?:,\d{3})*(?:\.\d{1,2})?)")
# Thumbnail variants: foo.jpg_220x220q75.jpg_.webp -> foo.jpg
_ALICDN_VARIANT = re.compile(r"(\.(?:jpe?g|png|webp))_[^/]*$", re.I)

_PRICE_SELECTORS = (
    "[class*='price--currentPriceText']",
    "[class*='price--current']",
    ".product-price-current",
    ".product-price-value",
    ".uniform-banner-box-price",
)
_ORIGINAL_PRICE_SELECTORS = (
    "[class*='price--originalText']",
    "[class*='price--original']",
    ".product-price-original",
)

# Featured when an item has sold more than this many units
FEATURED_ORDER_COUNT = 1000


class AliExpressAdapter(BasePlatformAdapter):
    """AliExpress product page extraction via Playwright-rendered HTML."""

    platform = SourcePlatform.ALIEXPRESS
    base_url = "https://www.aliexpress.com"
    default_currency = "USD"
    supported_modes = frozenset({
        CrawlMode.DIRECT_URL,
        CrawlMode.SEARCH,
        CrawlMode.CATEGORY,
        CrawlMode.POPULAR,
    })
    max_listing_pages = 5
    scroll_steps = 5
    review_extractor = AliExpressReviewExtractor()

    def validate_request(self, mode: CrawlMode, keyword: str = "", category: str = "") -> None:
        super().validate_request(mode, keyword, category)
        # Popular is a wholesale search sorted by orders
        if mode is CrawlMode.POPULAR and not keyword:
            raise ConfigurationError("aliexpress popular mode requires a keyword")

    def listing_url(
        self, mode: CrawlMode, keyword: str = "", category: str = "", page_number: int = 1
    ) -> Optional[str]:
        if mode is CrawlMode.SEARCH:
            return f"{self.base_url}/w/wholesale-{self._wholesale_term(keyword)}.html?page={page_number}"
        if mode is CrawlMode.POPULAR:
            return (
                f"{self.base_url}/w/wholesale-{self._wholesale_term(keyword)}.html"
                f"?sortType=total_tranpro_desc&page={page_number}"
            )
        if mode is CrawlMode.CATEGORY:
            return f"{self.base_url}/category/{category}/items.html?page={page_number}"
        return None

    def parse_listing(self, html: str) -> List[str]:
        soup = BeautifulSoup(html, "html.parser")
        urls = []
        for link in soup.select("a[href*='/item/'], a[href*='productId=']"):
            item_id = self._item_id(link.get("href", ""))
            if item_id:
                urls.append(self._item_url(item_id))
        return self._unique(urls)

    def canonical_item_url(self, url: str) -> str:
        item_id = self._item_id(url)
        return self._item_url(item_id) if item_id else url

    def parse_product(self, soup: BeautifulSoup, url: str) -> RawRecord:
        item_id = self._item_id(url)
        product_ld = self._json_ld(soup, "Product") or {}

        title = (
            self._meta(soup, "og:title")
            or self._text(soup, "h1[data-pl='product-title']", "h1")
            or product_ld.get("name")
            or (soup.title.get_text(strip=True) if soup.title else "")
        )
        title = _TITLE_SUFFIX.sub("", title or "")

        price, currency = self._ld_price(product_ld)
        if price is None:
            price_text = self._first_text(soup, _PRICE_SELECTORS)
            if price_text:
                price = PriceNormalizer.extract_price_from_text(price_text)
                currency = PriceNormalizer.detect_currency(price_text, self.default_currency)
        if price is None:
            # Last resort: first dollar amount on the page
            match = _DOLLAR_PRICE.search(soup.get_text(" ", strip=True))
            if match:
                price = Decimal(match.group(1).replace(",", ""))
                currency = "USD"

        original_text = self._first_text(soup, _ORIGINAL_PRICE_SELECTORS)
        original_price = PriceNormalizer.extract_price_from_text(original_text or "")
        if original_price is not None and (price is None or original_price <= price):
            original_price = None

        rating, review_count = self._rating(soup, product_ld)
        orders_match = _ORDERS.search(soup.get_text(" ", strip=True))
        orders = self._int(orders_match.group(1)) if orders_match else 0

        images = self._images(soup)
        thumbnail = self._meta(soup, "og:image") or (images[0] if images else None)
        store = self._text(soup, "[class*='store-header--storeName']", "[class*='shop-name']", ".shop-name a")
        crumbs = soup.select("[class*='breadcrumb'] a")
        category = crumbs[-1].get_text(strip=True) if crumbs else None
        video = soup.select_one("video source[src], video[src]")
        discount = self._calculate_discount_percentage(original_price, price)

        return RawRecord(
            source_platform=self.platform,
            source_url=self._item_url(item_id) if item_id else url,
            source_item_id=item_id,
            title=title,
            price=price,
            currency=currency or self.default_currency,
            original_price=original_price,
            description=self._meta(soup, "og:description") or product_ld.get("description"),
            thumbnail_url=thumbnail,
            video_url=video.get("src") if video else None,
            detail_images=images,
            external_rating=rating,
            external_review_count=review_count,
            category_hint=category,
            tags=[t for t in (category, store) if t],
            is_featured=orders > FEATURED_ORDER_COUNT,
            metadata={
                "orders": orders,
                "store": store,
                "discount_percentage": str(discount) if discount else None,
            },
        )

    def _item_id(self, href: str) -> Optional[str]:
        match = _ITEM_ID.search(href or "") or _ITEM_ID_QUERY.search(href or "")
        return match.group(1) if match else None

    def _item_url(self, item_id: str) -> str:
        return f"{self.base_url}/item/{item_id}.html"

    @staticmethod
    def _wholesale_term(keyword: str) -> str:
        return re.sub(r"[^\w]+", "-", keyword.strip()).strip("-")

    def _first_text(self, soup: BeautifulSoup, selectors) -> Optional[str]:
        for selector in selectors:
            text = self._text(soup, selector)
            if text and any(ch.isdigit() for ch in text):
                return text
        return None

    def _ld_price(self, product_ld: dict):
        offers = product_ld.get("offers")
        if isinstance(offers, list):
            offers = offers[0] if offers else None
        if not isinstance(offers, dict):
            return None, None
        price = self._decimal(offers.get("price") or offers.get("lowPrice"))
        return price, offers.get("priceCurrency")

    def _rating(self, soup: BeautifulSoup, product_ld: dict):
        aggregate = product_ld.get("aggregateRating") or {}
        rating = self._decimal(aggregate.get("ratingValue"))
        review_count = self._int(str(aggregate.get("reviewCount") or aggregate.get("ratingCount") or ""))
        if rating is None:
            rating_text = self._text(soup, "[class*='reviewer--rating'] strong", ".overview-rating-average")
            rating = self._decimal(rating_text)
        if not review_count:
            review_count = self._int(self._text(soup, "[class*='reviewer--reviews']", ".product-reviewer-reviews"))
        if rating is not None and not (0 <= rating <= 5):
            rating = None
        return rating, review_count

    def _images(self, soup: BeautifulSoup) -> List[str]:
        images = []
        for img in soup.select(
            "[class*='slider--img'] img, [class*='image-view'] img, "
            ".images-view-item img, img[src*='alicdn']"
        ):
            src = img.get("src") or img.get("data-src") or ""
            if src.startswith("//"):
                src = "https:" + src
            if src.startswith("http"):
                images.append(_ALICDN_VARIANT.sub(r"\1", src))
        return self._unique(images)
