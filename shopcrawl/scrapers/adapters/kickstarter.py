"""Kickstarter project adapter.

A project maps onto a product as follows:
- price is the cheapest reward tier above the token-pledge level
- the rating is derived from the funding percentage
- the review count is the backer count
Backer comments from the project's /comments page serve as its reviews.
"""

import re
from decimal import Decimal
from typing import List, Optional
from urllib.parse import quote_plus

from bs4 import BeautifulSoup

from shopcrawl.core.constants import CrawlMode, SourcePlatform
from shopcrawl.scrapers.base import BasePlatformAdapter, RawRecord
from shopcrawl.scrapers.reviews import KickstarterCommentExtractor
from shopcrawl.scrapers.utils.normalizer import PriceNormalizer

_PROJECT_PATH = re.compile(r"/projects/([^/?#]+)/([^/?#]+)")
_TITLE_SUFFIX = re.compile(r"\s+by\s+.+?\s+[—-]\s+Kickstarter\s*$", re.I)

_PLEDGED = re.compile(r"([$€£¥₩]|US\$|CA\$|AU\$)\s?([\d,]+)\s*pledged", re.I)
_CURRENCY_SIGN = r"(?:US\$|CA\$|AU\$|[$€£¥₩])"
# Project pages say either "pledged of $50,000 goal" or "goal of $50,000"
_GOAL = re.compile(
    rf"(?:pledged\s+of\s+{_CURRENCY_SIGN}\s?([\d,]+)\s+goal|goal\s+of\s+{_CURRENCY_SIGN}\s?([\d,]+))", re.I
)
_BACKERS = re.compile(r"([\d,]+)\s*backers?", re.I)
_PERCENT_FUNDED = re.compile(r"([\d,]+)%\s*funded", re.I)
_DAYS_TO_GO = re.compile(r"(\d+)\s*days?\s*to\s*go", re.I)
_REWARD = re.compile(r"Pledge\s*((?:US|CA|AU)?\s?[$€£¥₩])\s?([\d,]+)\s*or\s*more", re.I)

# Pledges at or below this amount are token "thank you" tiers
MIN_REWARD_AMOUNT = Decimal("5")

_SORTS = {
    CrawlMode.POPULAR: "popularity",
    CrawlMode.RECENT: "newest",
    CrawlMode.CLOSING: "end_date",
    CrawlMode.AMOUNT: "most_funded",
    CrawlMode.SEARCH: "magic",
    CrawlMode.CATEGORY: "popularity",
}

CATEGORY_IDS = {
    "technology": 16,
    "design": 7,
    "games": 12,
    "art": 1,
    "music": 14,
    "film": 11,
}


class KickstarterAdapter(BasePlatformAdapter):
    """Kickstarter project extraction via Playwright-rendered HTML."""

    platform = SourcePlatform.KICKSTARTER
    base_url = "https://www.kickstarter.com"
    default_currency = "USD"
    supported_modes = frozenset({
        CrawlMode.DIRECT_URL,
        CrawlMode.SEARCH,
        CrawlMode.CATEGORY,
        CrawlMode.POPULAR,
        CrawlMode.AMOUNT,
        CrawlMode.RECENT,
        CrawlMode.CLOSING,
    })
    max_listing_pages = 10
    scroll_steps = 4
    review_extractor = KickstarterCommentExtractor()

    def listing_url(
        self, mode: CrawlMode, keyword: str = "", category: str = "", page_number: int = 1
    ) -> Optional[str]:
        sort = _SORTS.get(mode)
        if sort is None:
            return None
        url = f"{self.base_url}/discover/advanced?sort={sort}&state=live&page={page_number}"
        if keyword:
            url += f"&term={quote_plus(keyword)}"
        if category:
            category_id = CATEGORY_IDS.get(category.lower(), category)
            url += f"&category_id={category_id}"
        return url

    def parse_listing(self, html: str) -> List[str]:
        soup = BeautifulSoup(html, "html.parser")
        urls = []
        for link in soup.select("a[href*='/projects/']"):
            match = _PROJECT_PATH.search(link.get("href", ""))
            if match:
                urls.append(self._project_url(match.group(1), match.group(2)))
        return self._unique(urls)

    def canonical_item_url(self, url: str) -> str:
        match = _PROJECT_PATH.search(url)
        return self._project_url(match.group(1), match.group(2)) if match else url

    def parse_product(self, soup: BeautifulSoup, url: str) -> RawRecord:
        page_title = soup.title.get_text(strip=True) if soup.title else ""
        if "just a moment" in page_title.lower():
            raise self._fail(url, "cloudflare challenge page")

        match = _PROJECT_PATH.search(url)
        project_id = f"{match.group(1)}/{match.group(2)}" if match else None

        title = self._meta(soup, "og:title") or page_title
        title = _TITLE_SUFFIX.sub("", title or "")

        body = soup.get_text(" ", strip=True)
        pledged_match = _PLEDGED.search(body)
        goal_match = _GOAL.search(body)
        backers_match = _BACKERS.search(body)
        backers = self._int(backers_match.group(1)) if backers_match else 0
        percent_match = _PERCENT_FUNDED.search(body)
        percent = Decimal(percent_match.group(1).replace(",", "")) if percent_match else None
        days_match = _DAYS_TO_GO.search(body)

        pledged = self._decimal(pledged_match.group(2)) if pledged_match else None
        goal = self._decimal(goal_match.group(1) or goal_match.group(2)) if goal_match else None
        if percent is None and pledged is not None and goal:
            percent = (pledged / goal * 100).quantize(Decimal("1"))

        currency = self.default_currency
        if pledged_match:
            currency = PriceNormalizer.detect_currency(pledged_match.group(1), self.default_currency)

        reward_amounts = []
        for symbol, amount in _REWARD.findall(body):
            value = self._decimal(amount)
            if value is not None and value > MIN_REWARD_AMOUNT:
                reward_amounts.append(value)
                currency = PriceNormalizer.detect_currency(symbol, currency)
        min_reward = min(reward_amounts) if reward_amounts else None

        if days_match:
            state = "live"
        elif "funding successful" in body.lower() or "successfully funded" in body.lower():
            state = "successful"
        else:
            state = "ended"

        category_link = soup.select_one("a[href*='/discover/categories/']")
        category = category_link.get_text(strip=True) if category_link else None
        creator = match.group(1) if match else None
        video = self._meta(soup, "og:video") or self._meta(soup, "og:video:url")
        if not video:
            video_elem = soup.select_one("video source[src], video[src]")
            video = video_elem.get("src") if video_elem else None

        images = self._unique(
            img.get("src") for img in soup.select("img[src*='ksr-ugc.imgix.net'], .rte__content img")
            if img.get("src", "").startswith("http")
        )

        tags = [category, state]
        if percent is not None:
            tags.append(f"{percent}% funded")
        tags.append(f"{backers} backers")

        return RawRecord(
            source_platform=self.platform,
            source_url=self.canonical_item_url(url),
            source_item_id=project_id,
            title=title,
            price=min_reward,
            price_unavailable=min_reward is None,
            currency=currency,
            original_price=None,
            description=self._meta(soup, "og:description"),
            thumbnail_url=self._meta(soup, "og:image"),
            video_url=video,
            detail_images=images,
            external_rating=self._funding_rating(percent),
            external_review_count=backers,
            category_hint=category,
            tags=[t for t in tags if t],
            is_active=state == "live",
            is_featured=bool(percent is not None and percent >= 100),
            metadata={
                "creator": creator,
                "pledged": str(pledged) if pledged is not None else None,
                "goal": str(goal) if goal is not None else None,
                "percent_funded": str(percent) if percent is not None else None,
                "backers": backers,
                "days_to_go": int(days_match.group(1)) if days_match else None,
                "state": state,
            },
        )

    def review_page_url(self, item_url: str) -> Optional[str]:
        """Backer comments live on a separate /comments page."""
        return f"{self.canonical_item_url(item_url)}/comments"

    def _project_url(self, creator: str, slug: str) -> str:
        return f"{self.base_url}/projects/{creator}/{slug}"
