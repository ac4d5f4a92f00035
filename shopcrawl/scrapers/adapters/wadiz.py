"""Wadiz reward-funding adapter.

Campaign pages (/web/campaign/detail/<id>) are priced in KRW at the cheapest
reward. The achievement rate drives both the rating and the featured flag, and
supporter comments are collected as reviews.
"""

import re
from decimal import Decimal
from typing import List, Optional
from urllib.parse import quote_plus

from bs4 import BeautifulSoup

from shopcrawl.core.constants import CrawlMode, SourcePlatform
from shopcrawl.scrapers.base import BasePlatformAdapter, RawRecord
from shopcrawl.scrapers.reviews import WadizReviewExtractor

_CAMPAIGN_ID = re.compile(r"/(?:web/campaign/detail|funding)/(\d+)")
_TITLE_SUFFIX = re.compile(r"\s*[|-]\s*와디즈.*$")

_ACHIEVEMENT = re.compile(r"([\d,]+)\s*%\s*달성")
_RAISED = re.compile(r"([\d,]+)\s*원\s*펀딩")
_SUPPORTERS = re.compile(r"([\d,]+)\s*명(?:의)?\s*서포터")
_DAYS_LEFT = re.compile(r"(\d+)\s*일\s*남음")
_REWARD_PRICE = re.compile(r"([\d,]+)\s*원")
_SUPPORT_AMOUNT = re.compile(r"([\d,]+)\s*원\s*후원")

# Rewards below this are donations rather than products
MIN_REWARD_KRW = Decimal("1000")
MAX_REWARD_KRW = Decimal("10000000")

_ORDERS = {
    CrawlMode.POPULAR: "support",
    CrawlMode.SEARCH: "support",
    CrawlMode.CATEGORY: "support",
    CrawlMode.AMOUNT: "amount",
    CrawlMode.RECENT: "recent",
    CrawlMode.CLOSING: "closing",
}

CATEGORY_IDS = {
    "tech": 1,
    "fashion": 2,
    "beauty": 3,
    "food": 4,
    "home": 5,
    "design": 6,
}

_STATUS_MARKERS = (
    ("scheduled", ("오픈 예정", "오픈예정")),
    ("success", ("펀딩 성공", "성공한 펀딩")),
    ("fail", ("펀딩 실패", "펀딩 무산")),
    ("ended", ("펀딩 종료", "종료된 펀딩")),
)


class WadizAdapter(BasePlatformAdapter):
    """Wadiz campaign extraction via Playwright-rendered HTML."""

    platform = SourcePlatform.WADIZ
    base_url = "https://www.wadiz.kr"
    default_currency = "KRW"
    supported_modes = frozenset({
        CrawlMode.DIRECT_URL,
        CrawlMode.SEARCH,
        CrawlMode.CATEGORY,
        CrawlMode.POPULAR,
        CrawlMode.AMOUNT,
        CrawlMode.RECENT,
        CrawlMode.CLOSING,
    })
    # The reward list is one infinite-scroll page
    max_listing_pages = 1
    scroll_steps = 6
    browser_locale = "ko-KR"
    review_extractor = WadizReviewExtractor()

    def listing_url(
        self, mode: CrawlMode, keyword: str = "", category: str = "", page_number: int = 1
    ) -> Optional[str]:
        order = _ORDERS.get(mode)
        if order is None or page_number > self.max_listing_pages:
            return None
        url = f"{self.base_url}/web/wreward/main?order={order}"
        if category:
            url += f"&category={CATEGORY_IDS.get(category.lower(), category)}"
        if keyword:
            url += f"&keyword={quote_plus(keyword)}"
        return url

    def parse_listing(self, html: str) -> List[str]:
        soup = BeautifulSoup(html, "html.parser")
        urls = []
        for link in soup.select("a[href*='/web/campaign/detail/'], a[href*='/funding/']"):
            match = _CAMPAIGN_ID.search(link.get("href", ""))
            if match:
                urls.append(self._campaign_url(match.group(1)))
        return self._unique(urls)

    def canonical_item_url(self, url: str) -> str:
        match = _CAMPAIGN_ID.search(url)
        return self._campaign_url(match.group(1)) if match else url

    def parse_product(self, soup: BeautifulSoup, url: str) -> RawRecord:
        match = _CAMPAIGN_ID.search(url)
        campaign_id = match.group(1) if match else None

        title = (
            self._text(soup, "h2[class*='RewardProjectTitle']", ".campaign-title", "h1")
            or self._meta(soup, "og:title")
            or (soup.title.get_text(strip=True) if soup.title else "")
        )
        title = _TITLE_SUFFIX.sub("", title or "")

        body = soup.get_text(" ", strip=True)
        achievement_match = _ACHIEVEMENT.search(body)
        achievement = Decimal(achievement_match.group(1).replace(",", "")) if achievement_match else None
        raised_match = _RAISED.search(body)
        raised = self._decimal(raised_match.group(1)) if raised_match else None
        supporters_match = _SUPPORTERS.search(body)
        supporters = self._int(supporters_match.group(1)) if supporters_match else 0
        days_match = _DAYS_LEFT.search(body)

        min_reward = self._min_reward(soup, body)
        status = self._status(body, days_match is not None)

        maker = self._text(soup, "[class*='MakerInfo'] [class*='name']", ".maker-name", "[class*='maker'] a")
        category_link = soup.select_one("a[href*='category=']")
        category = category_link.get_text(strip=True) if category_link else None
        images = self._unique(
            img.get("src") for img in soup.select(
                "[class*='StoryContent'] img, .inner-contents img, [class*='story'] img"
            )
            if img.get("src", "").startswith("http")
        )

        tags = [category, status]
        if achievement is not None:
            tags.append(f"{achievement}% 달성")
        tags.append(f"{supporters}명 참여")

        return RawRecord(
            source_platform=self.platform,
            source_url=self._campaign_url(campaign_id) if campaign_id else url,
            source_item_id=campaign_id,
            title=title,
            price=min_reward,
            price_unavailable=min_reward is None,
            currency=self.default_currency,
            description=self._meta(soup, "og:description"),
            thumbnail_url=self._meta(soup, "og:image"),
            detail_images=images,
            external_rating=self._funding_rating(achievement),
            external_review_count=supporters,
            category_hint=category,
            tags=[t for t in tags if t],
            is_active=status == "ongoing",
            is_featured=bool(achievement is not None and achievement >= 100),
            metadata={
                "maker": maker,
                "achievement_rate": str(achievement) if achievement is not None else None,
                "raised_krw": str(raised) if raised is not None else None,
                "supporters": supporters,
                "days_left": int(days_match.group(1)) if days_match else None,
                "status": status,
            },
        )

    def _campaign_url(self, campaign_id: str) -> str:
        return f"{self.base_url}/web/campaign/detail/{campaign_id}"

    def _min_reward(self, soup: BeautifulSoup, body: str) -> Optional[Decimal]:
        amounts = []
        for elem in soup.select("[class*='RewardItem'] [class*='price'], .reward-item .price, [class*='reward'] [class*='amount']"):
            match = _REWARD_PRICE.search(elem.get_text(" ", strip=True))
            if match:
                amounts.append(Decimal(match.group(1).replace(",", "")))
        if not amounts:
            amounts = [Decimal(a.replace(",", "")) for a in _SUPPORT_AMOUNT.findall(body)]
        amounts = [a for a in amounts if MIN_REWARD_KRW <= a <= MAX_REWARD_KRW]
        return min(amounts) if amounts else None

    @staticmethod
    def _status(body: str, has_days_left: bool) -> str:
        if has_days_left:
            return "ongoing"
        for status, markers in _STATUS_MARKERS:
            if any(marker in body for marker in markers):
                return status
        return "ongoing" if "펀딩하기" in body else "ended"
