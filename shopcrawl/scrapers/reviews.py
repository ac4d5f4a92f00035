"""Review extraction for platforms that expose reviews or comments.

Each extractor knows the markup of one site. Reviews that cannot be parsed are
dropped one by one; a page whose review markup cannot be read at all yields an
empty list so the owning product is still persisted.
"""

import hashlib
import re
from decimal import Decimal, InvalidOperation
from typing import List, Optional

import structlog
from bs4 import BeautifulSoup, Tag

from shopcrawl.scrapers.base import RawReview

logger = structlog.get_logger(__name__)

_NUMBER = re.compile(r"\d+(?:[.,]\d+)?")


def review_fingerprint(review: RawReview) -> str:
    """Stable id for a review whose source offers none."""
    basis = "|".join([review.reviewer_name or "", review.review_date or "", review.content])
    return "fp:" + hashlib.sha1(basis.encode("utf-8")).hexdigest()[:20]


class ReviewExtractor:
    """Parses review elements out of an item page.

    Subclasses set ``item_selector`` and ``rating_scale`` and implement parse_review().
    """

    item_selector: str = ""
    rating_scale: Decimal = Decimal("5")
    min_content_length: int = 10

    def extract_reviews(self, html: str, max_count: int) -> List[RawReview]:
        """At most ``max_count`` reviews from ``html``, ratings on the 0-5 scale."""
        if max_count <= 0 or not html:
            return []

        try:
            elements = BeautifulSoup(html, "html.parser").select(self.item_selector)
        except Exception as e:
            logger.warning("review_extraction_failed", extractor=type(self).__name__, error=str(e))
            return []

        reviews: List[RawReview] = []
        seen_ids = set()
        for element in elements:
            if len(reviews) >= max_count:
                break
            try:
                review = self.parse_review(element)
            except (AttributeError, TypeError, ValueError, InvalidOperation) as e:
                logger.debug("review_dropped", extractor=type(self).__name__, error=str(e))
                continue
            if review is None or len(review.content) <= self.min_content_length:
                continue
            if not review.source_review_id:
                review.source_review_id = review_fingerprint(review)
            if review.source_review_id in seen_ids:
                continue
            seen_ids.add(review.source_review_id)
            reviews.append(review)

        return reviews

    def parse_review(self, element: Tag) -> Optional[RawReview]:
        raise NotImplementedError

    def normalize_rating(self, value) -> Optional[Decimal]:
        """Map a rating on ``rating_scale`` onto 0-5."""
        if value is None or value == "":
            return None
        rating = Decimal(str(value)) * Decimal("5") / self.rating_scale
        rating = max(Decimal("0"), min(rating, Decimal("5")))
        return rating.quantize(Decimal("0.01"))

    @staticmethod
    def _first_number(text: Optional[str]) -> Optional[str]:
        if not text:
            return None
        match = _NUMBER.search(text)
        return match.group(0).replace(",", ".") if match else None

    @staticmethod
    def _text(element: Tag, *selectors: str) -> Optional[str]:
        for selector in selectors:
            found = element.select_one(selector)
            if found:
                text = found.get_text(" ", strip=True)
                if text:
                    return text
        return None


class AmazonReviewExtractor(ReviewExtractor):
    item_selector = '[data-hook="review"]'

    _REVIEWED_IN = re.compile(r"Reviewed in (.+?) on (.+)$")

    def parse_review(self, element: Tag) -> Optional[RawReview]:
        content = self._text(element, '[data-hook="review-body"] span', '[data-hook="review-body"]', ".review-text")
        if not content:
            return None

        rating_text = self._text(
            element,
            '[data-hook="review-star-rating"]',
            '[data-hook="cmps-review-star-rating"]',
            ".review-rating",
        )
        country, review_date = None, None
        date_text = self._text(element, '[data-hook="review-date"]', ".review-date")
        if date_text:
            match = self._REVIEWED_IN.search(date_text)
            if match:
                country, review_date = match.group(1).strip(), match.group(2).strip()
            else:
                review_date = date_text

        helpful_text = self._text(element, '[data-hook="helpful-vote-statement"]') or ""
        if helpful_text.lower().startswith("one person"):
            helpful = 1
        else:
            helpful = int(self._first_number(helpful_text.replace(",", "")) or 0)

        return RawReview(
            content=content,
            reviewer_name=self._text(element, ".a-profile-name", '[data-hook="review-author"]'),
            reviewer_country=country,
            rating=self.normalize_rating(self._first_number(rating_text)),
            review_date=review_date,
            helpful_count=helpful,
            is_verified_purchase=element.select_one('[data-hook="avp-badge"]') is not None,
            source_review_id=element.get("id") or element.get("data-review-id"),
        )


class AliExpressReviewExtractor(ReviewExtractor):
    item_selector = '[class*="feedback-item"], [class*="list--itemBox"], [class*="review-item"]'

    def parse_review(self, element: Tag) -> Optional[RawReview]:
        content = self._text(
            element,
            '[class*="feedback-content"]',
            '[class*="itemReview"]',
            '[class*="review-content"]',
            '[class*="content"]',
        )
        if not content:
            return None

        # Star widgets render one filled element per point
        filled = element.select('[class*="star--filled"], [class*="star-filled"]')
        if filled:
            rating = self.normalize_rating(len(filled))
        else:
            rating = self.normalize_rating(
                self._first_number(self._text(element, '[class*="star"]', '[class*="rating"]'))
            )

        return RawReview(
            content=content,
            reviewer_name=self._text(element, '[class*="user-name"]', '[class*="userName"]', '[class*="name"]'),
            reviewer_country=self._text(element, '[class*="country"]', '[class*="location"]', '[class*="region"]'),
            rating=rating,
            review_date=self._text(element, '[class*="feedback-time"]', '[class*="date"]', "time"),
            source_review_id=element.get("data-id") or element.get("data-review-id"),
        )


class WadizReviewExtractor(ReviewExtractor):
    item_selector = '[class*="Comment"], [class*="Review"], .comment-item, .review-item'

    def parse_review(self, element: Tag) -> Optional[RawReview]:
        content = self._text(element, '[class*="content"]', '[class*="text"]', "p")
        if not content:
            return None
        return RawReview(
            content=content,
            reviewer_name=self._text(element, '[class*="name"]', '[class*="author"]', "strong"),
            reviewer_country="대한민국",
            rating=self.normalize_rating(
                self._first_number(self._text(element, '[class*="rating"]', '[class*="star"]'))
            ),
            review_date=self._text(element, "time", ".date", "[datetime]"),
            source_review_id=element.get("data-comment-id") or element.get("data-id"),
        )


class KickstarterCommentExtractor(ReviewExtractor):
    """Backer comments; Kickstarter has no star ratings."""

    item_selector = '[data-test-id="comment"], .comment'

    def parse_review(self, element: Tag) -> Optional[RawReview]:
        content = self._text(element, ".body", ".comment-body", "p")
        if not content:
            return None
        date_elem = element.select_one("time, [datetime]")
        review_date = None
        if date_elem:
            review_date = date_elem.get("datetime") or date_elem.get_text(strip=True) or None
        return RawReview(
            content=content,
            reviewer_name=self._text(element, '[data-test-id="comment-author"]', ".author", ".name", "strong"),
            review_date=review_date,
            source_review_id=element.get("data-comment-id") or element.get("id"),
        )
