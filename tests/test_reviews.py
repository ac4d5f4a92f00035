"""Tests for review extraction."""

from decimal import Decimal
from typing import Optional

from bs4 import Tag

from shopcrawl.scrapers.base import RawReview
from shopcrawl.scrapers.reviews import (
    AliExpressReviewExtractor,
    AmazonReviewExtractor,
    ReviewExtractor,
    WadizReviewExtractor,
    review_fingerprint,
)

AMAZON_REVIEWS = """
<div data-hook="review" id="R2ABCDEF1">
  <span class="a-profile-name">Jordan</span>
  <i data-hook="review-star-rating"><span>5.0 out of 5 stars</span></i>
  <span data-hook="review-date">Reviewed in the United States on March 3, 2024</span>
  <span data-hook="avp-badge">Verified Purchase</span>
  <span data-hook="review-body"><span>Charges my laptop twice over. Worth it.</span></span>
  <span data-hook="helpful-vote-statement">1,204 people found this helpful</span>
</div>
<div data-hook="review" id="R2ABCDEF2">
  <span class="a-profile-name">Sam</span>
  <i data-hook="review-star-rating"><span>3.0 out of 5 stars</span></i>
  <span data-hook="review-date">Reviewed in Canada on January 9, 2024</span>
  <span data-hook="review-body"><span>Heavier than I expected for travel.</span></span>
  <span data-hook="helpful-vote-statement">One person found this helpful</span>
</div>
<div data-hook="review" id="R2ABCDEF3">
  <span data-hook="review-body"><span>Great</span></span>
</div>
<div data-hook="review" id="R2ABCDEF4">
  <span class="a-profile-name">Lee</span>
  <span data-hook="review-body"><span>Stopped holding charge after two months.</span></span>
</div>
"""


class TenPointExtractor(ReviewExtractor):
    """Site that scores reviews out of 10."""

    item_selector = ".review"
    rating_scale = Decimal("10")

    def parse_review(self, element: Tag) -> Optional[RawReview]:
        return RawReview(
            content=self._text(element, "p"),
            reviewer_name=self._text(element, ".name"),
            rating=self.normalize_rating(self._text(element, ".score")),
        )


class TestReviewExtractor:

    def test_amazon_reviews(self):
        reviews = AmazonReviewExtractor().extract_reviews(AMAZON_REVIEWS, 10)

        # "Great" is too short to keep
        assert [r.source_review_id for r in reviews] == ["R2ABCDEF1", "R2ABCDEF2", "R2ABCDEF4"]
        first, second, third = reviews
        assert first.rating == Decimal("5.00")
        assert first.reviewer_country == "the United States"
        assert first.review_date == "March 3, 2024"
        assert first.helpful_count == 1204
        assert first.is_verified_purchase is True
        assert second.helpful_count == 1
        assert second.is_verified_purchase is False
        assert third.rating is None

    def test_max_count_caps_results(self):
        reviews = AmazonReviewExtractor().extract_reviews(AMAZON_REVIEWS, 2)
        assert len(reviews) == 2
        assert AmazonReviewExtractor().extract_reviews(AMAZON_REVIEWS, 0) == []

    def test_ten_point_scale_is_halved(self):
        html = """
        <div class="review"><span class="name">A</span><span class="score">8</span><p>Solid build quality overall.</p></div>
        <div class="review"><span class="name">B</span><span class="score">10</span><p>Exactly as described, thanks.</p></div>
        """
        reviews = TenPointExtractor().extract_reviews(html, 5)
        assert [r.rating for r in reviews] == [Decimal("4.00"), Decimal("5.00")]

    def test_unparseable_review_is_dropped(self):
        html = """
        <div class="review"><span class="score">nine</span><p>Rating written out in words.</p></div>
        <div class="review"><span class="score">6</span><p>Fine for the price I paid.</p></div>
        """
        reviews = TenPointExtractor().extract_reviews(html, 5)
        assert len(reviews) == 1
        assert reviews[0].rating == Decimal("3.00")

    def test_ids_fall_back_to_fingerprints(self):
        html = """
        <div class="review"><span class="name">A</span><p>Solid build quality overall.</p></div>
        <div class="review"><span class="name">A</span><p>Solid build quality overall.</p></div>
        <div class="review"><span class="name">B</span><p>Solid build quality overall.</p></div>
        """
        reviews = TenPointExtractor().extract_reviews(html, 5)

        assert len(reviews) == 2
        assert all(r.source_review_id.startswith("fp:") for r in reviews)
        assert reviews[0].source_review_id == review_fingerprint(
            RawReview(content="Solid build quality overall.", reviewer_name="A")
        )

    def test_empty_page(self):
        assert WadizReviewExtractor().extract_reviews("", 10) == []
        assert AliExpressReviewExtractor().extract_reviews("<html><body></body></html>", 10) == []

    def test_aliexpress_counts_filled_stars(self):
        html = """
        <div class="list--itemBox--x" data-id="77001">
          <span class="list--itemInfo--name">K***r</span>
          <span class="list--itemInfo--country">FR</span>
          <div class="stars--box">
            <span class="star--filled--a"></span><span class="star--filled--a"></span>
            <span class="star--filled--a"></span><span class="star--filled--a"></span>
            <span class="star--empty--a"></span>
          </div>
          <div class="list--itemReview--x">Good sound, case feels a bit cheap.</div>
        </div>
        """
        reviews = AliExpressReviewExtractor().extract_reviews(html, 5)

        assert len(reviews) == 1
        assert reviews[0].rating == Decimal("4.00")
        assert reviews[0].source_review_id == "77001"
        assert reviews[0].content == "Good sound, case feels a bit cheap."
