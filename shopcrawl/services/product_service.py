"""Product service for persisting crawled products, reviews and price history.

Upserts normalized products keyed by (source_platform, identity_key), records
the prior price whenever a re-crawl sees a different one, and inserts reviews
that are not stored yet.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shopcrawl.models.price_history import PriceHistory
from shopcrawl.models.product import Product
from shopcrawl.models.review import Review
from shopcrawl.scrapers.base import RawReview
from shopcrawl.scrapers.utils.image_filter import DEFAULT_RULES, ImageRuleTable, filter_detail_images
from shopcrawl.services.identity_service import IdentityResolver
from shopcrawl.services.normalization import NormalizedProduct, discount_rate, quantize_price

logger = structlog.get_logger(__name__)


@dataclass
class UpsertOutcome:
    product: Product
    created: bool
    price_changed: bool = False
    reviews_added: int = 0


@dataclass
class RefilterReport:
    products_scanned: int = 0
    products_changed: int = 0
    images_removed: int = 0


class ProductService:
    """Service for writing crawled products to storage.

    One upsert is one transaction: the product row, its new reviews and any
    price history entry are committed together.
    """

    def __init__(self, db: AsyncSession, identity_resolver: Optional[IdentityResolver] = None):
        """Initialize product service.

        Args:
            db: Async database session
            identity_resolver: Resolver sharing ``db``; created when omitted
        """
        self.db = db
        self.identity = identity_resolver or IdentityResolver(db)
        self.logger = logger.bind(service="product_service")

    async def ingest(self, normalized: NormalizedProduct, reviews: Sequence[RawReview] = ()) -> UpsertOutcome:
        """Resolve the identity of ``normalized`` and upsert it."""
        identity = self.identity.resolve_identity(normalized)
        existing = await self.identity.lookup_existing(identity)
        return await self.upsert(normalized, reviews, existing)

    async def upsert(
        self,
        normalized: NormalizedProduct,
        reviews: Sequence[RawReview] = (),
        existing: Optional[Product] = None,
    ) -> UpsertOutcome:
        """Insert a new product or update ``existing`` in place.

        On update, a PriceHistory row holding the prior price is written when the
        stored price is known and differs from the new one. The slug and the
        is_active flag of an existing product are left untouched.

        Args:
            normalized: Product data from the normalization chain
            reviews: Reviews extracted alongside the product
            existing: Stored product with the same identity, if any

        Returns:
            UpsertOutcome describing what was written
        """
        identity = self.identity.resolve_identity(normalized)
        now = datetime.now(timezone.utc)
        price_changed = False

        if existing is None:
            slug = await self.identity.ensure_unique_slug(identity.slug_candidate, identity)
            product = Product(
                source_platform=identity.platform.value,
                identity_key=identity.identity_key,
                slug=slug,
                is_active=normalized.is_active,
                last_crawled_at=now,
            )
            self._apply_fields(product, normalized)
            self.db.add(product)
            await self.db.flush()
            self.logger.info("creating_new_product", identity_key=identity.identity_key, slug=slug)
        else:
            product = existing
            new_price = quantize_price(normalized.price)
            if product.price is not None and quantize_price(product.price) != new_price:
                self.db.add(PriceHistory(
                    product_id=product.id,
                    price=product.price,
                    original_price=product.original_price,
                    discount_rate=discount_rate(product.price, product.original_price),
                ))
                price_changed = True
                self.logger.debug(
                    "price_history_recorded",
                    product_id=str(product.id),
                    old_price=str(product.price),
                    new_price=str(new_price),
                )
            self._apply_fields(product, normalized)
            product.last_crawled_at = now

        reviews_added = await self._add_reviews(product, reviews, check_stored=existing is not None)

        await self.db.commit()

        self.logger.info(
            "product_upserted",
            product_id=str(product.id),
            identity_key=identity.identity_key,
            created=existing is None,
            price_changed=price_changed,
            reviews_added=reviews_added,
        )

        return UpsertOutcome(
            product=product,
            created=existing is None,
            price_changed=price_changed,
            reviews_added=reviews_added,
        )

    async def refilter_detail_images(self, rules: ImageRuleTable = DEFAULT_RULES) -> RefilterReport:
        """Re-apply the image rule table to every stored product's detail images."""
        report = RefilterReport()
        result = await self.db.execute(select(Product).order_by(Product.created_at))
        for product in result.scalars():
            report.products_scanned += 1
            images = list(product.detail_images or [])
            kept = filter_detail_images(images, rules)
            if kept != images:
                product.detail_images = kept
                report.products_changed += 1
                report.images_removed += len(images) - len(kept)
        await self.db.commit()

        self.logger.info(
            "detail_images_refiltered",
            products_scanned=report.products_scanned,
            products_changed=report.products_changed,
            images_removed=report.images_removed,
        )
        return report

    @staticmethod
    def _apply_fields(product: Product, normalized: NormalizedProduct) -> None:
        product.source_item_id = normalized.source_item_id
        product.source_url = normalized.source_url
        product.title = normalized.title
        product.description = normalized.description
        product.thumbnail_url = normalized.thumbnail_url
        product.video_url = normalized.video_url
        product.detail_images = list(normalized.detail_images)
        product.price = quantize_price(normalized.price)
        product.original_price = quantize_price(normalized.original_price)
        product.currency = normalized.currency
        product.price_in_display_currency = normalized.price_in_display_currency
        product.external_rating = normalized.external_rating
        product.external_review_count = normalized.external_review_count
        product.category_ref = normalized.category_ref
        product.tags = list(normalized.tags)
        product.is_featured = normalized.is_featured
        product.metadata_ = {**(product.metadata_ or {}), **normalized.metadata}

    async def _add_reviews(self, product: Product, reviews: Sequence[RawReview], check_stored: bool) -> int:
        if not reviews:
            return 0

        seen = set()
        if check_stored:
            result = await self.db.execute(
                select(Review.source_review_id).where(
                    Review.product_id == product.id,
                    Review.source_review_id.is_not(None),
                )
            )
            seen.update(result.scalars())

        added: List[Review] = []
        for review in reviews:
            if review.source_review_id:
                if review.source_review_id in seen:
                    continue
                seen.add(review.source_review_id)
            added.append(Review(
                product_id=product.id,
                content=review.content,
                reviewer_name=review.reviewer_name,
                reviewer_country=review.reviewer_country,
                rating=review.rating,
                review_date=review.review_date,
                helpful_count=review.helpful_count,
                is_verified_purchase=review.is_verified_purchase,
                source_review_id=review.source_review_id,
            ))
        self.db.add_all(added)
        return len(added)
