"""Tests for product upserts, price history and review storage."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from shopcrawl.core.constants import SourcePlatform
from shopcrawl.models import PriceHistory, Product, Review
from shopcrawl.scrapers.base import RawReview
from shopcrawl.services.normalization import NormalizedProduct
from shopcrawl.services.product_service import ProductService

GALLERY = [
    "https://m.media-amazon.com/images/I/71q2xKp9sUL.jpg",
    "https://m.media-amazon.com/images/I/61bQ4hJ2cLL.jpg",
]


def make_normalized(**overrides) -> NormalizedProduct:
    data = dict(
        source_platform=SourcePlatform.AMAZON,
        source_url="https://www.amazon.com/dp/B0ABCDEF12",
        source_item_id="B0ABCDEF12",
        title="Anker 737 Power Bank",
        currency="USD",
        price=Decimal("59.99"),
        price_in_display_currency=Decimal("77987"),
        original_price=Decimal("79.99"),
        detail_images=list(GALLERY),
        external_rating=Decimal("4.6"),
        external_review_count=1520,
        tags=["power bank", "usb-c"],
        metadata={"seller": "Anker"},
    )
    data.update(overrides)
    return NormalizedProduct(**data)


async def ingest(session_factory, normalized, reviews=()):
    async with session_factory() as db:
        return await ProductService(db).ingest(normalized, reviews)


async def count(session_factory, model) -> int:
    async with session_factory() as db:
        return await db.scalar(select(func.count()).select_from(model))


# ============================================================================
# UPSERT
# ============================================================================

class TestProductUpsert:

    async def test_insert_new_product(self, session_factory):
        outcome = await ingest(session_factory, make_normalized())

        assert outcome.created is True
        assert outcome.price_changed is False
        product = outcome.product
        assert product.id is not None
        assert product.source_platform == "amazon"
        assert product.identity_key == "B0ABCDEF12"
        assert product.slug == "anker-737-power-bank"
        assert product.price == Decimal("59.99")
        assert product.detail_images == GALLERY
        assert product.last_crawled_at is not None

    async def test_rerun_with_same_data_is_idempotent(self, session_factory):
        first = await ingest(session_factory, make_normalized())
        second = await ingest(session_factory, make_normalized())

        assert second.created is False
        assert second.price_changed is False
        assert second.product.id == first.product.id
        assert await count(session_factory, Product) == 1
        assert await count(session_factory, PriceHistory) == 0

    async def test_price_change_records_prior_price(self, session_factory):
        await ingest(session_factory, make_normalized(price=Decimal("59.99")))
        outcome = await ingest(session_factory, make_normalized(price=Decimal("29.99")))

        assert outcome.price_changed is True
        assert outcome.product.price == Decimal("29.99")

        async with session_factory() as db:
            history = (await db.execute(select(PriceHistory))).scalars().all()
        assert len(history) == 1
        assert history[0].price == Decimal("59.99")
        assert history[0].original_price == Decimal("79.99")
        assert history[0].discount_rate == Decimal("25.00")
        assert history[0].product_id == outcome.product.id

    async def test_no_history_when_prior_price_unknown(self, session_factory):
        await ingest(session_factory, make_normalized(price=None, price_in_display_currency=None))
        outcome = await ingest(session_factory, make_normalized(price=Decimal("10.00")))

        assert outcome.price_changed is False
        assert await count(session_factory, PriceHistory) == 0

    async def test_sub_cent_price_is_stored_rounded_without_history(self, session_factory):
        for _ in range(3):
            outcome = await ingest(
                session_factory,
                make_normalized(price=Decimal("59.999"), original_price=Decimal("79.9949")),
            )

        assert outcome.price_changed is False
        assert outcome.product.price == Decimal("60.00")
        assert outcome.product.original_price == Decimal("79.99")
        assert await count(session_factory, PriceHistory) == 0

    async def test_update_keeps_slug_and_active_flag(self, session_factory):
        first = await ingest(session_factory, make_normalized())
        async with session_factory() as db:
            product = await db.get(Product, first.product.id)
            product.is_active = False
            await db.commit()

        outcome = await ingest(session_factory, make_normalized(title="Anker 737 Power Bank (2024 Edition)"))

        assert outcome.product.slug == "anker-737-power-bank"
        assert outcome.product.title == "Anker 737 Power Bank (2024 Edition)"
        assert outcome.product.is_active is False

    async def test_metadata_is_merged(self, session_factory):
        await ingest(session_factory, make_normalized(metadata={"seller": "Anker", "prime": True}))
        outcome = await ingest(session_factory, make_normalized(metadata={"seller": "Anker Direct"}))

        assert outcome.product.metadata_ == {"seller": "Anker Direct", "prime": True}

    async def test_same_title_other_item_gets_distinct_slug(self, session_factory):
        first = await ingest(session_factory, make_normalized())
        second = await ingest(
            session_factory,
            make_normalized(source_item_id="B0ZZZZZZ99", source_url="https://www.amazon.com/dp/B0ZZZZZZ99"),
        )

        assert second.created is True
        assert second.product.slug != first.product.slug
        assert second.product.slug.startswith("anker-737-power-bank-")

    async def test_same_item_id_on_other_platform_is_a_new_product(self, session_factory):
        await ingest(session_factory, make_normalized())
        outcome = await ingest(
            session_factory,
            make_normalized(source_platform=SourcePlatform.EBAY, source_url="https://www.ebay.com/itm/B0ABCDEF12"),
        )

        assert outcome.created is True
        assert await count(session_factory, Product) == 2


# ============================================================================
# REVIEWS
# ============================================================================

class TestReviewStorage:

    @pytest.fixture
    def reviews(self):
        return [
            RawReview(content="Charges my laptop twice", rating=Decimal("5"), source_review_id="R1"),
            RawReview(content="Heavy but solid", rating=Decimal("4"), source_review_id="R2"),
            RawReview(content="Heavy but solid", rating=Decimal("4"), source_review_id="R2"),
        ]

    async def test_duplicates_in_one_batch_are_dropped(self, session_factory, reviews):
        outcome = await ingest(session_factory, make_normalized(), reviews)

        assert outcome.reviews_added == 2
        assert await count(session_factory, Review) == 2

    async def test_recrawl_only_adds_unseen_reviews(self, session_factory, reviews):
        await ingest(session_factory, make_normalized(), reviews)
        outcome = await ingest(session_factory, make_normalized(), [
            RawReview(content="Heavy but solid", source_review_id="R2"),
            RawReview(content="Stopped working after a month", rating=Decimal("1"), source_review_id="R3"),
        ])

        assert outcome.reviews_added == 1
        async with session_factory() as db:
            ids = set((await db.execute(select(Review.source_review_id))).scalars())
        assert ids == {"R1", "R2", "R3"}


# ============================================================================
# IMAGE REFILTER
# ============================================================================

class TestRefilterDetailImages:

    async def test_removes_images_the_rules_reject(self, session_factory):
        await ingest(session_factory, make_normalized())
        await ingest(session_factory, make_normalized(
            source_item_id="B0ZZZZZZ99",
            source_url="https://www.amazon.com/dp/B0ZZZZZZ99",
            title="USB-C Hub",
            detail_images=[GALLERY[0], "https://cdn.example.com/assets/logo.png", GALLERY[1]],
        ))

        async with session_factory() as db:
            report = await ProductService(db).refilter_detail_images()

        assert report.products_scanned == 2
        assert report.products_changed == 1
        assert report.images_removed == 1

        async with session_factory() as db:
            images = (await db.execute(select(Product.detail_images))).scalars().all()
        assert all(stored == GALLERY for stored in images)
