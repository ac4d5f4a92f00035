"""Normalization chain between extraction and storage.

A RawRecord leaves an adapter with every image it found and a price in the
source currency. Before it reaches storage its detail images are run through
the image rule table, its tags are deduplicated and sorted, and its price is
converted to the display currency.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from shopcrawl.core.constants import SourcePlatform
from shopcrawl.scrapers.base import RawRecord
from shopcrawl.scrapers.utils.image_filter import DEFAULT_RULES, ImageRuleTable, filter_detail_images
from shopcrawl.scrapers.utils.normalizer import CurrencyConverter


@dataclass
class NormalizedProduct:
    """Canonical product data ready to be persisted."""

    source_platform: SourcePlatform
    source_url: str
    title: str
    currency: str
    price: Optional[Decimal]
    price_in_display_currency: Optional[Decimal]
    source_item_id: Optional[str] = None
    original_price: Optional[Decimal] = None
    description: Optional[str] = None
    thumbnail_url: Optional[str] = None
    video_url: Optional[str] = None
    detail_images: List[str] = field(default_factory=list)
    external_rating: Optional[Decimal] = None
    external_review_count: int = 0
    category_ref: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    is_active: bool = True
    is_featured: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def discount_rate(self) -> Optional[Decimal]:
        return discount_rate(self.price, self.original_price)


PRICE_QUANTUM = Decimal("0.01")


def quantize_price(value: Optional[Decimal]) -> Optional[Decimal]:
    """Round a source price to the two places the price columns store."""
    if value is None:
        return None
    return Decimal(value).quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)


def discount_rate(price: Optional[Decimal], original_price: Optional[Decimal]) -> Optional[Decimal]:
    """Percentage off ``original_price``, rounded to 2 places, or None."""
    if price is None or not original_price or original_price <= 0 or price >= original_price:
        return None
    return round((original_price - price) / original_price * 100, 2)


def normalize_tags(tags) -> List[str]:
    return sorted({" ".join(str(tag).split()) for tag in tags if tag and str(tag).strip()})


async def normalize_record(
    raw: RawRecord,
    converter: CurrencyConverter,
    rules: ImageRuleTable = DEFAULT_RULES,
) -> NormalizedProduct:
    """Run a RawRecord through the image filter and currency conversion.

    Raises:
        RateUnavailable: if the price cannot be converted to the display currency
    """
    display_price = None
    if raw.price is not None:
        display_price = await converter.to_display_currency(raw.price, raw.currency)

    return NormalizedProduct(
        source_platform=raw.source_platform,
        source_url=raw.source_url,
        source_item_id=raw.source_item_id,
        title=raw.title,
        description=raw.description,
        thumbnail_url=raw.thumbnail_url,
        video_url=raw.video_url,
        detail_images=filter_detail_images(raw.detail_images, rules),
        price=quantize_price(raw.price),
        original_price=quantize_price(raw.original_price),
        currency=raw.currency,
        price_in_display_currency=display_price,
        external_rating=raw.external_rating,
        external_review_count=raw.external_review_count,
        category_ref=raw.category_hint,
        tags=normalize_tags(raw.tags),
        is_active=raw.is_active,
        is_featured=raw.is_featured,
        metadata=dict(raw.metadata),
    )
