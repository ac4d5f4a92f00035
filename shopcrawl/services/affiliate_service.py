"""Affiliate catalogue storage.

Stores partner search results in affiliate_products and keeps exactly one
tracking link per affiliate product in affiliate_links.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shopcrawl.affiliate.client import AliExpressAffiliateClient, ApiResult, PromotionLink
from shopcrawl.models.affiliate import AffiliateLink, AffiliateProduct

logger = structlog.get_logger(__name__)


def _decimal(value: Any) -> Optional[Decimal]:
    """Parse partner numbers such as "12.99", "7.0%" or 15."""
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value).replace("%", "").replace(",", "").strip())
    except InvalidOperation:
        return None


def _count(value: Any) -> int:
    volume = _decimal(value)
    if volume is None or not volume.is_finite() or volume < 0:
        return 0
    return int(volume)


def _str(value: Any) -> Optional[str]:
    return str(value) if value not in (None, "") else None


def _gallery(item: Dict[str, Any]) -> List[str]:
    images = item.get("product_small_image_urls") or {}
    if isinstance(images, dict):
        images = images.get("string") or []
    return [url for url in images if isinstance(url, str) and url]


def affiliate_fields(item: Dict[str, Any]) -> Dict[str, Any]:
    """Map one partner product record onto AffiliateProduct columns."""
    return {
        "title": item.get("product_title") or "",
        "first_level_category_id": _str(item.get("first_level_category_id")),
        "first_level_category_name": item.get("first_level_category_name"),
        "second_level_category_id": _str(item.get("second_level_category_id")),
        "second_level_category_name": item.get("second_level_category_name"),
        "target_sale_price": _decimal(item.get("target_sale_price")),
        "target_original_price": _decimal(item.get("target_original_price")),
        "target_currency": item.get("target_sale_price_currency") or item.get("target_currency") or "USD",
        "discount_rate": _decimal(item.get("discount")),
        "main_image_url": item.get("product_main_image_url"),
        "gallery_images": _gallery(item),
        "video_url": item.get("product_video_url") or None,
        "product_detail_url": item.get("product_detail_url") or "",
        "shop_id": _str(item.get("shop_id")),
        "shop_name": item.get("shop_name"),
        "shop_url": item.get("shop_url"),
        "commission_rate": _decimal(item.get("commission_rate")),
        "evaluate_rate": _decimal(item.get("evaluate_rate")),
        "sales_volume": _count(item.get("lastest_volume")),
    }


class AffiliateService:
    """Service for the affiliate product catalogue and its tracking links."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="affiliate_service")

    async def save_search_results(self, products: Iterable[Dict[str, Any]]) -> Tuple[int, int]:
        """Upsert partner products by product_id.

        Returns:
            (created, updated) counts
        """
        created = updated = 0
        for item in products:
            product_id = _str(item.get("product_id"))
            if not product_id or not item.get("product_title"):
                self.logger.debug("affiliate_item_skipped", product_id=product_id)
                continue

            fields = affiliate_fields(item)
            existing = await self.get_product(product_id)
            if existing is None:
                self.db.add(AffiliateProduct(product_id=product_id, **fields))
                created += 1
            else:
                for key, value in fields.items():
                    setattr(existing, key, value)
                updated += 1
            # Flush so a repeated product_id later in the batch finds this row
            await self.db.flush()

        await self.db.commit()
        self.logger.info("affiliate_products_saved", created=created, updated=updated)
        return created, updated

    async def get_product(self, product_id: str) -> Optional[AffiliateProduct]:
        result = await self.db.execute(
            select(AffiliateProduct).where(AffiliateProduct.product_id == str(product_id))
        )
        return result.scalar_one_or_none()

    async def get_link(self, product: AffiliateProduct) -> Optional[AffiliateLink]:
        result = await self.db.execute(
            select(AffiliateLink).where(AffiliateLink.affiliate_product_id == product.id)
        )
        return result.scalar_one_or_none()

    async def create_link(
        self,
        product: AffiliateProduct,
        link: PromotionLink,
        tracking_id: Optional[str] = None,
    ) -> AffiliateLink:
        """Persist ``link`` for ``product`` unless one is already stored.

        An existing link is returned unchanged; links are never overwritten.
        """
        existing = await self.get_link(product)
        if existing is not None:
            self.logger.debug("affiliate_link_exists", product_id=product.product_id)
            return existing

        row = AffiliateLink(
            affiliate_product_id=product.id,
            long_url=product.product_detail_url,
            promotion_link=link.promotion_link,
            source_value=link.source_value,
            tracking_id=tracking_id,
        )
        self.db.add(row)
        await self.db.commit()
        self.logger.info("affiliate_link_created", product_id=product.product_id)
        return row

    async def generate_and_store_link(
        self, client: AliExpressAffiliateClient, product_id: str
    ) -> ApiResult[AffiliateLink]:
        """Return the stored link for ``product_id``, generating it on first use.

        Raises:
            ValueError: if the product is not in the affiliate catalogue
        """
        product = await self.get_product(product_id)
        if product is None:
            raise ValueError(f"Affiliate product {product_id} is not stored; run a search with --save first")

        existing = await self.get_link(product)
        if existing is not None:
            return ApiResult.success(existing)

        result = await client.generate_link(product.product_detail_url)
        if not result.ok:
            return ApiResult(ok=False, error=result.error)

        stored = await self.create_link(product, result.data, tracking_id=client.tracking_id)
        return ApiResult.success(stored)
