"""Affiliate partner catalogue and minted promotion links."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shopcrawl.models.base import Base, JSONType, TimestampMixin, UUIDPrimaryKeyMixin, utcnow


class AffiliateProduct(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Product returned by the partner search API, upserted on product_id."""

    __tablename__ = "affiliate_products"

    product_id: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, comment="Partner product id")
    title: Mapped[str] = mapped_column(String(500), nullable=False)

    first_level_category_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    first_level_category_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    second_level_category_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    second_level_category_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    target_sale_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    target_original_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    target_currency: Mapped[str] = mapped_column(String(5), nullable=False, default="USD")
    discount_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)

    main_image_url: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    gallery_images: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    video_url: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    product_detail_url: Mapped[str] = mapped_column(String(2000), nullable=False)

    shop_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    shop_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    shop_url: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)

    commission_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    evaluate_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    sales_volume: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    links: Mapped[list["AffiliateLink"]] = relationship(back_populates="affiliate_product")

    def __repr__(self) -> str:
        return f"<AffiliateProduct(product_id={self.product_id}, title='{self.title[:40]}')>"


class AffiliateLink(UUIDPrimaryKeyMixin, Base):
    """Promotion link minted once per affiliate product.

    The counters are written only by click/conversion tracking, never by the crawler.
    """

    __tablename__ = "affiliate_links"

    affiliate_product_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("affiliate_products.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )

    long_url: Mapped[str] = mapped_column(Text, nullable=False)
    promotion_link: Mapped[str] = mapped_column(Text, nullable=False)
    source_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tracking_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    clicks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    conversions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    revenue: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_clicked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    affiliate_product: Mapped["AffiliateProduct"] = relationship(back_populates="links")

    def __repr__(self) -> str:
        return f"<AffiliateLink(id={self.id}, affiliate_product_id={self.affiliate_product_id})>"
