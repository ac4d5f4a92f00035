"""Canonical product model shared by every source platform."""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shopcrawl.models.base import Base, JSONType, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from shopcrawl.models.price_history import PriceHistory
    from shopcrawl.models.review import Review


class Product(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Product crawled from a source platform.

    Each product is uniquely identified by the (source_platform, identity_key) pair,
    where identity_key is the platform item id when known and the normalized
    source URL otherwise.
    """

    __tablename__ = "products"

    # Identity
    source_platform: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    source_item_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    identity_key: Mapped[str] = mapped_column(
        String(2000),
        nullable=False,
        comment="source_item_id, or the normalized source_url when no id is known"
    )
    source_url: Mapped[str] = mapped_column(String(2000), nullable=False)
    slug: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)

    # Content
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    video_url: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    detail_images: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    # Pricing (source currency)
    price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(14, 2),
        nullable=True,
        comment="NULL when the source marks the price as unavailable"
    )
    original_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(5), nullable=False)
    price_in_display_currency: Mapped[Optional[Decimal]] = mapped_column(Numeric(16, 2), nullable=True)

    # External signals
    external_rating: Mapped[Optional[Decimal]] = mapped_column(Numeric(3, 2), nullable=True)
    external_review_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Classification
    category_ref: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    tags: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_crawled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Platform-native extras (funding rate, backers, seller, ...)
    metadata_: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("source_platform", "identity_key", name="uq_product_platform_identity"),
        Index("idx_products_active_crawled", "is_active", "last_crawled_at"),
    )

    reviews: Mapped[list["Review"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
    )
    price_history: Mapped[list["PriceHistory"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="PriceHistory.recorded_at.desc()"
    )

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, platform={self.source_platform}, slug='{self.slug}')>"
