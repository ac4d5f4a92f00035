"""External reviews attached to crawled products."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shopcrawl.models.base import Base, UUIDPrimaryKeyMixin, utcnow

if TYPE_CHECKING:
    from shopcrawl.models.product import Product


class Review(UUIDPrimaryKeyMixin, Base):
    """A review or comment scraped alongside a product. Create-only."""

    __tablename__ = "reviews"

    product_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    content: Mapped[str] = mapped_column(Text, nullable=False)
    reviewer_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    reviewer_country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    rating: Mapped[Optional[Decimal]] = mapped_column(Numeric(3, 2), nullable=True, comment="0-5 scale")
    review_date: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, comment="As displayed by the source")
    helpful_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_verified_purchase: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source_review_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    # NULL source_review_id values never collide, so id-less reviews stay append-only
    __table_args__ = (
        UniqueConstraint("product_id", "source_review_id", name="uq_review_product_source"),
    )

    product: Mapped["Product"] = relationship(back_populates="reviews")

    def __repr__(self) -> str:
        return f"<Review(id={self.id}, product_id={self.product_id}, rating={self.rating})>"
