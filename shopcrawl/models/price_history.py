"""Price history tracking for products."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shopcrawl.models.base import Base, UUIDPrimaryKeyMixin, utcnow

if TYPE_CHECKING:
    from shopcrawl.models.product import Product


class PriceHistory(UUIDPrimaryKeyMixin, Base):
    """Snapshot of a product's previous price, written when a re-crawl sees a change.

    Rows are immutable once written.
    """

    __tablename__ = "price_history"

    product_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, comment="Price before the change")
    original_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    discount_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)

    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="When the change was observed"
    )

    __table_args__ = (
        Index("idx_price_history_product_recorded", "product_id", "recorded_at"),
    )

    product: Mapped["Product"] = relationship(back_populates="price_history")

    def __repr__(self) -> str:
        return f"<PriceHistory(id={self.id}, product_id={self.product_id}, price={self.price}, recorded_at={self.recorded_at})>"
