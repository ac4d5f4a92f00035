"""SQLAlchemy models for shopcrawl.

All models are imported here so metadata.create_all sees every table.
"""

from shopcrawl.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from shopcrawl.models.product import Product
from shopcrawl.models.review import Review
from shopcrawl.models.price_history import PriceHistory
from shopcrawl.models.affiliate import AffiliateLink, AffiliateProduct

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "Product",
    "Review",
    "PriceHistory",
    "AffiliateProduct",
    "AffiliateLink",
]
