"""AliExpress affiliate partner API client."""

from .client import (
    AliExpressAffiliateClient,
    ApiError,
    ApiResult,
    ProductSearchResult,
    PromotionLink,
    SearchParams,
)

__all__ = [
    "AliExpressAffiliateClient",
    "ApiError",
    "ApiResult",
    "ProductSearchResult",
    "PromotionLink",
    "SearchParams",
]
