"""Services module for business logic and data operations.

This module contains the service classes between crawling and storage:
normalization of extracted records, identity resolution, product upserts
and the affiliate catalogue.
"""

from shopcrawl.services.normalization import NormalizedProduct, normalize_record
from shopcrawl.services.identity_service import IdentityResolver, ResolvedIdentity
from shopcrawl.services.product_service import ProductService, UpsertOutcome
from shopcrawl.services.affiliate_service import AffiliateService

__all__ = [
    "NormalizedProduct",
    "normalize_record",
    "IdentityResolver",
    "ResolvedIdentity",
    "ProductService",
    "UpsertOutcome",
    "AffiliateService",
]
