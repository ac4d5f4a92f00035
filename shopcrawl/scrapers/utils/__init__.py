"""Scraper utilities for browser control, pacing, images and price normalization."""

from .rate_limiter import PacingLimiter
from .normalizer import (
    CurrencyConverter,
    PriceNormalizer,
    normalize_url,
)
from .image_filter import (
    DEFAULT_RULES,
    DimensionRule,
    ImageRuleTable,
    filter_detail_images,
    is_valid_detail_image,
)
from .retry import navigation_retry, rate_refresh_retry
from .slug import slugify


__all__ = [
    # Pacing
    "PacingLimiter",
    # Normalization
    "CurrencyConverter",
    "PriceNormalizer",
    "normalize_url",
    # Image filtering
    "DEFAULT_RULES",
    "DimensionRule",
    "ImageRuleTable",
    "filter_detail_images",
    "is_valid_detail_image",
    # Retry decorators
    "navigation_retry",
    "rate_refresh_retry",
    # Slugs
    "slugify",
]
