"""Crawling system for collecting products from retail and crowdfunding sites.

This package provides:
- The platform adapter interface and the per-site adapters
- Utility modules for browser control, pacing, images and prices
- Factory for creating adapter instances
- The crawl orchestrator and its scheduler
"""

from .base import BasePlatformAdapter, RawRecord, RawReview
from .factory import AdapterFactory, build_default_factory

__all__ = [
    # Base classes
    "BasePlatformAdapter",
    # Data structures
    "RawRecord",
    "RawReview",
    # Factory
    "AdapterFactory",
    "build_default_factory",
]
