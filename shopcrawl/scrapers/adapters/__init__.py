"""Platform-specific adapter implementations.

Each adapter module implements a BasePlatformAdapter subclass for one site.
"""

from .aliexpress import AliExpressAdapter
from .amazon import AmazonAdapter
from .ebay import EbayAdapter
from .kickstarter import KickstarterAdapter
from .wadiz import WadizAdapter

__all__ = [
    "AliExpressAdapter",
    "AmazonAdapter",
    "EbayAdapter",
    "KickstarterAdapter",
    "WadizAdapter",
]
