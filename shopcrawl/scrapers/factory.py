"""Factory for creating platform adapter instances."""

from typing import Dict, List, Type

import structlog

from shopcrawl.core.constants import SourcePlatform
from shopcrawl.core.exceptions import ConfigurationError
from shopcrawl.scrapers.adapters import (
    AliExpressAdapter,
    AmazonAdapter,
    EbayAdapter,
    KickstarterAdapter,
    WadizAdapter,
)
from shopcrawl.scrapers.base import BasePlatformAdapter

logger = structlog.get_logger(__name__)


class AdapterFactory:
    """Maps each SourcePlatform onto its adapter class.

    Dispatch is a plain lookup table; registering a class for a platform
    replaces any earlier registration.
    """

    def __init__(self):
        self._adapter_registry: Dict[SourcePlatform, Type[BasePlatformAdapter]] = {}

    def register_adapter(self, platform: SourcePlatform, adapter_class: Type[BasePlatformAdapter]) -> None:
        if not issubclass(adapter_class, BasePlatformAdapter):
            raise ValueError(f"Adapter class must inherit from BasePlatformAdapter: {adapter_class}")
        self._adapter_registry[SourcePlatform(platform)] = adapter_class
        logger.debug("adapter_registered", platform=SourcePlatform(platform).value, adapter_class=adapter_class.__name__)

    def create_adapter(self, platform: SourcePlatform) -> BasePlatformAdapter:
        """Create an adapter instance for ``platform``.

        Raises:
            ConfigurationError: if no adapter is registered for the platform
        """
        try:
            adapter_class = self._adapter_registry[SourcePlatform(platform)]
        except (KeyError, ValueError):
            raise ConfigurationError(f"No adapter registered for platform '{platform}'") from None
        return adapter_class()

    def get_registered_platforms(self) -> List[SourcePlatform]:
        return list(self._adapter_registry.keys())

    def has_adapter(self, platform: SourcePlatform) -> bool:
        return platform in self._adapter_registry


def build_default_factory() -> AdapterFactory:
    """Factory with every built-in adapter registered."""
    factory = AdapterFactory()
    for adapter_class in (AliExpressAdapter, AmazonAdapter, EbayAdapter, KickstarterAdapter, WadizAdapter):
        factory.register_adapter(adapter_class.platform, adapter_class)
    return factory
