"""Custom exception classes for the crawler."""


class ShopCrawlException(Exception):
    """Base exception for all shopcrawl errors."""

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class ConfigurationError(ShopCrawlException):
    """Raised at startup when required configuration is missing or invalid."""


class BrowserLaunchError(ShopCrawlException):
    """Raised when a browser session cannot be acquired."""


class ScraperError(ShopCrawlException):
    """Raised when a scraper encounters an error."""

    def __init__(self, platform: str, message: str):
        self.platform = platform
        super().__init__(f"Scraper error for {platform}: {message}")


class ExtractionFailure(ScraperError):
    """A loaded page lacks a field the canonical product requires."""

    def __init__(self, platform: str, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(platform, f"{reason} ({url})")


class NavigationError(ScraperError):
    """Navigation to an item page failed after its retry."""

    def __init__(self, platform: str, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(platform, f"navigation failed: {reason} ({url})")


class RateUnavailable(ShopCrawlException):
    """No exchange rate has ever been fetched for the requested currency."""

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"No exchange rate available for {currency}")
