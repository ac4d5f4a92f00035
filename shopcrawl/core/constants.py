"""Enumerations shared by the crawler, the models and the CLI."""

from enum import Enum


class SourcePlatform(str, Enum):
    """Sites the pipeline knows how to crawl."""

    ALIEXPRESS = "aliexpress"
    AMAZON = "amazon"
    EBAY = "ebay"
    KICKSTARTER = "kickstarter"
    WADIZ = "wadiz"


class CrawlMode(str, Enum):
    """How candidate items are discovered for a crawl run."""

    DIRECT_URL = "direct-url"
    SEARCH = "search"
    CATEGORY = "category"
    POPULAR = "popular"
    AMOUNT = "amount"
    RECENT = "recent"
    CLOSING = "closing"


class OutcomeStatus(str, Enum):
    """Result of processing a single item."""

    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


# Currencies whose smallest commonly used unit is the whole unit.
ZERO_DECIMAL_CURRENCIES = frozenset({"KRW", "JPY", "VND", "CLP", "ISK", "HUF", "TWD"})

SLUG_MAX_LENGTH = 80
