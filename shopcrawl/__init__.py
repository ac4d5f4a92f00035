"""Multi-platform product crawling and ingestion pipeline."""

__version__ = "0.1.0"
