"""Tests for the crawl scheduler and the command line."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from shopcrawl import cli
from shopcrawl.core.constants import CrawlMode, OutcomeStatus, SourcePlatform
from shopcrawl.scrapers.crawl_service import CrawlReport, CrawlRequest, ItemOutcome
from shopcrawl.scrapers.scheduler import STAGGER_SECONDS, CrawlScheduler

BASE_REQUEST = CrawlRequest(
    platform=SourcePlatform.AMAZON,
    mode=CrawlMode.SEARCH,
    keyword="usb-c hub",
    max_items=5,
)


def report_for(request: CrawlRequest) -> CrawlReport:
    return CrawlReport(
        platform=request.platform,
        mode=request.mode,
        outcomes=[ItemOutcome(url="https://example.com/1", status=OutcomeStatus.CREATED)],
    )


@pytest.fixture
def service():
    service = MagicMock()
    service.run = AsyncMock(side_effect=report_for)
    return service


@pytest.fixture
def scheduler(service):
    return CrawlScheduler(service_factory=lambda: service, base_request=BASE_REQUEST, interval_minutes=60)


class TestCrawlScheduler:

    def test_add_platforms_staggers_first_runs(self, scheduler):
        added = scheduler.add_platforms([SourcePlatform.EBAY, SourcePlatform.WADIZ])

        assert added == 2
        status = scheduler.get_jobs_status()
        assert set(status) == {"ebay", "wadiz"}
        assert status["ebay"]["job_id"] == "crawl_ebay"
        first = datetime.fromisoformat(status["ebay"]["next_run"])
        second = datetime.fromisoformat(status["wadiz"]["next_run"])
        assert (second - first).total_seconds() == pytest.approx(STAGGER_SECONDS, abs=1)
        assert not scheduler.is_running()

    def test_duplicate_platform_is_ignored(self, scheduler):
        assert scheduler.add_platform_job(SourcePlatform.EBAY) is not None
        assert scheduler.add_platform_job(SourcePlatform.EBAY) is None
        assert scheduler.add_platforms([SourcePlatform.EBAY, SourcePlatform.KICKSTARTER]) == 1

    def test_remove_platform_job(self, scheduler):
        scheduler.add_platform_job(SourcePlatform.EBAY)

        assert scheduler.remove_platform_job(SourcePlatform.EBAY) is True
        assert scheduler.remove_platform_job(SourcePlatform.EBAY) is False
        assert scheduler.get_jobs_status() == {}

    async def test_run_platform_swaps_platform_into_request(self, scheduler, service):
        report = await scheduler.run_platform(SourcePlatform.EBAY)

        sent = service.run.await_args.args[0]
        assert sent.platform is SourcePlatform.EBAY
        assert sent.keyword == "usb-c hub"
        assert sent.max_items == 5
        assert BASE_REQUEST.platform is SourcePlatform.AMAZON
        assert scheduler.last_reports[SourcePlatform.EBAY] is report
        assert report.counts()["created"] == 1

    async def test_failed_run_does_not_escape(self, scheduler, service):
        service.run.side_effect = RuntimeError("browser crashed")

        await scheduler._run_platform_wrapper(SourcePlatform.EBAY)

        assert SourcePlatform.EBAY not in scheduler.last_reports


class TestCli:

    def test_crawl_arguments(self):
        args = cli.build_parser().parse_args([
            "crawl", "--platform", "ebay", "--mode", "search", "--keyword", "film camera",
            "--max-items", "3", "--no-reviews",
        ])
        assert args.handler is cli.run_crawl
        assert args.platform == "ebay"
        assert args.url is None

    def test_apply_crawl_overrides(self, settings):
        args = cli.build_parser().parse_args([
            "crawl", "--platform", "kickstarter",
            "--url", "https://www.kickstarter.com/projects/a/b",
            "--url", "https://www.kickstarter.com/projects/c/d",
            "--max-reviews", "0",
        ])
        updated = cli.apply_crawl_overrides(settings, args)

        assert updated.CRAWL_PLATFORM is SourcePlatform.KICKSTARTER
        assert updated.CRAWL_MODE is CrawlMode.DIRECT_URL
        assert updated.get_product_urls() == [
            "https://www.kickstarter.com/projects/a/b",
            "https://www.kickstarter.com/projects/c/d",
        ]
        assert updated.MAX_REVIEWS == 0
        assert updated.CRAWL_REVIEWS is True
        assert settings.PRODUCT_URLS == ""

    def test_unknown_platform_rejected_by_parser(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["crawl", "--platform", "etsy"])

    def test_direct_url_without_urls_is_fatal(self, settings, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
        assert cli.main(["crawl", "--platform", "ebay"]) == cli.EXIT_FATAL

    def test_unsupported_mode_is_fatal(self, settings, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
        monkeypatch.setenv("SCHEDULE_PLATFORMS", "wadiz,amazon")
        monkeypatch.setenv("CRAWL_MODE", "closing")
        assert cli.main(["schedule"]) == cli.EXIT_FATAL

    def test_invalid_settings_are_fatal(self, settings, monkeypatch):
        monkeypatch.setenv("MAX_PRODUCTS", "0")
        assert cli.main(["init-db"]) == cli.EXIT_FATAL

    def test_affiliate_link_needs_credentials(self, settings):
        assert cli.main(["affiliate-link", "--url", "https://www.aliexpress.com/item/1.html"]) == cli.EXIT_FATAL
