"""APScheduler-based crawl scheduler.

Runs the crawl pipeline for each configured platform at a fixed interval.
Jobs are staggered so platforms do not start at the same moment, and a failed
run is logged without stopping the scheduler.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import structlog
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from shopcrawl.core.constants import SourcePlatform
from shopcrawl.scrapers.crawl_service import CrawlReport, CrawlRequest, CrawlService

logger = structlog.get_logger(__name__)

# Delay between the first runs of consecutive platforms
STAGGER_SECONDS = 30


class CrawlScheduler:
    """Manages periodic crawl jobs, one per platform.

    Each job builds its request from ``base_request`` with the platform
    swapped in, and runs it through a fresh CrawlService from ``service_factory``.
    """

    def __init__(
        self,
        service_factory: Callable[[], CrawlService],
        base_request: CrawlRequest,
        interval_minutes: int = 360,
    ):
        """Initialize crawl scheduler.

        Args:
            service_factory: Builds the CrawlService used by one run
            base_request: Request template shared by all platforms
            interval_minutes: How often each platform is crawled
        """
        self.service_factory = service_factory
        self.base_request = base_request
        self.interval_minutes = interval_minutes
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.logger = logger.bind(service="crawl_scheduler")
        self._job_ids: Dict[SourcePlatform, str] = {}
        self.last_reports: Dict[SourcePlatform, CrawlReport] = {}

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            self.logger.info("scheduler_started")
        else:
            self.logger.warning("scheduler_already_running")

    def stop(self) -> None:
        """Stop the scheduler without waiting for running jobs."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            self.logger.info("scheduler_stopped")

    def add_platforms(self, platforms: List[SourcePlatform]) -> int:
        """Schedule a job per platform, staggering first runs.

        Returns:
            Number of jobs scheduled
        """
        added = 0
        for idx, platform in enumerate(platforms):
            if self.add_platform_job(platform, offset_seconds=idx * STAGGER_SECONDS):
                added += 1
        self.logger.info("platform_jobs_loaded", count=added)
        return added

    def add_platform_job(self, platform: SourcePlatform, offset_seconds: int = 0) -> Optional[Job]:
        """Add a periodic crawl job for ``platform``.

        Returns:
            APScheduler Job instance or None if the platform is already scheduled
        """
        if platform in self._job_ids:
            self.logger.warning("job_already_exists", platform=platform.value)
            return None

        first_run = datetime.now(timezone.utc) + timedelta(seconds=offset_seconds)
        job = self.scheduler.add_job(
            func=self._run_platform_wrapper,
            trigger=IntervalTrigger(minutes=self.interval_minutes, timezone="UTC"),
            args=[platform],
            id=f"crawl_{platform.value}",
            name=f"Crawl {platform.value}",
            replace_existing=True,
            max_instances=1,  # Prevent concurrent runs of the same platform
            next_run_time=first_run,
        )
        self._job_ids[platform] = job.id

        self.logger.info(
            "platform_job_added",
            platform=platform.value,
            interval_minutes=self.interval_minutes,
            first_run=first_run.isoformat(),
        )
        return job

    def remove_platform_job(self, platform: SourcePlatform) -> bool:
        job_id = self._job_ids.pop(platform, None)
        if not job_id:
            self.logger.warning("job_not_found", platform=platform.value)
            return False
        self.scheduler.remove_job(job_id)
        self.logger.info("platform_job_removed", platform=platform.value)
        return True

    async def _run_platform_wrapper(self, platform: SourcePlatform) -> None:
        """The function APScheduler calls; failures must not stop the scheduler."""
        try:
            await self.run_platform(platform)
        except Exception as e:
            self.logger.error(
                "crawl_job_failed",
                platform=platform.value,
                error=str(e),
                exc_info=True,
            )

    async def run_platform(self, platform: SourcePlatform) -> CrawlReport:
        self.logger.info("starting_crawl_job", platform=platform.value)
        request = replace(self.base_request, platform=platform)
        report = await self.service_factory().run(request)
        self.last_reports[platform] = report
        self.logger.info("crawl_job_completed", platform=platform.value, **report.counts())
        return report

    def get_jobs_status(self) -> dict:
        jobs = {}
        for platform, job_id in self._job_ids.items():
            job = self.scheduler.get_job(job_id)
            if job:
                jobs[platform.value] = {
                    "job_id": job_id,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                    "trigger": str(job.trigger),
                }
        return jobs

    def is_running(self) -> bool:
        return self.scheduler.running
