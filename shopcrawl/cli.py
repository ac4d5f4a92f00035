"""Command-line entry point.

Usage:
    shopcrawl crawl --platform amazon --mode search --keyword "usb-c hub" --max-items 10
    shopcrawl crawl --platform ebay --url https://www.ebay.com/itm/123456789012
    shopcrawl schedule
    shopcrawl affiliate-search --keyword earbuds --sort LAST_VOLUME_DESC --save
    shopcrawl affiliate-link --url https://www.aliexpress.com/item/1005001234567890.html
    shopcrawl filter-images
    shopcrawl init-db

Exit codes: 0 when the run completes (skipped items included), 1 on a fatal
startup error (configuration or browser launch), 2 when some affiliate links
could not be generated, 130 when interrupted before startup completed.
"""

import argparse
import asyncio
import signal
from typing import List, Optional

import structlog
from pydantic import ValidationError

from shopcrawl.affiliate.client import SORT_OPTIONS, AliExpressAffiliateClient, SearchParams
from shopcrawl.config import Settings
from shopcrawl.core.constants import CrawlMode, SourcePlatform
from shopcrawl.core.exceptions import BrowserLaunchError, ConfigurationError
from shopcrawl.db.session import create_engine_from_settings, create_session_factory, init_models
from shopcrawl.logging_config import configure_logging
from shopcrawl.scrapers.crawl_service import CrawlReport, CrawlService
from shopcrawl.scrapers.factory import build_default_factory
from shopcrawl.scrapers.scheduler import CrawlScheduler
from shopcrawl.scrapers.utils.image_filter import ImageRuleTable
from shopcrawl.services.affiliate_service import AffiliateService
from shopcrawl.services.product_service import ProductService

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 2
EXIT_INTERRUPTED = 130


def _install_signal_handlers(event: asyncio.Event) -> None:
    """SIGINT/SIGTERM set ``event`` instead of killing the process."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, event.set)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            pass


def _remove_signal_handlers() -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.remove_signal_handler(sig)
        except NotImplementedError:
            pass


def apply_crawl_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Settings with the crawl options given on the command line applied."""
    overrides = {}
    if args.platform:
        overrides["CRAWL_PLATFORM"] = SourcePlatform(args.platform)
    if args.mode:
        overrides["CRAWL_MODE"] = CrawlMode(args.mode)
    if args.url:
        overrides["PRODUCT_URLS"] = ",".join(args.url)
    if args.keyword is not None:
        overrides["SEARCH_KEYWORD"] = args.keyword
    if args.category is not None:
        overrides["CATEGORY"] = args.category
    if args.max_items is not None:
        overrides["MAX_PRODUCTS"] = args.max_items
    if args.no_reviews:
        overrides["CRAWL_REVIEWS"] = False
    if args.max_reviews is not None:
        overrides["MAX_REVIEWS"] = args.max_reviews
    return settings.model_copy(update=overrides)


async def run_crawl(args: argparse.Namespace, settings: Settings) -> int:
    settings = apply_crawl_overrides(settings, args)
    request = settings.crawl_request()
    engine = create_engine_from_settings(settings)
    cancel_event = asyncio.Event()
    try:
        await init_models(engine)
        service = CrawlService.from_settings(settings, create_session_factory(engine))
        _install_signal_handlers(cancel_event)
        try:
            report = await service.run(request, cancel_event)
        finally:
            _remove_signal_handlers()
    finally:
        await engine.dispose()

    _print_report(report)
    return EXIT_OK


async def run_schedule(args: argparse.Namespace, settings: Settings) -> int:
    base_request = settings.crawl_request()
    platforms = settings.get_schedule_platforms()
    factory = build_default_factory()
    for platform in platforms:
        factory.create_adapter(platform).validate_request(
            base_request.mode, base_request.keyword, base_request.category
        )

    engine = create_engine_from_settings(settings)
    stop_event = asyncio.Event()
    try:
        await init_models(engine)
        session_factory = create_session_factory(engine)
        scheduler = CrawlScheduler(
            service_factory=lambda: CrawlService.from_settings(settings, session_factory),
            base_request=base_request,
            interval_minutes=settings.SCHEDULE_INTERVAL_MINUTES,
        )
        scheduler.add_platforms(platforms)
        _install_signal_handlers(stop_event)
        scheduler.start()
        try:
            await stop_event.wait()
        finally:
            scheduler.stop()
            _remove_signal_handlers()
    finally:
        await engine.dispose()
    return EXIT_OK


async def run_affiliate_search(args: argparse.Namespace, settings: Settings) -> int:
    client = AliExpressAffiliateClient.from_settings(settings)
    params = SearchParams(
        keywords=args.keyword,
        category_ids=args.category_ids or "",
        page_no=args.page,
        page_size=args.page_size,
        sort=args.sort,
    )
    result = await client.search(params)
    if not result.ok:
        print(f"Search failed [{result.error.kind}]: {result.error.message}")
        return EXIT_PARTIAL

    print(f"\n{'=' * 70}")
    print(f"  {len(result.data.products)} of {result.data.total_record_count} products (page {result.data.current_page_no})")
    print(f"{'=' * 70}\n")
    for item in result.data.products:
        print(f"[{item.get('product_id')}] {item.get('product_title')}")
        print(f"    Price: {item.get('target_sale_price')} {item.get('target_sale_price_currency', '')}")
        print(f"    Commission: {item.get('commission_rate')}")
        print()

    if args.save:
        engine = create_engine_from_settings(settings)
        try:
            await init_models(engine)
            async with create_session_factory(engine)() as db:
                created, updated = await AffiliateService(db).save_search_results(result.data.products)
        finally:
            await engine.dispose()
        print(f"Saved: {created} created, {updated} updated")
    return EXIT_OK


async def run_affiliate_link(args: argparse.Namespace, settings: Settings) -> int:
    client = AliExpressAffiliateClient.from_settings(settings)

    if args.product_id:
        engine = create_engine_from_settings(settings)
        try:
            await init_models(engine)
            async with create_session_factory(engine)() as db:
                try:
                    result = await AffiliateService(db).generate_and_store_link(client, args.product_id)
                except ValueError as e:
                    raise ConfigurationError(str(e)) from e
        finally:
            await engine.dispose()
        if not result.ok:
            print(f"{args.product_id}: failed [{result.error.kind}] {result.error.message}")
            return EXIT_PARTIAL
        print(f"{args.product_id}: {result.data.promotion_link}")
        return EXIT_OK

    results = await client.generate_links(args.url)
    failures = 0
    for url, result in zip(args.url, results):
        if result.ok:
            print(f"{url}\n    -> {result.data.promotion_link}")
        else:
            failures += 1
            print(f"{url}\n    -> failed [{result.error.kind}] {result.error.message}")
    print(f"\n{len(results) - failures}/{len(results)} links generated")
    return EXIT_PARTIAL if failures else EXIT_OK


async def run_filter_images(args: argparse.Namespace, settings: Settings) -> int:
    engine = create_engine_from_settings(settings)
    try:
        await init_models(engine)
        async with create_session_factory(engine)() as db:
            report = await ProductService(db).refilter_detail_images(ImageRuleTable.from_settings(settings))
    finally:
        await engine.dispose()
    print(
        f"Scanned {report.products_scanned} products: "
        f"{report.products_changed} changed, {report.images_removed} images removed"
    )
    return EXIT_OK


async def run_init_db(args: argparse.Namespace, settings: Settings) -> int:
    engine = create_engine_from_settings(settings)
    try:
        await init_models(engine)
    finally:
        await engine.dispose()
    logger.info("database_initialized")
    return EXIT_OK


def _print_report(report: CrawlReport) -> None:
    counts = report.counts()
    print(f"\n{'=' * 70}")
    print(f"  {report.platform.value} / {report.mode.value}{' (cancelled)' if report.cancelled else ''}")
    print(f"{'=' * 70}")
    for outcome in report.outcomes:
        line = f"  {outcome.status.value:<8} {outcome.url}"
        if outcome.reason:
            line += f"\n           {outcome.reason}"
        print(line)
    print(f"{'=' * 70}")
    print("  " + ", ".join(f"{status}: {count}" for status, count in counts.items()))
    print(f"{'=' * 70}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shopcrawl",
        description="Crawl products from retail and crowdfunding sites into one catalogue",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    crawl = subparsers.add_parser("crawl", help="Run one crawl (settings overridable here)")
    crawl.add_argument("--platform", choices=[p.value for p in SourcePlatform])
    crawl.add_argument("--mode", choices=[m.value for m in CrawlMode])
    crawl.add_argument("--url", action="append", help="Item URL for direct-url mode (repeatable)")
    crawl.add_argument("--keyword", help="Search keyword")
    crawl.add_argument("--category", help="Platform category id or name")
    crawl.add_argument("--max-items", type=int, help="Maximum number of items for list modes")
    crawl.add_argument("--no-reviews", action="store_true", help="Skip review extraction")
    crawl.add_argument("--max-reviews", type=int, help="Maximum reviews per item")
    crawl.set_defaults(handler=run_crawl)

    schedule = subparsers.add_parser("schedule", help="Crawl SCHEDULE_PLATFORMS every SCHEDULE_INTERVAL_MINUTES")
    schedule.set_defaults(handler=run_schedule)

    search = subparsers.add_parser("affiliate-search", help="Query the AliExpress affiliate catalogue")
    search.add_argument("--keyword", required=True)
    search.add_argument("--category-ids", help="Comma-separated partner category ids")
    search.add_argument("--sort", choices=SORT_OPTIONS)
    search.add_argument("--page", type=int, default=1)
    search.add_argument("--page-size", type=int, default=20)
    search.add_argument("--save", action="store_true", help="Store results in affiliate_products")
    search.set_defaults(handler=run_affiliate_search)

    link = subparsers.add_parser("affiliate-link", help="Generate affiliate tracking links")
    target = link.add_mutually_exclusive_group(required=True)
    target.add_argument("--product-id", help="Stored affiliate product id; the link is persisted")
    target.add_argument("--url", nargs="+", help="One or more product URLs")
    link.set_defaults(handler=run_affiliate_link)

    images = subparsers.add_parser("filter-images", help="Re-apply the image filter to stored products")
    images.set_defaults(handler=run_filter_images)

    init_db = subparsers.add_parser("init-db", help="Create database tables")
    init_db.set_defaults(handler=run_init_db)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments and run the selected command."""
    args = build_parser().parse_args(argv)

    try:
        settings = Settings()
    except ValidationError as e:
        configure_logging(debug=args.debug)
        logger.error("invalid_configuration", error=str(e))
        return EXIT_FATAL

    configure_logging(debug=settings.DEBUG or args.debug, json_logs=settings.is_production)

    try:
        return asyncio.run(args.handler(args, settings))
    except (ConfigurationError, BrowserLaunchError) as e:
        logger.error("startup_failed", command=args.command, error_type=type(e).__name__, error=e.message)
        return EXIT_FATAL
    except KeyboardInterrupt:
        logger.warning("interrupted", command=args.command)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    raise SystemExit(main())
