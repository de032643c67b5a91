"""Command-line entry point for site-mdx."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import time
from pathlib import Path
from typing import Any, Dict, Iterable, Sequence

from .cancellation import CancellationToken
from .config import DEFAULT_SKIP_URL_PATTERNS, SiteConfig
from .crawler import convert_page
from .errors import SiteMdxError
from .models import PageResult, SiteArchive
from .site import SiteConverter
from .writer import write_archive, write_page

logger = logging.getLogger("site_mdx.cli")


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return argv
    first = argv[0]
    if first in commands or first.startswith("-"):
        return argv
    return ("site", *argv)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("url", help="URL to convert")
    parser.add_argument(
        "--output",
        default="output",
        type=Path,
        help="Directory where Markdown and attachments should be written",
    )
    parser.add_argument(
        "--navigation-timeout",
        type=float,
        default=30.0,
        help="Per-page navigation timeout in seconds",
    )
    parser.add_argument(
        "--download-images",
        action="store_true",
        help="Download page images into the attachments folder",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def _add_site_arguments(parser: argparse.ArgumentParser) -> None:
    _add_common_arguments(parser)
    parser.add_argument(
        "--max-pages",
        type=int,
        default=None,
        help="Maximum number of pages to convert (default: 1000 from a sitemap, 100 from links)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=5,
        help="Number of pages converted in parallel",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=1800.0,
        help="Overall job timeout in seconds",
    )
    parser.add_argument(
        "--path-filter",
        default=None,
        help="Only convert pages whose path starts with this prefix",
    )
    parser.add_argument(
        "--skip-pattern",
        action="append",
        default=[],
        help="Extra regular expression for URLs to skip (repeatable)",
    )
    parser.add_argument(
        "--skip-duplicates",
        action="store_true",
        help="Skip pages whose text nearly duplicates an earlier page",
    )
    parser.add_argument(
        "--no-sitemap",
        action="store_true",
        help="Discover pages from links only",
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Render websites with Playwright and convert them to Markdown archives.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    site_parser = subparsers.add_parser(
        "site", help="Crawl a whole site into an index plus one Markdown file per page"
    )
    _add_site_arguments(site_parser)

    page_parser = subparsers.add_parser("page", help="Convert a single web page to Markdown")
    _add_common_arguments(page_parser)

    argv = list(sys.argv[1:] if argv is None else argv)
    argv = list(_ensure_command_prefix(argv, subparsers.choices.keys()))
    return parser.parse_args(argv)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


def build_site_config(args: argparse.Namespace) -> SiteConfig:
    config = SiteConfig(
        max_pages=args.max_pages,
        concurrency_limit=args.concurrency,
        job_timeout=args.timeout,
        path_filter=args.path_filter,
        download_images=args.download_images,
        skip_duplicate_content=args.skip_duplicates,
        use_sitemap=not args.no_sitemap,
    )
    config.browser.navigation_timeout = args.navigation_timeout
    config.finder.skip_url_patterns = list(DEFAULT_SKIP_URL_PATTERNS) + list(args.skip_pattern)
    return config


def _install_interrupt_handler(token: CancellationToken) -> None:
    loop = asyncio.get_running_loop()

    def _on_interrupt() -> None:
        if token.cancelled:
            loop.remove_signal_handler(signal.SIGINT)
            return
        logger.warning("Interrupt received; finishing in-flight pages (Ctrl-C again to abort)")
        token.cancel()

    try:
        loop.add_signal_handler(signal.SIGINT, _on_interrupt)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers are not supported on this platform")


def _log_progress(event: str, data: Dict[str, Any]) -> None:
    if event == "page_converted":
        status = "ok" if data.get("success") else "failed"
        logger.info("[%s/%s] %s %s", data.get("completed"), data.get("total"), status, data.get("url"))
    else:
        logger.debug("%s %s", event, data)


async def _crawl_site(args: argparse.Namespace) -> SiteArchive:
    token = CancellationToken()
    _install_interrupt_handler(token)
    converter = SiteConverter(build_site_config(args))
    return await converter.convert(args.url, token, _log_progress)


def _run_site(args: argparse.Namespace) -> None:
    _configure_logging(args.verbose)
    overall_start = time.perf_counter()
    try:
        archive = asyncio.run(_crawl_site(args))
    except SiteMdxError as exc:
        logger.error("%s", exc)
        raise SystemExit(1) from exc
    destination = write_archive(archive, args.output)
    total_elapsed = time.perf_counter() - overall_start

    stats = archive.stats
    logger.info(
        "Finished in %.2fs (%d/%d succeeded, %d failed) -> %s",
        total_elapsed,
        stats.successful_pages,
        stats.total_pages,
        stats.failed_pages,
        destination,
    )


def _run_page(args: argparse.Namespace) -> None:
    _configure_logging(args.verbose)
    config = SiteConfig(download_images=args.download_images)
    config.browser.navigation_timeout = args.navigation_timeout
    overall_start = time.perf_counter()
    try:
        result: PageResult = asyncio.run(convert_page(args.url, config))
    except SiteMdxError as exc:
        logger.error("%s", exc)
        raise SystemExit(1) from exc
    if not result.success:
        logger.error("Failed to convert %s: %s", result.url, result.error)
        raise SystemExit(1)
    output_path = write_page(result, args.output)
    logger.info("Finished in %.2fs -> %s", time.perf_counter() - overall_start, output_path)


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    if args.command == "site":
        _run_site(args)
    else:
        _run_page(args)


if __name__ == "__main__":
    main()
