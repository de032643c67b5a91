"""Whole-site conversion: discovery, bounded-concurrency crawl, archive."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Set
from urllib.parse import urlsplit

from .archive import build_archive
from .browser import BrowserPool
from .cancellation import CancellationToken
from .cleaner import PageCleaner
from .config import SiteConfig
from .crawler import PageConverter
from .errors import BrowserLaunchError, ConversionCancelled
from .finder import UrlFinder
from .models import FrontierEntry, PageResult, SiteArchive
from .similarity import DuplicateDetector
from .sitemap import SitemapParser
from .utils import ensure_url, hostname_of, normalize_url, same_site
from .waiter import DynamicContentWaiter

logger = logging.getLogger("site_mdx")

ProgressCallback = Callable[[str, Dict[str, Any]], None]

TIMEOUT_ERROR = "Not attempted: job timeout exceeded"


class Frontier:
    """Insertion-ordered set of URLs to convert, unique by normalized form."""

    def __init__(self) -> None:
        self._entries: Dict[str, FrontierEntry] = {}

    def add(self, url: str, normalized_url: Optional[str] = None, **attrs: Any) -> Optional[FrontierEntry]:
        """Queue ``url`` unless its normalized form is already present."""
        normalized = normalized_url or normalize_url(url)
        if normalized in self._entries:
            return None
        entry = FrontierEntry(normalized_url=normalized, url=url, **attrs)
        self._entries[normalized] = entry
        return entry

    def add_entry(self, entry: FrontierEntry) -> bool:
        if entry.normalized_url in self._entries:
            return False
        self._entries[entry.normalized_url] = entry
        return True

    def __contains__(self, normalized_url: str) -> bool:
        return normalized_url in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[FrontierEntry]:
        return iter(self._entries.values())


def matches_path_filter(url: str, path_filter: Optional[str]) -> bool:
    """Accept URLs whose path starts with the filter (a path or a full URL)."""
    if not path_filter:
        return True
    prefix = urlsplit(path_filter).path if "://" in path_filter else path_filter
    if not prefix.startswith("/"):
        prefix = "/" + prefix
    return (urlsplit(url).path or "/").startswith(prefix)


def plan_chunks(
    chunks: Sequence[Sequence[FrontierEntry]],
    seed_normalized: str,
    path_filter: Optional[str],
    limit: int,
) -> List[List[FrontierEntry]]:
    """Apply the path filter (never to the seed) and the page cap, keeping order."""
    planned: List[List[FrontierEntry]] = []
    count = 0
    for chunk in chunks:
        kept: List[FrontierEntry] = []
        for entry in chunk:
            if count >= limit:
                break
            if entry.normalized_url != seed_normalized and not matches_path_filter(entry.url, path_filter):
                continue
            kept.append(entry)
            count += 1
        if kept:
            planned.append(kept)
        if count >= limit:
            break
    return planned


class SiteConverter:
    """Convert a whole website into an index plus one Markdown file per page."""

    def __init__(
        self,
        config: Optional[SiteConfig] = None,
        pool: Optional[BrowserPool] = None,
        sitemap_parser: Optional[SitemapParser] = None,
        finder: Optional[UrlFinder] = None,
        page_converter: Optional[PageConverter] = None,
    ) -> None:
        self.config = config or SiteConfig()
        self._owns_pool = pool is None
        self.pool = pool or BrowserPool(self.config.browser)
        cleaner = PageCleaner()
        waiter = DynamicContentWaiter(self.config.wait, cleaner)
        self.sitemap_parser = sitemap_parser or SitemapParser(self.config.sitemap)
        self.finder = finder or UrlFinder(
            self.pool, self.config.finder, cleaner, waiter, self.config.browser
        )
        self.page_converter = page_converter or PageConverter(
            self.pool, self.config, cleaner, waiter
        )

    @staticmethod
    def _report(callback: Optional[ProgressCallback], event: str, **data: Any) -> None:
        if callback is None:
            return
        try:
            callback(event, data)
        except Exception:  # pylint: disable=broad-except
            logger.warning("Progress callback failed for %s", event, exc_info=True)

    async def discover(
        self,
        seed: str,
        token: CancellationToken,
        deadline: float,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[List[FrontierEntry]]:
        """Build the ordered, deduplicated frontier chunks for ``seed``."""
        loop = asyncio.get_running_loop()
        host = hostname_of(seed)
        frontier = Frontier()
        frontier.add(seed)
        seed_normalized = normalize_url(seed)
        chunk_size = max(1, self.config.finder.chunk_size)
        chunks: List[List[FrontierEntry]] = []

        entries: List[FrontierEntry] = []
        if self.config.use_sitemap and not token.cancelled:
            self._report(on_progress, "discovering_sitemap", url=seed)
            entries = await self.sitemap_parser.discover(
                seed, token, timeout=max(0.0, deadline - loop.time())
            )
            entries = [entry for entry in entries if same_site(host, hostname_of(entry.url))]

        from_sitemap = bool(entries)
        if from_sitemap:
            self._report(
                on_progress,
                "sitemap_found",
                count=len(entries),
                sitemap=getattr(self.sitemap_parser, "source", None),
            )
            added = [entry for entry in entries if frontier.add_entry(entry)]
            chunks = [added[i : i + chunk_size] for i in range(0, len(added), chunk_size)]
        elif not token.cancelled:
            self._report(on_progress, "finding_links", url=seed)
            finder_chunks: List[List[str]] = []
            try:
                finder_chunks = await asyncio.wait_for(
                    self.finder.find_frontier(seed, token),
                    timeout=max(0.0, deadline - loop.time()),
                )
            except BrowserLaunchError:
                raise
            except ConversionCancelled:
                logger.info("Link discovery cancelled")
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Link discovery failed for %s: %s", seed, exc)
            for finder_chunk in finder_chunks:
                added = []
                for normalized in finder_chunk:
                    url = self.finder.original_url(normalized)
                    entry = frontier.add(url, normalized, score=self.finder.scores.get(normalized, 0.0))
                    if entry is not None:
                        added.append(entry)
                if added:
                    chunks.append(added)

        seed_entry = next(iter(frontier))
        planned = plan_chunks(
            [[seed_entry]] + chunks,
            seed_normalized,
            self.config.path_filter,
            self.config.page_limit(from_sitemap),
        )
        logger.info(
            "Frontier for %s: %d URLs in %d chunks (%s)",
            seed,
            sum(len(chunk) for chunk in planned),
            len(planned),
            "sitemap" if from_sitemap else "links",
        )
        return planned

    async def _abort(self, tasks: Set["asyncio.Future[Any]"]) -> None:
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _drain(
        self,
        tasks: List["asyncio.Future[Any]"],
        token: CancellationToken,
        deadline: float,
    ) -> Optional[str]:
        """Wait for a chunk; return ``"timeout"`` or ``"cancelled"`` if cut short."""
        loop = asyncio.get_running_loop()
        pending: Set["asyncio.Future[Any]"] = set(tasks)
        cancel_wait = asyncio.ensure_future(token.wait())
        try:
            while pending:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    await self._abort(pending)
                    return "timeout"
                finished, _ = await asyncio.wait(
                    pending | {cancel_wait},
                    timeout=remaining,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                for task in finished:
                    if task is cancel_wait or task.cancelled():
                        continue
                    pending.discard(task)
                    exc = task.exception()
                    if exc is not None:
                        await self._abort(pending)
                        raise exc
                if cancel_wait in finished and pending:
                    grace = min(self.config.cancel_grace_period, max(0.0, deadline - loop.time()))
                    logger.info("Cancelling; waiting up to %.1fs for %d pages", grace, len(pending))
                    if grace > 0:
                        await asyncio.wait(pending, timeout=grace)
                    await self._abort({task for task in pending if not task.done()})
                    return "cancelled"
            return None
        finally:
            cancel_wait.cancel()

    async def process(
        self,
        chunks: Sequence[Sequence[FrontierEntry]],
        token: CancellationToken,
        deadline: float,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[PageResult]:
        """Convert every frontier entry, at most ``concurrency_limit`` at a time."""
        loop = asyncio.get_running_loop()
        total = sum(len(chunk) for chunk in chunks)
        self._report(on_progress, "processing_pages", total=total)
        results: List[PageResult] = []
        finished: Set[str] = set()
        semaphore = asyncio.Semaphore(max(1, self.config.concurrency_limit))
        detector = (
            DuplicateDetector(self.config.content_similarity_threshold)
            if self.config.skip_duplicate_content
            else None
        )

        def record(entry: FrontierEntry, result: PageResult) -> None:
            result.normalized_url = entry.normalized_url
            if detector is not None and result.success:
                duplicate = detector.check(entry.url, result.content or "")
                if duplicate is not None:
                    original, similarity = duplicate
                    logger.info("Skipping %s: duplicate of %s (%.2f)", entry.url, original, similarity)
                    result = PageResult.failure(
                        entry.url,
                        f"Duplicate content of {original} (similarity {similarity:.2f})",
                        entry.normalized_url,
                    )
            results.append(result)
            finished.add(entry.normalized_url)
            self._report(
                on_progress,
                "page_converted",
                url=entry.url,
                success=result.success,
                completed=len(results),
                total=total,
            )

        async def run_one(entry: FrontierEntry) -> None:
            async with semaphore:
                if token.cancelled:
                    return
                try:
                    result = await self.page_converter.convert(entry.url, token)
                except ConversionCancelled:
                    result = PageResult.failure(entry.url, token.reason, entry.normalized_url)
                record(entry, result)

        await self.pool.get_browser()
        for chunk in chunks:
            if token.cancelled or loop.time() >= deadline:
                break
            logger.info("Processing chunk of %d URLs", len(chunk))
            tasks = [asyncio.ensure_future(run_one(entry)) for entry in chunk]
            if await self._drain(tasks, token, deadline):
                break

        unfinished = [
            entry for chunk in chunks for entry in chunk if entry.normalized_url not in finished
        ]
        if unfinished:
            error = token.reason if token.cancelled else TIMEOUT_ERROR
            logger.warning("Crawl stopped early; marking %d unfinished pages: %s", len(unfinished), error)
            for entry in unfinished:
                results.append(PageResult.failure(entry.url, error, entry.normalized_url))
        return results

    async def convert(
        self,
        seed_url: str,
        cancel_token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SiteArchive:
        """Crawl ``seed_url`` and return the assembled archive.

        Raises ``InvalidUrlError`` for a malformed seed and
        ``BrowserLaunchError`` when no browser can be started; every other
        failure is recorded per page.
        """
        seed = ensure_url(seed_url)
        token = cancel_token or CancellationToken()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.job_timeout
        logger.info("Starting conversion of %s", seed)
        try:
            chunks = await self.discover(seed, token, deadline, on_progress)
            results = await self.process(chunks, token, deadline, on_progress)
            self._report(on_progress, "building_archive", pages=len(results))
            archive = build_archive(seed, results)
            self._report(on_progress, "completed", **archive.stats.as_dict())
            return archive
        finally:
            if self._owns_pool:
                await self.pool.shutdown()


async def convert_site(
    seed_url: str,
    config: Optional[SiteConfig] = None,
    pool: Optional[BrowserPool] = None,
    cancel_token: Optional[CancellationToken] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> SiteArchive:
    """Convert a whole site with default collaborators."""
    converter = SiteConverter(config, pool=pool)
    return await converter.convert(seed_url, cancel_token, on_progress)
