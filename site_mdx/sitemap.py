"""Sitemap discovery via robots.txt and conventional locations."""

from __future__ import annotations

import asyncio
import gzip
import logging
import xml.etree.ElementTree as ET
from typing import List, Optional, Set, Tuple, Union
from urllib.parse import urljoin, urlsplit

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .cancellation import CancellationToken
from .config import CONVENTIONAL_SITEMAP_PATHS, DEFAULT_HEADERS, SitemapConfig
from .errors import ConversionCancelled
from .models import FrontierEntry
from .utils import normalize_url

logger = logging.getLogger("site_mdx")

GZIP_MAGIC = b"\x1f\x8b"
DEFAULT_PRIORITY = 0.5

SitemapItems = Union[List[str], List[FrontierEntry]]


def build_session(config: SitemapConfig) -> requests.Session:
    """Create a requests session that retries transient failures."""
    session = requests.Session()
    retry_strategy = Retry(
        total=config.retries,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET"],
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update(DEFAULT_HEADERS)
    return session


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def parse_robots(text: str) -> List[str]:
    """Return the unique ``Sitemap:`` URLs declared in a robots.txt body."""
    sitemaps: List[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped.lower().startswith("sitemap:"):
            continue
        url = stripped.split(":", 1)[1].strip()
        if url and url not in sitemaps:
            sitemaps.append(url)
    return sitemaps


def is_gzipped(url: str, content_type: str, data: bytes) -> bool:
    if data[:2] == GZIP_MAGIC:
        return True
    declared = urlsplit(url).path.lower().endswith(".gz") or "gzip" in (content_type or "").lower()
    return declared and not looks_like_xml(data)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1].lower()


def _child_text(element: ET.Element, name: str) -> Optional[str]:
    for child in element:
        if _local_name(child.tag) == name and child.text and child.text.strip():
            return child.text.strip()
    return None


def _priority(value: Optional[str]) -> float:
    try:
        return float(value) if value is not None else DEFAULT_PRIORITY
    except ValueError:
        return DEFAULT_PRIORITY


def _entry(loc: str, lastmod=None, priority=DEFAULT_PRIORITY, changefreq=None) -> FrontierEntry:
    return FrontierEntry(
        normalized_url=normalize_url(loc),
        url=loc,
        lastmod=lastmod,
        priority=priority,
        changefreq=changefreq,
    )


def looks_like_xml(data: bytes) -> bool:
    body = data.lstrip(b"\xef\xbb\xbf").lstrip().lower()
    return body.startswith(b"<?xml") or b"<urlset" in body or b"<sitemapindex" in body


def parse_sitemap(data: bytes) -> Tuple[str, SitemapItems]:
    """Parse sitemap bytes into ``("index", [loc, ...])`` or ``("urlset", [entry, ...])``.

    Non-XML bodies are read as newline-delimited URL lists. Raises
    ``ET.ParseError`` for malformed XML.
    """
    if not looks_like_xml(data):
        text = data.decode("utf-8", errors="replace")
        lines = [line.strip() for line in text.splitlines()]
        return "urlset", [_entry(line) for line in lines if line.lower().startswith(("http://", "https://"))]

    root = ET.fromstring(data.lstrip(b"\xef\xbb\xbf").lstrip())
    kind = _local_name(root.tag)
    if kind == "sitemapindex":
        locs = []
        for child in root:
            if _local_name(child.tag) == "sitemap":
                loc = _child_text(child, "loc")
                if loc:
                    locs.append(loc)
        return "index", locs

    entries: List[FrontierEntry] = []
    for child in root:
        if _local_name(child.tag) != "url":
            continue
        loc = _child_text(child, "loc")
        if not loc:
            continue
        entries.append(
            _entry(
                loc,
                lastmod=_child_text(child, "lastmod"),
                priority=_priority(_child_text(child, "priority")),
                changefreq=_child_text(child, "changefreq"),
            )
        )
    return "urlset", entries


class SitemapParser:
    """Discover a site's pages from its sitemap(s).

    Locations are tried strictly in order and discovery stops at the first one
    that yields any URL. URLs are deduplicated for the lifetime of the parser.
    """

    def __init__(
        self,
        config: Optional[SitemapConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config or SitemapConfig()
        self.session = session or build_session(self.config)
        self._seen: Set[str] = set()
        self._visited: Set[str] = set()
        self.source: Optional[str] = None

    def _fetch_sync(self, url: str) -> Optional[bytes]:
        try:
            resp = self.session.get(url, timeout=self.config.request_timeout)
        except requests.RequestException as exc:
            logger.debug("Failed to fetch %s: %s", url, exc)
            return None
        if resp.status_code != 200:
            logger.debug("Fetching %s returned HTTP %s", url, resp.status_code)
            return None
        data = resp.content or b""
        if is_gzipped(url, resp.headers.get("Content-Type", ""), data):
            try:
                data = gzip.decompress(data)
            except (OSError, EOFError) as exc:
                logger.warning("Could not decompress %s: %s", url, exc)
                return None
        return data

    async def fetch(self, url: str) -> Optional[bytes]:
        return await asyncio.to_thread(self._fetch_sync, url)

    async def find_sitemaps_in_robots(self, base_url: str) -> List[str]:
        robots_url = origin_of(base_url) + "/robots.txt"
        data = await self.fetch(robots_url)
        if not data:
            return []
        sitemaps = parse_robots(data.decode("utf-8", errors="replace"))
        logger.debug("robots.txt at %s lists %d sitemap(s)", robots_url, len(sitemaps))
        return sitemaps

    async def candidate_locations(self, base_url: str) -> List[str]:
        origin = origin_of(base_url)
        candidates = [urljoin(origin, path) for path in CONVENTIONAL_SITEMAP_PATHS]
        for url in await self.find_sitemaps_in_robots(base_url):
            if url not in candidates:
                candidates.append(url)
        return candidates

    async def expand(
        self,
        url: str,
        sink: List[FrontierEntry],
        depth: int = 0,
        cancel_token: Optional[CancellationToken] = None,
    ) -> int:
        """Fetch one sitemap (recursing into indexes) and append new entries to ``sink``."""
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        if url in self._visited:
            logger.warning("Skipping already visited sitemap %s", url)
            return 0
        self._visited.add(url)

        data = await self.fetch(url)
        if not data:
            return 0
        try:
            kind, items = parse_sitemap(data)
        except ET.ParseError as exc:
            logger.warning("Could not parse sitemap %s: %s", url, exc)
            return 0

        if kind == "index":
            if depth >= self.config.max_depth:
                logger.warning("Maximum sitemap depth %d reached at %s", self.config.max_depth, url)
                return 0
            added = 0
            for child in items:
                if len(sink) >= self.config.max_entries:
                    break
                added += await self.expand(child, sink, depth + 1, cancel_token)
            return added

        added = 0
        for entry in items:
            if len(sink) >= self.config.max_entries:
                break
            if entry.url in self._seen:
                continue
            self._seen.add(entry.url)
            sink.append(entry)
            added += 1
        return added

    async def _discover(
        self,
        base_url: str,
        sink: List[FrontierEntry],
        cancel_token: Optional[CancellationToken],
    ) -> None:
        for candidate in await self.candidate_locations(base_url):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            try:
                added = await self.expand(candidate, sink, 0, cancel_token)
            except ConversionCancelled:
                raise
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Sitemap candidate %s failed: %s", candidate, exc)
                continue
            if added:
                logger.info("Found %d URLs in sitemap %s", added, candidate)
                self.source = candidate
                return
        logger.info("No sitemap found for %s", base_url)

    async def discover(
        self,
        base_url: str,
        cancel_token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> List[FrontierEntry]:
        """Return the pages listed by the first usable sitemap, or an empty list.

        ``timeout`` tightens the configured discovery timeout, e.g. to the
        time left before a job deadline.
        """
        self.source = None
        found: List[FrontierEntry] = []
        limit = self.config.discovery_timeout
        if timeout is not None:
            limit = max(0.0, min(limit, timeout))
        try:
            await asyncio.wait_for(
                self._discover(base_url, found, cancel_token),
                timeout=limit,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Sitemap discovery for %s timed out after %.1fs; keeping %d URLs",
                base_url,
                limit,
                len(found),
            )
        except ConversionCancelled:
            logger.info("Sitemap discovery cancelled; keeping %d URLs", len(found))
        return found[: self.config.max_entries]
