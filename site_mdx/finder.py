"""Link-based frontier discovery for sites without a usable sitemap."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence
from urllib.parse import urlsplit

from .browser import BrowserPool, navigate
from .cancellation import CancellationToken
from .cleaner import PageCleaner
from .config import BrowserConfig, FinderConfig, compile_patterns
from .utils import hostname_of, normalize_url, same_site
from .waiter import DynamicContentWaiter

logger = logging.getLogger("site_mdx")

_LINKS_JS = """
() => Array.from(document.querySelectorAll('a[href]')).map(a => {
  let url = null;
  let depth = 0;
  try {
    const parsed = new URL(a.getAttribute('href'), document.baseURI);
    url = parsed.href;
    depth = parsed.pathname.split('/').filter(Boolean).length;
  } catch (e) {}
  return {
    href: a.getAttribute('href') || '',
    url,
    text: (a.textContent || '').trim(),
    isInNavigation: !!a.closest('nav, .nav, .menu, .navigation, header'),
    isInMain: !!a.closest('main, article, .content, #content'),
    pathDepth: depth,
  };
})
"""

UNFOLLOWABLE_PREFIXES = ("javascript:", "mailto:", "tel:")
KEY_SECTION_PATTERN = re.compile(r"/(about|contact|docs)")
BASE_SCORE = 50.0


@dataclass
class LinkCandidate:
    """A same-site link found on the seed page, merged across duplicates."""

    url: str
    normalized_url: str
    text: str = ""
    in_navigation: bool = False
    in_main: bool = False
    path_depth: int = 0


@dataclass(frozen=True)
class ScoreRule:
    name: str
    value: Callable[[LinkCandidate], float]
    weight: float


def _is_home(link: LinkCandidate) -> bool:
    return urlsplit(link.url).path in ("", "/", "/index.html")


def _is_key_section(link: LinkCandidate) -> bool:
    return bool(KEY_SECTION_PATTERN.search(urlsplit(link.url).path))


# Priority policy: BASE_SCORE plus the weighted value of each signal.
SCORE_RULES: List[ScoreRule] = [
    ScoreRule("in_main", lambda link: float(link.in_main), 30.0),
    ScoreRule("in_navigation", lambda link: float(link.in_navigation), 20.0),
    ScoreRule("path_depth", lambda link: float(link.path_depth), -5.0),
    ScoreRule("home_page", lambda link: float(_is_home(link)), 50.0),
    ScoreRule("key_section", lambda link: float(_is_key_section(link)), 40.0),
]


def score_link(link: LinkCandidate, rules: Sequence[ScoreRule] = SCORE_RULES) -> float:
    return BASE_SCORE + sum(rule.weight * rule.value(link) for rule in rules)


def is_followable(href: str) -> bool:
    href = (href or "").strip()
    if not href or href == "/" or href.startswith("#"):
        return False
    return not href.lower().startswith(UNFOLLOWABLE_PREFIXES)


def chunk_by_priority(
    candidates: Sequence[LinkCandidate],
    chunk_size: int,
    scores: Mapping[str, float],
) -> List[List[str]]:
    """Split candidates into fixed-size chunks, each sorted by descending score."""
    chunk_size = max(1, chunk_size)
    chunks: List[List[str]] = []
    for start in range(0, len(candidates), chunk_size):
        chunk = [candidate.normalized_url for candidate in candidates[start : start + chunk_size]]
        chunk.sort(key=lambda url: scores.get(url, 0.0), reverse=True)
        chunks.append(chunk)
    return chunks


class UrlFinder:
    """Build a prioritized frontier from the links on a rendered seed page."""

    def __init__(
        self,
        pool: BrowserPool,
        config: Optional[FinderConfig] = None,
        cleaner: Optional[PageCleaner] = None,
        waiter: Optional[DynamicContentWaiter] = None,
        browser_config: Optional[BrowserConfig] = None,
    ) -> None:
        self.pool = pool
        self.config = config or FinderConfig()
        self.cleaner = cleaner or PageCleaner()
        self.waiter = waiter or DynamicContentWaiter(cleaner=self.cleaner)
        self.browser_config = browser_config or pool.config
        self._skip_patterns = compile_patterns(self.config.skip_url_patterns)
        self._originals: Dict[str, str] = {}
        self.scores: Dict[str, float] = {}

    def should_exclude(self, url: str) -> bool:
        return any(pattern.search(url) for pattern in self._skip_patterns)

    def original_url(self, normalized_url: str) -> str:
        """Recover a followable URL for a normalized one."""
        return self._originals.get(normalized_url, normalized_url)

    def collect(self, links: Sequence[Mapping[str, Any]], seed_url: str) -> List[LinkCandidate]:
        """Filter raw link records and merge duplicates by normalized URL."""
        seed_host = hostname_of(seed_url)
        merged: Dict[str, LinkCandidate] = {}
        for link in links:
            url = link.get("url")
            if not url or not is_followable(link.get("href", "")):
                continue
            if not same_site(seed_host, hostname_of(url)):
                continue
            if self.should_exclude(url):
                continue
            normalized = normalize_url(url)
            existing = merged.get(normalized)
            if existing is None:
                merged[normalized] = LinkCandidate(
                    url=url.split("#", 1)[0],
                    normalized_url=normalized,
                    text=link.get("text") or "",
                    in_navigation=bool(link.get("isInNavigation")),
                    in_main=bool(link.get("isInMain")),
                    path_depth=int(link.get("pathDepth") or 0),
                )
                self._originals.setdefault(normalized, merged[normalized].url)
            else:
                existing.in_navigation = existing.in_navigation or bool(link.get("isInNavigation"))
                existing.in_main = existing.in_main or bool(link.get("isInMain"))
                if not existing.text:
                    existing.text = link.get("text") or ""
        return list(merged.values())

    async def find_frontier(
        self,
        seed_url: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[List[str]]:
        """Return chunks of normalized same-site URLs linked from ``seed_url``."""
        logger.info("Finding child pages for %s", seed_url)
        async with self.pool.page() as page:
            final_url = await navigate(page, seed_url, self.browser_config)
            await self.waiter.wait_for_stable(page, cancel_token)
            await self.cleaner.remove_overlays(page)
            await self.cleaner.cleanup_page(page, preserve_navigation=True)
            links = await page.evaluate(_LINKS_JS)

        candidates = self.collect(links or [], final_url or seed_url)
        for candidate in candidates:
            self.scores[candidate.normalized_url] = score_link(candidate)
        chunks = chunk_by_priority(candidates, self.config.chunk_size, self.scores)

        for normalized, score in sorted(self.scores.items(), key=lambda item: -item[1])[:10]:
            logger.debug("  %5.1f  %s", score, self.original_url(normalized))
        logger.info("Found %d pages in %d chunks", len(candidates), len(chunks))
        return chunks
