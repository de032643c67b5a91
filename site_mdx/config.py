"""Configuration objects and constants for site conversion."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)

DEFAULT_HEADERS = {
    "User-Agent": DEFAULT_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

DEFAULT_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
    "--disable-infobars",
    "--window-size=1920,1080",
]

DEFAULT_VIEWPORT = {"width": 1920, "height": 1080}

BLOCKED_RESOURCE_TYPES = ("image", "font", "media")

TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "fbclid",
        "gclid",
        "_ga",
        "ref",
        "source",
        "campaign",
        "_hsenc",
        "_hsmi",
        "mc_cid",
        "mc_eid",
        "mkt_tok",
        "trk",
        "_openstat",
        "yclid",
        "fb_action_ids",
        "action_object_map",
        "action_type_map",
        "action_ref_map",
        "gs_l",
        "pd_rd_r",
        "pd_rd_w",
        "pd_rd_wg",
        "pf_rd_p",
        "pf_rd_r",
        "qid",
        "sr",
        "spm",
        "psc",
    }
)
TRACKING_PARAM_PREFIXES = ("utm_",)

DEFAULT_SKIP_URL_PATTERNS = [
    r"\.(css|js|json|xml|txt|pdf|zip|rar|gz|tar|7z|exe|dmg|iso|mp3|mp4|avi|mov|wmv|flv|swf"
    r"|woff2?|eot|ttf|otf|svg|png|jpe?g|gif|webp|ico|bmp|tiff|webm|wav|ogg|docx?|xlsx?|pptx?)$",
    r"/wp-admin/",
    r"/wp-includes/",
    r"/wp-content/(plugins|themes)/",
    r"/wp-json/",
    r"/(feed|rss|atom)/",
    r"/login/?",
    r"/logout/?",
    r"/signup/?",
    r"/register/?",
    r"/account/",
    r"/cart/?",
    r"/checkout/?",
    r"/privacy/",
    r"/terms/",
    r"/search/",
    r"/tag/",
    r"/category/",
    r"/author/",
    r"/date/",
    r"/page/\d+",
    r"\?page=\d+",
    r"\?p=\d+",
    r"/profile/",
    r"/dashboard/",
    r"/admin/",
    r"/api/",
    r"/cdn-cgi/",
    r"/comments/",
]

CONVENTIONAL_SITEMAP_PATHS = (
    "/sitemap.xml",
    "/sitemap_index.xml",
    "/sitemap.xml.gz",
    "/sitemap/sitemap.xml",
    "/sitemaps/sitemap.xml",
)

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".bmp", ".avif")

IMAGE_QUERY_PARAMS = frozenset(
    {"width", "height", "w", "h", "size", "resize", "fit", "quality", "format", "auto", "name"}
)

TRUSTED_IMAGE_HOSTS = (
    "images.unsplash.com",
    "cdn.shopify.com",
    "res.cloudinary.com",
    "i.imgur.com",
    "images.ctfassets.net",
    "cdn.sanity.io",
    "media.giphy.com",
    "pbs.twimg.com",
    "cloudfront.net",
    "googleusercontent.com",
    "akamaized.net",
    "wp.com",
)

SITEMAP_MAX_ENTRIES = 1000
LINK_CRAWL_MAX_PAGES = 100


def compile_patterns(patterns: List[str]) -> List[Pattern[str]]:
    """Compile skip patterns case-insensitively."""
    return [re.compile(pattern, re.IGNORECASE) for pattern in patterns]


@dataclass
class BrowserConfig:
    """Launch and per-page settings for the headless browser."""

    headless: bool = True
    launch_args: List[str] = field(default_factory=lambda: list(DEFAULT_LAUNCH_ARGS))
    viewport: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_VIEWPORT))
    user_agent: str = DEFAULT_USER_AGENT
    extra_headers: Dict[str, str] = field(default_factory=dict)
    block_resources: bool = False
    navigation_timeout: float = 30.0
    wait_until: str = "networkidle"


@dataclass
class WaitConfig:
    """Timing and thresholds used while waiting for client-rendered content."""

    initial_delay: float = 3.0
    poll_interval: float = 1.0
    max_attempts: int = 5
    settle_delay: float = 2.0
    text_threshold: int = 50
    element_threshold: int = 5
    main_threshold: int = 50
    always_check: bool = False


@dataclass
class SitemapConfig:
    """Limits applied while discovering and expanding sitemaps."""

    max_entries: int = SITEMAP_MAX_ENTRIES
    request_timeout: float = 30.0
    retries: int = 2
    max_depth: int = 3
    discovery_timeout: float = 60.0


@dataclass
class FinderConfig:
    """Settings for link-based frontier discovery."""

    chunk_size: int = 50
    skip_url_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_SKIP_URL_PATTERNS))


@dataclass
class ExtractionConfig:
    """Thresholds used while locating the main content region."""

    min_text_length: int = 50
    min_block_text_length: int = 100
    max_blocks: int = 5
    include_images: bool = True
    include_metadata: bool = True
    max_html_chars: int = 1_000_000


@dataclass
class MarkdownConfig:
    """Options for the HTML to Markdown converter."""

    attachments_dir: str = "attachments"
    wiki_links: bool = True
    bullet: str = "-"


@dataclass
class SiteConfig:
    """Top-level settings that control a whole-site conversion."""

    max_pages: Optional[int] = None
    concurrency_limit: int = 5
    job_timeout: float = 1800.0
    path_filter: Optional[str] = None
    download_images: bool = False
    skip_duplicate_content: bool = False
    content_similarity_threshold: float = 0.8
    cancel_grace_period: float = 5.0
    use_sitemap: bool = True
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    wait: WaitConfig = field(default_factory=WaitConfig)
    sitemap: SitemapConfig = field(default_factory=SitemapConfig)
    finder: FinderConfig = field(default_factory=FinderConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    markdown: MarkdownConfig = field(default_factory=MarkdownConfig)

    def page_limit(self, from_sitemap: bool) -> int:
        """Return the effective page cap for the discovery source used."""
        if self.max_pages is not None:
            return self.max_pages
        return SITEMAP_MAX_ENTRIES if from_sitemap else LINK_CRAWL_MAX_PAGES
