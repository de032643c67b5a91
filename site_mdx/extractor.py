"""Main-content location, metadata parsing, and image discovery."""

from __future__ import annotations

import html as html_lib
import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import parse_qsl, urljoin, urlsplit

from bs4 import BeautifulSoup, Tag
from bs4.element import Comment
from playwright.async_api import Page
from readability import Document

from .config import (
    IMAGE_EXTENSIONS,
    IMAGE_QUERY_PARAMS,
    TRUSTED_IMAGE_HOSTS,
    ExtractionConfig,
)
from .errors import ExtractionError
from .models import ExtractedContent, PageImage, PageMetadata
from .utils import hostname_of, title_from_url, utc_timestamp

logger = logging.getLogger("site_mdx")

CONTENT_SELECTORS = [
    "#root",
    "#___gatsby",
    "#__next",
    "div[data-reactroot]",
    '[data-testid*="content"]',
    '[data-testid*="main"]',
    'main[role="main"]',
    'div[role="main"]',
    "article",
    "main",
    ".main-content",
    ".article-content",
    ".post-content",
    ".entry-content",
    ".content-main",
    '[class*="MainContent"]',
    '[class*="main-content"]',
    '[class*="content-container"]',
    "#content",
    ".content",
    ".article",
    ".post",
    ".page-content",
    ".markdown-body",
    ".documentation",
    ".blog-post",
    "div.container",
    "div.wrapper",
    "div.page",
]

BLOCK_TAGS = ["div", "section", "article", "main"]
HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]
NOISE_TAGS = ["script", "style", "noscript", "template"]


def _clean_content(root: Tag) -> Tag:
    """Drop tags that never carry readable text."""
    for tag in root.find_all(NOISE_TAGS):
        tag.decompose()
    for comment in root.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()
    return root


def _text_nodes(root: Tag) -> Iterable[str]:
    for text in root.find_all(string=True):
        if isinstance(text, Comment):
            continue
        if text.parent is not None and text.parent.name in NOISE_TAGS:
            continue
        stripped = text.strip()
        if stripped:
            yield stripped


def visible_text(root: Tag) -> str:
    return "\n".join(_text_nodes(root))


def has_meaningful_content(element: Optional[Tag], min_text_length: int = 50) -> bool:
    """True when an element has enough text plus a heading, paragraph, or list."""
    if element is None:
        return False
    if len(visible_text(element)) <= min_text_length:
        return False
    return bool(element.find(HEADING_TAGS) or element.find("p") or element.find(["ul", "ol"]))


def _contains(outer: Tag, inner: Tag) -> bool:
    return any(parent is outer for parent in inner.parents)


def _overlaps(element: Tag, accepted: List[Tag]) -> bool:
    return any(
        element is other or _contains(other, element) or _contains(element, other)
        for other in accepted
    )


def _document_order(soup: BeautifulSoup) -> Dict[int, int]:
    return {id(tag): position for position, tag in enumerate(soup.find_all(True))}


def _wrap(elements: List[Tag], css_class: str) -> str:
    inner = "\n".join(str(element) for element in elements)
    return f'<div class="{css_class}">{inner}</div>'


def find_selector_sections(soup: BeautifulSoup, config: ExtractionConfig) -> Optional[str]:
    """Combine every disjoint, meaningful match of the prioritized selectors."""
    accepted: List[Tag] = []
    for selector in CONTENT_SELECTORS:
        try:
            matches = soup.select(selector)
        except Exception as exc:  # pylint: disable=broad-except
            logger.debug("Selector %s failed: %s", selector, exc)
            continue
        for element in matches:
            if _overlaps(element, accepted):
                continue
            if has_meaningful_content(element, config.min_text_length):
                logger.debug("Content section found with selector %s", selector)
                accepted.append(element)
    if not accepted:
        return None
    order = _document_order(soup)
    accepted.sort(key=lambda element: order.get(id(element), 0))
    return _wrap(accepted, "combined-content")


def find_content_blocks(soup: BeautifulSoup, config: ExtractionConfig) -> Optional[str]:
    """Combine the largest generic blocks that carry real content."""
    candidates: List[Tuple[int, Tag]] = []
    for block in soup.find_all(BLOCK_TAGS):
        text_length = len(visible_text(block))
        if text_length > config.min_block_text_length and has_meaningful_content(
            block, config.min_text_length
        ):
            candidates.append((text_length, block))
    if not candidates:
        return None
    candidates.sort(key=lambda item: item[0], reverse=True)
    chosen: List[Tag] = []
    for _, block in candidates:
        if len(chosen) >= config.max_blocks:
            break
        if not _overlaps(block, chosen):
            chosen.append(block)
    order = _document_order(soup)
    chosen.sort(key=lambda element: order.get(id(element), 0))
    return _wrap(chosen, "content-blocks")


def find_text_nodes(soup: BeautifulSoup, config: ExtractionConfig) -> Optional[str]:
    body = soup.body or soup
    paragraphs = [f"<p>{html_lib.escape(text)}</p>" for text in _text_nodes(body)]
    if not paragraphs:
        return None
    return '<div class="extracted-content">' + "\n".join(paragraphs) + "</div>"


def find_body(soup: BeautifulSoup, config: ExtractionConfig) -> Optional[str]:
    body = soup.body
    return str(body) if body is not None else str(soup)


STRATEGIES: List[Tuple[str, Callable[[BeautifulSoup, ExtractionConfig], Optional[str]]]] = [
    ("selectors", find_selector_sections),
    ("content-blocks", find_content_blocks),
    ("text-extraction", find_text_nodes),
    ("body-fallback", find_body),
]


def find_main_content(soup: BeautifulSoup, config: ExtractionConfig) -> Tuple[str, str]:
    """Return ``(html, strategy)`` from the first tier that yields content."""
    errors: List[str] = []
    for name, strategy in STRATEGIES:
        try:
            content = strategy(soup, config)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Extraction strategy %s failed: %s", name, exc)
            errors.append(f"{name}: {exc}")
            continue
        if content:
            return content, name
    raise ExtractionError("All extraction strategies failed: " + "; ".join(errors or ["no content"]))


def _meta_content(soup: BeautifulSoup, *queries: Tuple[str, str]) -> Optional[str]:
    for attribute, value in queries:
        tag = soup.find("meta", attrs={attribute: value})
        if tag and tag.get("content") and tag["content"].strip():
            return tag["content"].strip()
    return None


def _document_title(html: str) -> Optional[str]:
    try:
        title = Document(html).short_title()
    except Exception as exc:  # pylint: disable=broad-except
        logger.debug("Readability title lookup failed: %s", exc)
        return None
    title = (title or "").strip()
    return title or None


def extract_metadata(soup: BeautifulSoup, html: str, url: str) -> PageMetadata:
    """Read Open Graph, Twitter Card, and standard meta tags."""
    title = _meta_content(soup, ("property", "og:title"), ("name", "twitter:title"))
    if not title and soup.title and soup.title.string:
        title = _document_title(html)
    if not title:
        heading = soup.find("h1")
        if heading:
            title = heading.get_text(" ", strip=True) or None
    description = _meta_content(
        soup,
        ("property", "og:description"),
        ("name", "description"),
        ("name", "twitter:description"),
    )
    author = _meta_content(soup, ("name", "author"), ("property", "article:author"))
    date = _meta_content(
        soup,
        ("property", "article:published_time"),
        ("name", "publication_date"),
        ("name", "date"),
    )
    site = _meta_content(soup, ("property", "og:site_name")) or hostname_of(url) or None
    return PageMetadata(
        source_url=url,
        title=title or title_from_url(url),
        captured=utc_timestamp(),
        description=description,
        author=author,
        date=date,
        site=site,
    )


def is_image_url(url: str) -> bool:
    """Accept known extensions, trusted image CDNs, or image-serving query params."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    if parts.path.lower().endswith(IMAGE_EXTENSIONS):
        return True
    host = (parts.hostname or "").lower()
    if any(host == trusted or host.endswith("." + trusted) for trusted in TRUSTED_IMAGE_HOSTS):
        return True
    return any(key.lower() in IMAGE_QUERY_PARAMS for key, _ in parse_qsl(parts.query))


def _dimension(value: Optional[str]) -> Optional[int]:
    if value and str(value).strip().isdigit():
        return int(str(value).strip())
    return None


def extract_images(root: Tag, base_url: str) -> List[PageImage]:
    """Collect image references from a content fragment, resolving lazy sources."""
    images: List[PageImage] = []
    seen = set()
    for img in root.find_all("img"):
        raw = img.get("src") or img.get("data-src") or img.get("data-lazy-src") or ""
        raw = raw.strip()
        if not raw or raw.startswith("data:"):
            continue
        if not img.get("src"):
            img["src"] = raw
        absolute = urljoin(base_url, raw)
        if absolute in seen or not is_image_url(absolute):
            continue
        seen.add(absolute)
        images.append(
            PageImage(
                src=absolute,
                alt=(img.get("alt") or "").strip(),
                title=(img.get("title") or "").strip(),
                width=_dimension(img.get("width")),
                height=_dimension(img.get("height")),
                original_src=raw,
            )
        )
    return images


def extract_from_html(
    html: str,
    base_url: str,
    config: Optional[ExtractionConfig] = None,
    source_url: Optional[str] = None,
) -> ExtractedContent:
    """Locate the main content of a rendered document."""
    config = config or ExtractionConfig()
    soup = BeautifulSoup(html, "html.parser")
    source = source_url or base_url

    if config.include_metadata:
        metadata = extract_metadata(soup, html, source)
    else:
        metadata = PageMetadata(source_url=source, title=title_from_url(source), captured=utc_timestamp())

    base_tag = soup.find("base", href=True)
    base_tag_html = str(base_tag) if base_tag is not None else ""
    _clean_content(soup)
    content_html, strategy = find_main_content(soup, config)
    logger.debug("Main content for %s found with %s", source, strategy)

    fragment = BeautifulSoup(content_html, "html.parser")
    images = extract_images(fragment, base_url) if config.include_images else []
    content_html = base_tag_html + fragment.decode()
    if len(content_html) > config.max_html_chars:
        content_html = content_html[: config.max_html_chars] + "\n<!-- truncated -->"

    return ExtractedContent(html=content_html, metadata=metadata, images=images, strategy=strategy)


class ContentExtractor:
    """Pull the rendered DOM from a page and hand it to the host-side extractor."""

    def __init__(self, config: Optional[ExtractionConfig] = None) -> None:
        self.config = config or ExtractionConfig()

    async def extract(self, page: Page, base_url: Optional[str] = None, source_url: Optional[str] = None) -> ExtractedContent:
        try:
            html = await page.content()
        except Exception as exc:  # pylint: disable=broad-except
            raise ExtractionError(f"Could not read page content: {exc}") from exc
        return extract_from_html(html, base_url or page.url, self.config, source_url=source_url)
