"""HTML to Markdown conversion rules and page document composition."""

from __future__ import annotations

import json
import logging
import re
from typing import List, Optional
from urllib.parse import urljoin, urlsplit

import tldextract
from bs4 import BeautifulSoup
from markdownify import ATX, BACKSLASH, MarkdownConverter

from .config import MarkdownConfig
from .models import ImageAsset, PageMetadata
from .utils import name_from_url

logger = logging.getLogger("site_mdx")

# Offline lookups against the suffix list bundled with tldextract.
_DOMAIN_EXTRACT = tldextract.TLDExtract(suffix_list_urls=())

_FENCE = re.compile(r"^\s*(```|~~~)")
_LIST_ITEM = re.compile(r"^\s*([-*+]|\d+[.)])\s")
_QUOTE = re.compile(r"^\s*>")
_TABLE_ROW = re.compile(r"^\s*\|")
_H1 = re.compile(r"^#\s+\S")
_YAML_UNSAFE = re.compile(r"""[:#\[\]{}&*!|>'"%@`,]|^[\s\-?]|\s$""")


def registrable_domain(url: str) -> str:
    """Return the registrable domain (``example.co.uk``) of a URL."""
    try:
        host = urlsplit(url).hostname or ""
    except ValueError:
        return ""
    extracted = _DOMAIN_EXTRACT(host)
    return ".".join(part for part in (extracted.domain, extracted.suffix) if part).lower()


def is_external(url: str, base_url: str) -> bool:
    target = registrable_domain(url)
    return bool(target) and target != registrable_domain(base_url)


def _escape_cell(text: str) -> str:
    text = re.sub(r"\s*\n\s*", " ", text.strip())
    return text.replace("|", r"\|")


class SiteMarkdownConverter(MarkdownConverter):
    """markdownify converter with wiki-style internal links and pipe tables."""

    class Options(MarkdownConverter.DefaultOptions):
        base_url = ""
        attachments_dir = "attachments"
        wiki_links = True

    def _resolve(self, href: str) -> str:
        base_url = self.options["base_url"]
        return urljoin(base_url, href) if base_url else href

    def convert_a(self, el, text, *args, **kwargs):
        href = (el.get("href") or "").strip()
        text = (text or "").strip()
        if not href:
            return text
        if href.startswith("#"):
            fragment = href[1:]
            if not fragment:
                return text
            return f"[[{text or fragment}]]"
        if href.lower().startswith("javascript:"):
            return text

        resolved = self._resolve(href)
        label = text or resolved
        if is_external(resolved, self.options["base_url"]):
            return f"[{label}]({resolved})"
        if self.options["wiki_links"] and href.startswith("/") and not href.startswith("//"):
            name = name_from_url(resolved)
            if not text or text == name:
                return f"[[{name}]]"
            return f"[[{name}|{text}]]"
        return f"[{label}]({resolved})"

    def convert_img(self, el, text, *args, **kwargs):
        src = (el.get("src") or "").strip()
        alt = (el.get("alt") or "").strip()
        if not src:
            return ""
        attachments = self.options["attachments_dir"].rstrip("/") + "/"
        if src.startswith(attachments):
            return f"![[{src}]]"
        alt = alt.replace("[", r"\[").replace("]", r"\]")
        return f"![{alt}]({self._resolve(src)})"

    def convert_table(self, el, text, *args, **kwargs):
        rows: List[List[str]] = []
        for row in el.find_all("tr"):
            if row.find_parent("table") is not el:
                continue
            cells = row.find_all(["th", "td"], recursive=False)
            if cells:
                rows.append([_escape_cell(self.convert(cell.decode_contents())) for cell in cells])
        if not rows:
            return ""
        width = max(len(row) for row in rows)
        rows = [row + [""] * (width - len(row)) for row in rows]
        lines = ["| " + " | ".join(rows[0]) + " |", "|" + "|".join([" --- "] * width) + "|"]
        lines.extend("| " + " | ".join(row) + " |" for row in rows[1:])
        return "\n\n" + "\n".join(lines) + "\n\n"


def _line_kind(line: str) -> Optional[str]:
    if _LIST_ITEM.match(line):
        return "list"
    if _QUOTE.match(line):
        return "quote"
    if _TABLE_ROW.match(line):
        return "table"
    return None


def clean_markdown(markdown: str) -> str:
    """Normalize blank-line runs and keep adjacent list items together.

    Fenced code blocks are left untouched.
    """
    lines: List[str] = []
    in_fence = False
    for raw in markdown.splitlines():
        if _FENCE.match(raw):
            in_fence = not in_fence
            lines.append(raw.rstrip())
            continue
        if in_fence:
            lines.append(raw)
            continue
        line = raw.rstrip()
        if not line and lines and not lines[-1]:
            continue
        lines.append(line)

    result: List[str] = []
    in_fence = False
    for index, line in enumerate(lines):
        if _FENCE.match(line):
            in_fence = not in_fence
        if not in_fence and not line and result and 0 < index < len(lines) - 1:
            before, after = _line_kind(result[-1]), _line_kind(lines[index + 1])
            if before and before == after:
                continue
        result.append(line)
    return "\n".join(result).strip() + "\n"


def to_markdown(html: str, base_url: str = "", config: Optional[MarkdownConfig] = None) -> str:
    """Convert an extracted HTML fragment to Markdown."""
    config = config or MarkdownConfig()
    soup = BeautifulSoup(html, "html.parser")
    base_tag = soup.find("base", href=True)
    if base_tag is not None:
        base_url = urljoin(base_url, base_tag["href"])
        base_tag.decompose()
    converter = SiteMarkdownConverter(
        base_url=base_url,
        attachments_dir=config.attachments_dir,
        wiki_links=config.wiki_links,
        heading_style=ATX,
        bullets=config.bullet,
        newline_style=BACKSLASH,
        escape_underscores=False,
        escape_misc=False,
    )
    return clean_markdown(converter.convert_soup(soup))


def _yaml_value(value: str) -> str:
    value = " ".join(value.split())
    if _YAML_UNSAFE.search(value):
        return json.dumps(value, ensure_ascii=False)
    return value


def has_h1(markdown: str) -> bool:
    in_fence = False
    for line in markdown.splitlines():
        if _FENCE.match(line):
            in_fence = not in_fence
        elif not in_fence and _H1.match(line):
            return True
    return False


def compose_markdown(
    metadata: PageMetadata,
    body: str,
    assets: Optional[List[ImageAsset]] = None,
) -> str:
    """Generate the final page document including YAML front matter."""
    front_matter_lines = ["---"]
    for key, value in metadata.as_dict().items():
        front_matter_lines.append(f"{key}: {_yaml_value(value)}")
    if assets:
        files = ", ".join(json.dumps(asset.relative_path) for asset in assets)
        front_matter_lines.append(f"images: [{files}]")
    front_matter_lines.append("---\n")

    body = body.strip()
    if not has_h1(body):
        body = f"# {metadata.title}\n\n{body}".strip()
    return "\n".join(front_matter_lines) + body + "\n"


def fallback_markdown(metadata: PageMetadata, error: str) -> str:
    """Minimal document kept when Markdown conversion fails for a page."""
    body = (
        f"# {metadata.title}\n\n"
        f"Source: {metadata.source_url}\n\n"
        f"> Markdown conversion failed: {error}\n"
    )
    return compose_markdown(metadata, body)
