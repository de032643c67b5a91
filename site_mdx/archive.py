"""Index document and archive assembly for a finished site conversion."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Collection, Dict, List, Optional, Sequence

from .models import ArchiveFile, ArchiveStats, PageResult, SiteArchive
from .utils import hostname_of, name_from_url, path_segments, slugify, utc_timestamp

logger = logging.getLogger("site_mdx")

INDEX_FILE = "index.md"
PAGES_DIR = "pages"


def section_of(url: str) -> str:
    segments = path_segments(url)
    return segments[0] if segments else "main"


def assign_page_names(results: Sequence[PageResult]) -> None:
    """Give every successful result a unique file stem, suffixing collisions."""
    used = set()
    for result in sorted(
        (result for result in results if result.success),
        key=lambda result: result.normalized_url or result.url,
    ):
        base = result.name or name_from_url(result.url)
        candidate, counter = base, 1
        while candidate in used:
            counter += 1
            candidate = f"{base}-{counter}"
        used.add(candidate)
        result.name = candidate


def generate_folder_name(
    hostname: str,
    now: Optional[dt.datetime] = None,
    taken: Optional[Collection[str]] = None,
) -> str:
    """Build ``<host>_<YYYY-MM-DD>_<HH-MM-SS>``, suffixed when already taken."""
    now = now or dt.datetime.now(dt.timezone.utc)
    base = f"{slugify(hostname, fallback='site')}_{now:%Y-%m-%d_%H-%M-%S}"
    if not taken or base not in taken:
        return base
    counter = 2
    while f"{base}-{counter}" in taken:
        counter += 1
    return f"{base}-{counter}"


def _page_title(result: PageResult) -> str:
    if result.metadata and result.metadata.title:
        return result.metadata.title.replace("|", "-").replace("]", ")").replace("[", "(")
    return result.name


def build_index(
    seed_url: str,
    results: Sequence[PageResult],
    hostname: str,
    timestamp: Optional[str] = None,
) -> str:
    """Render the archive's index document.

    Results may arrive in any order; successful pages are grouped by their
    first path segment and sorted within each section.
    """
    timestamp = timestamp or utc_timestamp()
    successful = [result for result in results if result.success]
    failed = [result for result in results if not result.success]

    sections: Dict[str, List[PageResult]] = {}
    for result in sorted(successful, key=lambda result: result.url):
        sections.setdefault(section_of(result.url), []).append(result)

    lines = [
        f"# {hostname} Website Archive",
        "",
        "## Site Information",
        f"- **Source URL:** {seed_url}",
        f"- **Archived:** {timestamp}",
        f"- **Total Pages:** {len(results)}",
        f"- **Successful:** {len(successful)}",
        f"- **Failed:** {len(failed)}",
        "",
        "## Successfully Converted Pages",
        "",
    ]
    for section in sorted(sections):
        lines.append(f"### {section[:1].upper()}{section[1:]}")
        lines.append("")
        for result in sections[section]:
            lines.append(
                f"- [[{PAGES_DIR}/{result.name}|{_page_title(result)}]] - [Original]({result.url})"
            )
        lines.append("")

    if failed:
        lines.append("## Failed Conversions")
        lines.append("")
        for result in sorted(failed, key=lambda result: result.url):
            lines.append(f"- {result.url}: {result.error}")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def build_metadata(seed_url: str, hostname: str, page_count: int, timestamp: str) -> Dict[str, Any]:
    return {
        "title": f"{hostname} Archive",
        "description": f"Website archive of {hostname}",
        "date": timestamp,
        "source": seed_url,
        "archived_at": timestamp,
        "page_count": page_count,
        "tags": ["website-archive", hostname.replace(".", "-")],
    }


def build_archive(
    seed_url: str,
    results: Sequence[PageResult],
    now: Optional[dt.datetime] = None,
    taken_folders: Optional[Collection[str]] = None,
) -> SiteArchive:
    """Assemble the index plus one Markdown file per successful page."""
    now = now or dt.datetime.now(dt.timezone.utc)
    timestamp = utc_timestamp(now)
    hostname = hostname_of(seed_url)
    assign_page_names(results)

    index = build_index(seed_url, results, hostname, timestamp)
    files = [ArchiveFile(name=INDEX_FILE, content=index)]
    attachments: List[ArchiveFile] = []
    seen_attachments = set()
    successful = [result for result in results if result.success]
    for result in sorted(successful, key=lambda result: result.name):
        files.append(ArchiveFile(name=f"{PAGES_DIR}/{result.name}.md", content=result.content or ""))
        for asset in result.assets:
            if asset.relative_path in seen_attachments:
                continue
            seen_attachments.add(asset.relative_path)
            attachments.append(ArchiveFile(name=asset.relative_path, content=asset.data, type="binary"))
    files.extend(attachments)

    stats = ArchiveStats(
        total_pages=len(results),
        successful_pages=len(successful),
        failed_pages=len(results) - len(successful),
        total_images=sum(len(result.images) for result in results),
    )
    logger.info(
        "Archive for %s: %d pages, %d succeeded, %d failed",
        hostname,
        stats.total_pages,
        stats.successful_pages,
        stats.failed_pages,
    )
    return SiteArchive(
        url=seed_url,
        name=hostname,
        content=index,
        files=files,
        stats=stats,
        folder_name=generate_folder_name(hostname, now, taken_folders),
        metadata=build_metadata(seed_url, hostname, len(successful), timestamp),
    )
