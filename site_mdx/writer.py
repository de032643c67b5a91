"""Persist archives and single pages to disk."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Union

from .models import ArchiveFile, PageResult, SiteArchive

logger = logging.getLogger("site_mdx")


def _safe_target(root: Path, name: str) -> Path:
    target = (root / name).resolve()
    if root.resolve() not in target.parents:
        raise ValueError(f"Refusing to write outside of {root}: {name}")
    return target


def write_files(root: Path, files: Iterable[ArchiveFile]) -> List[Path]:
    """Write each archive entry below ``root``; text as UTF-8, binaries as bytes."""
    written: List[Path] = []
    for item in files:
        target = _safe_target(root, item.name)
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(item.content, bytes):
            target.write_bytes(item.content)
        else:
            target.write_text(item.content, encoding="utf-8")
        written.append(target)
    return written


def write_archive(archive: SiteArchive, output_root: Union[str, Path]) -> Path:
    """Write ``archive`` into a fresh folder below ``output_root``."""
    output_root = Path(output_root).expanduser()
    output_root.mkdir(parents=True, exist_ok=True)
    folder_name = archive.folder_name
    if (output_root / folder_name).exists():
        taken = {path.name for path in output_root.iterdir()}
        stem = folder_name
        counter = 2
        while f"{stem}-{counter}" in taken:
            counter += 1
        folder_name = f"{stem}-{counter}"
    destination = output_root / folder_name
    destination.mkdir(parents=True)
    written = write_files(destination, archive.files)
    logger.info("Saved %d files to %s", len(written), destination)
    return destination


def write_page(result: PageResult, output_root: Union[str, Path]) -> Path:
    """Write a single converted page (and its attachments) below ``output_root``."""
    if not result.success:
        raise ValueError(f"Cannot write failed conversion of {result.url}: {result.error}")
    output_root = Path(output_root).expanduser()
    output_root.mkdir(parents=True, exist_ok=True)
    files = [ArchiveFile(name=f"{result.name}.md", content=result.content or "")]
    files.extend(
        ArchiveFile(name=asset.relative_path, content=asset.data, type="binary")
        for asset in result.assets
    )
    paths = write_files(output_root, files)
    logger.info("Saved Markdown to %s", paths[0])
    return paths[0]
