"""Data models used throughout the conversion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass
class PageMetadata:
    """Metadata describing a converted page."""

    source_url: str
    title: str
    captured: str
    description: Optional[str] = None
    author: Optional[str] = None
    date: Optional[str] = None
    site: Optional[str] = None

    def as_dict(self) -> Dict[str, str]:
        data = {
            "title": self.title,
            "source": self.source_url,
            "captured": self.captured,
            "description": self.description,
            "author": self.author,
            "date": self.date,
            "site": self.site,
        }
        return {key: value for key, value in data.items() if value}


@dataclass
class PageImage:
    """Image reference discovered on a rendered page."""

    src: str
    alt: str = ""
    title: str = ""
    width: Optional[int] = None
    height: Optional[int] = None
    original_src: str = ""


@dataclass
class ImageAsset:
    """Downloaded and validated image stored as an archive attachment."""

    src: str
    alt: str
    filename: str
    relative_path: str
    data: bytes = field(repr=False, default=b"")


@dataclass
class FrontierEntry:
    """A candidate URL queued for conversion."""

    normalized_url: str
    url: str
    lastmod: Optional[str] = None
    priority: Optional[float] = None
    changefreq: Optional[str] = None
    score: float = 0.0


@dataclass
class ExtractedContent:
    """Main content HTML plus metadata and images pulled from one page."""

    html: str
    metadata: PageMetadata
    images: List[PageImage]
    strategy: str


@dataclass
class PageResult:
    """Outcome of converting a single URL."""

    url: str
    success: bool
    content: Optional[str] = None
    error: Optional[str] = None
    metadata: Optional[PageMetadata] = None
    images: List[PageImage] = field(default_factory=list)
    assets: List[ImageAsset] = field(default_factory=list)
    normalized_url: str = ""
    name: str = ""

    def __post_init__(self) -> None:
        if self.success and self.content is None:
            raise ValueError("successful PageResult requires content")
        if not self.success and not self.error:
            raise ValueError("failed PageResult requires an error message")
        if self.success:
            self.error = None
        else:
            self.content = None

    @classmethod
    def failure(cls, url: str, error: str, normalized_url: str = "") -> "PageResult":
        return cls(url=url, success=False, error=error, normalized_url=normalized_url)

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"url": self.url, "success": self.success}
        if self.success:
            data["content"] = self.content
        else:
            data["error"] = self.error
        if self.metadata:
            data["metadata"] = self.metadata.as_dict()
        if self.images:
            data["images"] = [image.__dict__.copy() for image in self.images]
        return data


@dataclass
class ArchiveFile:
    """A single file produced by a site conversion."""

    name: str
    content: Union[str, bytes]
    type: str = "text"


@dataclass
class ArchiveStats:
    """Page counters for a finished site conversion."""

    total_pages: int
    successful_pages: int
    failed_pages: int
    total_images: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "totalPages": self.total_pages,
            "successfulPages": self.successful_pages,
            "failedPages": self.failed_pages,
            "totalImages": self.total_images,
        }


@dataclass
class SiteArchive:
    """Final output of a whole-site conversion."""

    url: str
    name: str
    content: str
    files: List[ArchiveFile]
    stats: ArchiveStats
    folder_name: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    success: bool = True

    def as_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "type": "parenturl",
            "name": self.name,
            "content": self.content,
            "metadata": self.metadata,
            "files": [
                {"name": item.name, "content": item.content, "type": item.type}
                for item in self.files
            ],
            "success": self.success,
            "stats": self.stats.as_dict(),
            "folderName": self.folder_name,
        }
