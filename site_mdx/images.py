"""Image downloading, validation, and attachment relinking."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup
from filetype import guess

from .config import DEFAULT_HEADERS
from .models import ImageAsset, PageImage
from .utils import slugify

logger = logging.getLogger("site_mdx")

MAX_IMAGE_BYTES = 10 * 1024 * 1024
MIN_IMAGE_BYTES = 512
ALLOWED_IMAGE_TYPES = {"png", "jpg", "jpeg", "gif", "webp", "bmp", "tiff", "avif", "svg"}
IMAGE_REQUEST_TIMEOUT = 15


def detect_image_format(data: bytes) -> Optional[str]:
    """Detect image type using filetype; returns lowercase extension."""
    kind = guess(data)
    if kind and kind.mime.startswith("image/"):
        ext = kind.extension.lower()
        return "jpg" if ext == "jpeg" else ext
    return None


def infer_image_extension(content_type: Optional[str], data: bytes) -> Optional[str]:
    """Guess an image file extension from the file signature or Content-Type."""
    detected = detect_image_format(data)
    if detected:
        return detected
    if not content_type:
        return None
    mime = content_type.split(";")[0].strip().lower()
    if mime == "image/svg+xml":
        return "svg" if data.lstrip()[:5] in (b"<?xml", b"<svg ", b"<svg>") else None
    parts = mime.split("/")
    if len(parts) == 2 and parts[0] == "image":
        ext = parts[1]
        return "jpg" if ext == "jpeg" else ext
    return None


def download_images(
    images: List[PageImage],
    page_name: str,
    attachments_dir: str = "attachments",
    session: Optional[requests.Session] = None,
) -> List[ImageAsset]:
    """Fetch page images and keep the ones that validate as real images."""
    if not images:
        return []
    if session is None:
        with requests.Session() as owned:
            return download_images(images, page_name, attachments_dir, owned)
    downloaded: Dict[str, ImageAsset] = {}
    assets: List[ImageAsset] = []

    for index, image in enumerate(images, start=1):
        if image.src in downloaded:
            continue
        try:
            resp = session.get(image.src, timeout=IMAGE_REQUEST_TIMEOUT, headers=DEFAULT_HEADERS)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Failed to fetch image %s: %s", image.src, exc)
            continue

        content_type = resp.headers.get("Content-Type", "")
        data = resp.content
        if len(data) < MIN_IMAGE_BYTES:
            logger.warning("Skipping %s: response too small", image.src)
            continue
        if len(data) > MAX_IMAGE_BYTES:
            logger.warning("Skipping %s: image larger than %s bytes", image.src, MAX_IMAGE_BYTES)
            continue

        extension = infer_image_extension(content_type, data)
        if not extension or extension not in ALLOWED_IMAGE_TYPES:
            logger.warning(
                "Skipping %s: unsupported image type (Content-Type=%s)",
                image.src,
                content_type,
            )
            continue

        alt_slug = slugify(image.alt or "image", fallback="image")
        filename = f"{page_name}-{index:02d}-{alt_slug}"[:80] + f".{extension}"
        asset = ImageAsset(
            src=image.src,
            alt=image.alt,
            filename=filename,
            relative_path=f"{attachments_dir}/{filename}",
            data=data,
        )
        downloaded[image.src] = asset
        assets.append(asset)
    logger.debug("Downloaded %d of %d images for %s", len(assets), len(images), page_name)
    return assets


def relink_images(html: str, assets: List[ImageAsset], base_url: str) -> str:
    """Point ``<img>`` tags at downloaded attachments instead of remote URLs."""
    if not assets:
        return html
    by_src = {asset.src: asset for asset in assets}
    soup = BeautifulSoup(html, "html.parser")
    for img in soup.find_all("img"):
        src = (img.get("src") or "").strip()
        asset = by_src.get(urljoin(base_url, src)) if src else None
        if asset is not None:
            img["src"] = asset.relative_path
    return soup.decode()
