"""Single-page pipeline: render, clean, extract, and convert to Markdown."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

import requests

from .browser import BrowserPool, navigate
from .cancellation import CancellationToken
from .cleaner import PageCleaner
from .config import SiteConfig
from .errors import BrowserLaunchError, ConversionCancelled, ExtractionError, NavigationError
from .extractor import ContentExtractor
from .images import download_images, relink_images
from .markdown import compose_markdown, fallback_markdown, to_markdown
from .models import ExtractedContent, ImageAsset, PageResult
from .utils import ensure_url, name_from_url, normalize_url
from .waiter import DynamicContentWaiter

logger = logging.getLogger("site_mdx")


class PageConverter:
    """Convert one URL at a time using a page borrowed from a browser pool.

    Per-page failures are returned as failed results; only browser launch
    failures and cancellation propagate.
    """

    def __init__(
        self,
        pool: BrowserPool,
        config: Optional[SiteConfig] = None,
        cleaner: Optional[PageCleaner] = None,
        waiter: Optional[DynamicContentWaiter] = None,
        extractor: Optional[ContentExtractor] = None,
        image_session: Optional[requests.Session] = None,
    ) -> None:
        self.pool = pool
        self.config = config or SiteConfig()
        self.cleaner = cleaner or PageCleaner()
        self.waiter = waiter or DynamicContentWaiter(self.config.wait, self.cleaner)
        self.extractor = extractor or ContentExtractor(self.config.extraction)
        self.image_session = image_session

    async def convert(
        self,
        url: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> PageResult:
        normalized = normalize_url(url)
        try:
            page = await self.pool.acquire_page()
        except BrowserLaunchError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Page creation failed for %s: %s", url, exc)
            return PageResult.failure(url, f"Page creation failed: {exc}", normalized)

        try:
            final_url = await navigate(page, url, self.config.browser)
            await self.waiter.wait_for_stable(page, cancel_token)
            await self.cleaner.remove_overlays(page)
            await self.cleaner.cleanup_page(page)
            extracted = await self.extractor.extract(page, final_url, source_url=url)
        except (BrowserLaunchError, ConversionCancelled):
            raise
        except (NavigationError, ExtractionError) as exc:
            logger.warning("Failed to convert %s: %s", url, exc)
            return PageResult.failure(url, str(exc), normalized)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Unexpected error converting %s", url)
            return PageResult.failure(url, f"Failed to convert URL: {exc}", normalized)
        finally:
            await self.pool.release(page)

        try:
            return await self.render(url, final_url or url, extracted)
        except ConversionCancelled:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Unexpected error rendering %s", url)
            return PageResult.failure(url, f"Failed to convert URL: {exc}", normalized)

    async def fetch_images(self, extracted: ExtractedContent, name: str) -> List[ImageAsset]:
        if not self.config.download_images or not extracted.images:
            return []
        try:
            return await asyncio.to_thread(
                download_images,
                extracted.images,
                name,
                self.config.markdown.attachments_dir,
                self.image_session,
            )
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Image download failed for %s: %s", name, exc)
            return []

    async def render(self, url: str, final_url: str, extracted: ExtractedContent) -> PageResult:
        """Turn extracted content into the page's Markdown document."""
        name = name_from_url(url)
        assets = await self.fetch_images(extracted, name)
        html = relink_images(extracted.html, assets, final_url)
        metadata = extracted.metadata
        try:
            body = to_markdown(html, final_url, self.config.markdown)
            content = compose_markdown(metadata, body, assets)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Markdown conversion failed for %s: %s", url, exc)
            content = fallback_markdown(metadata, str(exc))
        logger.info("Converted %s (%s)", url, extracted.strategy)
        return PageResult(
            url=url,
            success=True,
            content=content,
            metadata=metadata,
            images=extracted.images,
            assets=assets,
            normalized_url=normalize_url(url),
            name=name,
        )


async def convert_page(
    url: str,
    config: Optional[SiteConfig] = None,
    pool: Optional[BrowserPool] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> PageResult:
    """Convert a single URL, launching (and closing) a browser when none is given."""
    url = ensure_url(url)
    config = config or SiteConfig()
    owns_pool = pool is None
    pool = pool or BrowserPool(config.browser)
    try:
        return await PageConverter(pool, config).convert(url, cancel_token)
    finally:
        if owns_pool:
            await pool.shutdown()
