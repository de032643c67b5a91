"""Exception types raised by the conversion pipeline."""

from __future__ import annotations


class SiteMdxError(Exception):
    """Base class for all site-mdx errors."""


class InvalidUrlError(SiteMdxError, ValueError):
    """The seed URL could not be parsed into an http(s) address."""


class BrowserLaunchError(SiteMdxError):
    """The headless browser could not be started; no page can be rendered."""


class NavigationError(SiteMdxError):
    """A page failed to load."""


class ExtractionError(SiteMdxError):
    """Every content extraction strategy failed for a page."""


class ConversionCancelled(SiteMdxError):
    """The conversion was aborted through its cancellation token."""
