"""In-page DOM cleanup: overlays, chrome, scripts, and SPA detection.

Every browser call collects plain descriptors or mutates the DOM; the
decisions about what counts as an overlay, what is page chrome, and what
looks like a client-rendered app are made by the pure functions below so
they can be tested without a browser.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from playwright.async_api import Page

logger = logging.getLogger("site_mdx")

OVERLAY_ATTRIBUTE = "data-site-mdx-overlay"
CHROME_ATTRIBUTE = "data-site-mdx-chrome"

CLOSE_BUTTON_SELECTORS = [
    'button[aria-label*="close" i]',
    'button[title*="close" i]',
    "button.close",
    "button.dismiss",
    "button.cookie-accept",
    "button.accept-cookies",
    "button.accept-all",
    "button.accept",
    "button.agree",
    "button.got-it",
    "button.understood",
    'button[id*="close" i]',
    'button[class*="close" i]',
    "a.close",
    '[role="button"][aria-label*="close" i]',
]

OVERLAY_SELECTORS = [
    '[id*="cookie"]',
    '[class*="cookie"]',
    '[id*="consent"]',
    '[class*="consent"]',
    '[id*="gdpr"]',
    '[class*="gdpr"]',
    '[id*="popup"]',
    '[class*="popup"]',
    '[role="dialog"]',
    '[aria-modal="true"]',
    '[class*="modal"]',
    '[id*="modal"]',
    '[id*="banner"]',
    '[class*="banner"]',
    '[id*="notification"]',
    '[class*="notification"]',
    '[class*="overlay"]',
    '[id*="overlay"]',
    '[class*="lightbox"]',
    '[id*="lightbox"]',
    '[id*="newsletter"]',
    '[class*="newsletter"]',
    '[class*="paywall"]',
    '[id*="chat-widget"]',
    ".intercom-lightweight-app",
    ".drift-frame-controller",
]

BACKDROP_SELECTORS = [".modal-backdrop", ".overlay-backdrop", ".dialog-backdrop"]

SCROLL_LOCK_CLASSES = [
    "modal-open",
    "no-scroll",
    "noscroll",
    "overflow-hidden",
    "scroll-lock",
    "is-locked",
    "has-modal",
    "disable-scroll",
]

NON_CONTENT_SELECTORS = [
    "nav",
    "header",
    "footer",
    "aside",
    ".sidebar",
    ".widget",
    ".widgets",
    ".comments",
    "#comments",
    ".comment-section",
    ".share",
    ".social",
    ".social-share",
    ".ad",
    ".ads",
    ".advertisement",
    ".banner",
    ".popup",
    ".modal",
    ".overlay",
    ".cookie-notice",
    '[id*="chat-widget"]',
    ".intercom-lightweight-app",
    ".drift-frame-controller",
    "iframe",
]

NAVIGATION_SELECTORS = frozenset({"nav", "header"})

CONTENT_CONTAINER_SELECTOR = (
    'main, article, [role="main"], [class*="content"], [id*="content"]'
)

SPA_MARKER_SELECTORS = [
    "#root",
    "#app",
    "#__next",
    "#__nuxt",
    "[data-reactroot]",
    "[data-react-app]",
    "[ng-app]",
    "[ng-version]",
    "[ng-controller]",
    "[data-v-app]",
    "[data-server-rendered]",
    "[data-svelte]",
]

SPA_SCRIPT_LIMIT = 15
SPA_SMALL_BODY_CHARS = 20_000
SPA_SMALL_BODY_SCRIPT_LIMIT = 5
OVERLAY_MIN_Z_INDEX = 10
OVERLAY_MIN_COVERAGE = 0.5
DIALOG_ROLES = frozenset({"dialog", "alertdialog"})

_CLICK_JS = """
(selectors) => {
  let clicked = 0;
  selectors.forEach(selector => {
    let nodes = [];
    try { nodes = document.querySelectorAll(selector); } catch (e) { return; }
    nodes.forEach(button => {
      try { button.click(); clicked++; } catch (e) {}
    });
  });
  return clicked;
}
"""

_MARK_OVERLAYS_JS = """
([selectors, attribute]) => {
  const seen = new Set();
  const found = [];
  const vw = window.innerWidth || 1;
  const vh = window.innerHeight || 1;
  selectors.forEach(selector => {
    let nodes = [];
    try { nodes = document.querySelectorAll(selector); } catch (e) { return; }
    nodes.forEach(el => {
      if (seen.has(el) || el === document.body || el === document.documentElement) return;
      seen.add(el);
      const style = window.getComputedStyle(el);
      const rect = el.getBoundingClientRect();
      const width = Math.max(0, Math.min(rect.right, vw) - Math.max(rect.left, 0));
      const height = Math.max(0, Math.min(rect.bottom, vh) - Math.max(rect.top, 0));
      const index = found.length;
      el.setAttribute(attribute, String(index));
      found.push({
        index,
        selector,
        tag: el.tagName.toLowerCase(),
        position: style.position,
        zIndex: style.zIndex,
        role: el.getAttribute('role') || '',
        ariaModal: el.getAttribute('aria-modal') || '',
        display: style.display,
        visibility: style.visibility,
        opacity: style.opacity,
        coverage: (width * height) / (vw * vh),
      });
    });
  });
  return found;
}
"""

_MARK_CHROME_JS = """
([selectors, attribute, contentSelector]) => {
  const seen = new Set();
  const found = [];
  selectors.forEach(selector => {
    let nodes = [];
    try { nodes = document.querySelectorAll(selector); } catch (e) { return; }
    nodes.forEach(el => {
      if (seen.has(el)) return;
      seen.add(el);
      const parent = el.parentElement;
      const index = found.length;
      el.setAttribute(attribute, String(index));
      found.push({
        index,
        selector,
        tag: el.tagName.toLowerCase(),
        insideContent: !!(parent && parent.closest(contentSelector)),
      });
    });
  });
  return found;
}
"""

_REMOVE_MARKED_JS = """
([attribute, indices]) => {
  const wanted = new Set(indices.map(String));
  let removed = 0;
  document.querySelectorAll('[' + attribute + ']').forEach(el => {
    if (wanted.has(el.getAttribute(attribute))) {
      el.remove();
      removed++;
    } else {
      el.removeAttribute(attribute);
    }
  });
  return removed;
}
"""

_UNLOCK_SCROLL_JS = """
([lockClasses, backdropSelectors]) => {
  [document.body, document.documentElement].forEach(el => {
    if (!el) return;
    lockClasses.forEach(name => el.classList.remove(name));
    el.style.overflow = '';
    el.style.position = '';
    el.style.height = '';
    el.style.width = '';
  });
  let removed = 0;
  backdropSelectors.forEach(selector => {
    document.querySelectorAll(selector).forEach(el => { el.remove(); removed++; });
  });
  return removed;
}
"""

_STRIP_ASSETS_JS = """
() => {
  const counts = {scripts: 0, styles: 0, stylesheets: 0, inlineStyles: 0, handlers: 0};
  document.querySelectorAll('script').forEach(el => { el.remove(); counts.scripts++; });
  document.querySelectorAll('style').forEach(el => { el.remove(); counts.styles++; });
  document.querySelectorAll('link[rel="stylesheet"]').forEach(el => { el.remove(); counts.stylesheets++; });
  document.querySelectorAll('[style]').forEach(el => { el.removeAttribute('style'); counts.inlineStyles++; });
  document.querySelectorAll('*').forEach(el => {
    Array.from(el.attributes).forEach(attr => {
      const name = attr.name.toLowerCase();
      if (name.startsWith('on') && !name.startsWith('data-') && !name.startsWith('aria-')) {
        el.removeAttribute(attr.name);
        counts.handlers++;
      }
    });
  });
  return counts;
}
"""

_SPA_SIGNALS_JS = """
(markerSelectors) => {
  const markers = markerSelectors.filter(selector => {
    try { return !!document.querySelector(selector); } catch (e) { return false; }
  });
  return {
    markers,
    scripts: document.querySelectorAll('script').length,
    bodyLength: document.body ? document.body.innerHTML.length : 0,
  };
}
"""


def _parse_z_index(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _is_visible(descriptor: Mapping[str, Any]) -> bool:
    if descriptor.get("display") == "none":
        return False
    if descriptor.get("visibility") in ("hidden", "collapse"):
        return False
    try:
        return float(descriptor.get("opacity", 1) or 0) > 0
    except (TypeError, ValueError):
        return True


def is_overlay(descriptor: Mapping[str, Any]) -> bool:
    """Decide whether a matched element is a visible, floating overlay.

    An overlay is fixed or absolutely positioned, is stacked above the page
    (z-index above 10), behaves as a dialog, or covers at least half of the
    viewport, and is currently visible.
    """
    if descriptor.get("position") not in ("fixed", "absolute"):
        return False
    z_index = _parse_z_index(descriptor.get("zIndex"))
    raised = z_index is not None and z_index > OVERLAY_MIN_Z_INDEX
    dialog = (
        str(descriptor.get("role", "")).lower() in DIALOG_ROLES
        or str(descriptor.get("ariaModal", "")).lower() == "true"
    )
    try:
        coverage = float(descriptor.get("coverage") or 0.0)
    except (TypeError, ValueError):
        coverage = 0.0
    large = coverage >= OVERLAY_MIN_COVERAGE
    return (raised or dialog or large) and _is_visible(descriptor)


def is_removable_chrome(descriptor: Mapping[str, Any], preserve_navigation: bool = False) -> bool:
    """Decide whether a non-content element should be dropped.

    Elements nested inside a main-content container are always kept.
    """
    if descriptor.get("insideContent"):
        return False
    if preserve_navigation and (
        descriptor.get("tag") in NAVIGATION_SELECTORS
        or descriptor.get("selector") in NAVIGATION_SELECTORS
    ):
        return False
    return True


def looks_like_spa(signals: Mapping[str, Any]) -> bool:
    """Classify a page as client-rendered from its framework markers and scripts."""
    if signals.get("markers"):
        return True
    scripts = int(signals.get("scripts") or 0)
    if scripts > SPA_SCRIPT_LIMIT:
        return True
    body_length = int(signals.get("bodyLength") or 0)
    return body_length < SPA_SMALL_BODY_CHARS and scripts > SPA_SMALL_BODY_SCRIPT_LIMIT


def select_indices(descriptors: Sequence[Mapping[str, Any]], predicate) -> List[int]:
    return [int(item["index"]) for item in descriptors if predicate(item)]


class PageCleaner:
    """Strip overlays and page chrome from a loaded page."""

    def __init__(
        self,
        close_button_selectors: Optional[List[str]] = None,
        overlay_selectors: Optional[List[str]] = None,
        non_content_selectors: Optional[List[str]] = None,
    ) -> None:
        self.close_button_selectors = close_button_selectors or list(CLOSE_BUTTON_SELECTORS)
        self.overlay_selectors = overlay_selectors or list(OVERLAY_SELECTORS)
        self.non_content_selectors = non_content_selectors or list(NON_CONTENT_SELECTORS)

    async def detect_spa(self, page: Page) -> bool:
        try:
            signals: Dict[str, Any] = await page.evaluate(_SPA_SIGNALS_JS, SPA_MARKER_SELECTORS)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("SPA detection failed on %s: %s", page.url, exc)
            return False
        spa = looks_like_spa(signals or {})
        logger.debug(
            "SPA check for %s: markers=%s scripts=%s -> %s",
            page.url,
            (signals or {}).get("markers"),
            (signals or {}).get("scripts"),
            spa,
        )
        return spa

    async def remove_overlays(self, page: Page) -> int:
        """Click dismiss buttons, drop floating overlays, and restore scrolling."""
        removed = 0
        try:
            clicked = await page.evaluate(_CLICK_JS, self.close_button_selectors)
            logger.debug("Clicked %s close buttons on %s", clicked, page.url)

            descriptors = await page.evaluate(
                _MARK_OVERLAYS_JS, [self.overlay_selectors, OVERLAY_ATTRIBUTE]
            )
            indices = select_indices(descriptors or [], is_overlay)
            removed = int(await page.evaluate(_REMOVE_MARKED_JS, [OVERLAY_ATTRIBUTE, indices]) or 0)
            removed += int(
                await page.evaluate(_UNLOCK_SCROLL_JS, [SCROLL_LOCK_CLASSES, BACKDROP_SELECTORS]) or 0
            )
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Overlay removal failed on %s: %s", page.url, exc)
            return removed
        logger.debug("Removed %d overlay elements from %s", removed, page.url)
        return removed

    async def cleanup_page(self, page: Page, preserve_navigation: bool = False) -> int:
        """Remove scripts, styles, handlers, and non-content containers."""
        try:
            counts = await page.evaluate(_STRIP_ASSETS_JS)
            logger.debug("Stripped assets from %s: %s", page.url, counts)
            descriptors = await page.evaluate(
                _MARK_CHROME_JS,
                [self.non_content_selectors, CHROME_ATTRIBUTE, CONTENT_CONTAINER_SELECTOR],
            )
            indices = select_indices(
                descriptors or [],
                lambda item: is_removable_chrome(item, preserve_navigation),
            )
            removed = await page.evaluate(_REMOVE_MARKED_JS, [CHROME_ATTRIBUTE, indices])
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Page cleanup failed on %s: %s", page.url, exc)
            return 0
        logger.debug("Removed %d non-content elements from %s", removed, page.url)
        return int(removed or 0)
