"""Polling for client-rendered content to settle before extraction."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional

from playwright.async_api import Page

from .cancellation import CancellationToken, cancellable_sleep
from .cleaner import PageCleaner
from .config import WaitConfig

logger = logging.getLogger("site_mdx")

MAIN_CONTAINER_SELECTOR = 'main, article, [role="main"], #root, #app'

_SNAPSHOT_JS = """
(mainSelector) => {
  const body = document.body;
  const main = document.querySelector(mainSelector);
  const textOf = el => el ? (el.innerText || el.textContent || '') : '';
  return {
    textLength: textOf(body).length,
    elementCount: document.getElementsByTagName('*').length,
    mainTextLength: textOf(main).length,
  };
}
"""

Sleeper = Callable[[float, Optional[CancellationToken]], Awaitable[None]]


@dataclass(frozen=True)
class ContentSnapshot:
    """Size measurements of a rendered page at one instant."""

    text_length: int = 0
    element_count: int = 0
    main_text_length: int = 0

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "ContentSnapshot":
        data = data or {}
        return cls(
            text_length=int(data.get("textLength") or 0),
            element_count=int(data.get("elementCount") or 0),
            main_text_length=int(data.get("mainTextLength") or 0),
        )

    def differs(self, other: "ContentSnapshot", config: WaitConfig) -> bool:
        """Return True when any measurement moved by at least its threshold."""
        return (
            abs(self.text_length - other.text_length) >= config.text_threshold
            or abs(self.element_count - other.element_count) >= config.element_threshold
            or abs(self.main_text_length - other.main_text_length) >= config.main_threshold
        )

    def is_stable(self, other: "ContentSnapshot", config: WaitConfig) -> bool:
        return not self.differs(other, config)


class DynamicContentWaiter:
    """Give client-rendered pages a bounded amount of time to finish rendering."""

    def __init__(
        self,
        config: Optional[WaitConfig] = None,
        cleaner: Optional[PageCleaner] = None,
        sleep: Optional[Sleeper] = None,
    ) -> None:
        self.config = config or WaitConfig()
        self.cleaner = cleaner or PageCleaner()
        self._sleep = sleep or cancellable_sleep

    async def snapshot(self, page: Page) -> ContentSnapshot:
        try:
            data = await page.evaluate(_SNAPSHOT_JS, MAIN_CONTAINER_SELECTOR)
        except Exception as exc:  # pylint: disable=broad-except
            logger.debug("Snapshot failed on %s: %s", page.url, exc)
            return ContentSnapshot()
        return ContentSnapshot.from_mapping(data)

    async def wait_for_stable(
        self,
        page: Page,
        cancel_token: Optional[CancellationToken] = None,
    ) -> bool:
        """Wait until the page stops changing; return True if it is dynamic.

        Pages that are not detected as single-page applications return
        immediately unless ``always_check`` is configured.
        """
        config = self.config
        spa = await self.cleaner.detect_spa(page)
        if not spa and not config.always_check:
            return False

        initial = await self.snapshot(page)
        logger.debug("Waiting for dynamic content on %s (initial %s)", page.url, initial)
        await self._sleep(config.initial_delay, cancel_token)

        previous = await self.snapshot(page)
        current = previous
        for attempt in range(1, config.max_attempts + 1):
            await self._sleep(config.poll_interval, cancel_token)
            current = await self.snapshot(page)
            if current.is_stable(previous, config):
                logger.debug("Content stable on %s after %d polls", page.url, attempt)
                break
            previous = current
        else:
            logger.debug("Content on %s still changing after %d polls", page.url, config.max_attempts)

        changed = current.differs(initial, config)
        if changed:
            logger.info("Dynamic content detected on %s; settling", page.url)
            await self._sleep(config.settle_delay, cancel_token)
        return spa or changed
