import asyncio

import pytest

from site_mdx.browser import BrowserPool, PageOptions, describe_navigation_error, navigate
from site_mdx.config import BrowserConfig
from site_mdx.errors import BrowserLaunchError, NavigationError

from fakes import FakeBrowser, FakeChromium, FakePage, FakePlaywright


def _counting_launcher(browsers):
    async def launcher(config):
        await asyncio.sleep(0.01)
        browser = FakeBrowser()
        browsers.append(browser)
        return browser

    return launcher


def test_concurrent_acquires_share_one_launch():
    browsers = []
    pool = BrowserPool(launcher=_counting_launcher(browsers))

    async def scenario():
        pages = await asyncio.gather(*(pool.acquire_page() for _ in range(5)))
        assert pool.in_flight == 5
        for page in pages:
            await pool.release(page)
        return pages

    pages = asyncio.run(scenario())
    assert pool.launch_count == 1
    assert len(browsers) == 1
    assert all(page.closed for page in pages)
    assert pool.in_flight == 0


def test_disconnect_triggers_relaunch():
    browsers = []
    pool = BrowserPool(launcher=_counting_launcher(browsers))

    async def scenario():
        first = await pool.get_browser()
        first.disconnect()
        second = await pool.get_browser()
        return first, second

    first, second = asyncio.run(scenario())
    assert first is not second
    assert pool.launch_count == 2


def test_launch_failure_raises_and_can_retry():
    attempts = []

    async def launcher(config):
        attempts.append(config)
        if len(attempts) == 1:
            raise RuntimeError("no chromium")
        return FakeBrowser()

    pool = BrowserPool(launcher=launcher)

    async def scenario():
        with pytest.raises(BrowserLaunchError):
            await pool.get_browser()
        return await pool.get_browser()

    assert isinstance(asyncio.run(scenario()), FakeBrowser)
    assert len(attempts) == 2


def test_external_browser_is_never_closed():
    browser = FakeBrowser()
    pool = BrowserPool(browser=browser)

    async def scenario():
        async with pool.page() as page:
            assert page in browser.pages
        await pool.shutdown()

    asyncio.run(scenario())
    assert not browser.closed
    assert browser.pages[0].closed


def test_shutdown_closes_launched_browser():
    browsers = []
    pool = BrowserPool(launcher=_counting_launcher(browsers))

    async def scenario():
        await pool.get_browser()
        await pool.shutdown()

    asyncio.run(scenario())
    assert browsers[0].closed
    assert not pool.is_alive


def test_failed_chromium_launch_stops_its_driver():
    chromium = FakeChromium(failures=1)
    drivers = []

    async def start_driver():
        driver = FakePlaywright(chromium)
        drivers.append(driver)
        return driver

    pool = BrowserPool(start_driver=start_driver)

    async def scenario():
        with pytest.raises(BrowserLaunchError):
            await pool.get_browser()
        browser = await pool.get_browser()
        browser.disconnect()
        await pool.get_browser()
        await pool.shutdown()

    asyncio.run(scenario())
    assert len(drivers) == 2
    assert drivers[0].stopped
    assert len(chromium.launched) == 2
    assert all(browser.closed for browser in chromium.launched[1:])
    assert drivers[1].stopped



def test_page_released_when_body_raises():
    browser = FakeBrowser()
    pool = BrowserPool(browser=browser)

    async def scenario():
        with pytest.raises(ValueError):
            async with pool.page():
                raise ValueError("boom")

    asyncio.run(scenario())
    assert browser.pages[0].closed
    assert pool.in_flight == 0


def test_page_options_apply_timeout_and_blocking():
    browser = FakeBrowser()
    pool = BrowserPool(BrowserConfig(navigation_timeout=10), browser=browser)

    async def scenario():
        return await pool.acquire_page(PageOptions(block_resources=True, navigation_timeout=2))

    page = asyncio.run(scenario())
    assert page.navigation_timeout == 2000
    assert page.routes and page.routes[0][0] == "**/*"


def test_navigate_maps_errors():
    async def run(page):
        return await navigate(page, "https://example.com/x", BrowserConfig())

    assert asyncio.run(run(FakePage())) == "https://example.com/x"

    with pytest.raises(NavigationError, match="HTTP 404"):
        asyncio.run(run(FakePage(status=404)))

    with pytest.raises(NavigationError, match="could not be found"):
        asyncio.run(run(FakePage(goto_error=RuntimeError("net::ERR_NAME_NOT_RESOLVED at x"))))


def test_describe_navigation_error_messages():
    assert "too long" in describe_navigation_error(asyncio.TimeoutError())
    assert "refused" in describe_navigation_error(RuntimeError("net::ERR_CONNECTION_REFUSED"))
    assert describe_navigation_error(RuntimeError("weird")) == "Navigation failed: weird"
