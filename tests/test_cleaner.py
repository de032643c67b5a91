import asyncio

from site_mdx import cleaner as cleaner_module
from site_mdx.cleaner import (
    CHROME_ATTRIBUTE,
    OVERLAY_ATTRIBUTE,
    PageCleaner,
    is_overlay,
    is_removable_chrome,
    looks_like_spa,
)

from fakes import FakePage

COOKIE_WALL = {
    "index": 0,
    "selector": '[class*="cookie"]',
    "tag": "div",
    "position": "absolute",
    "zIndex": "9999",
    "role": "",
    "ariaModal": "",
    "display": "block",
    "visibility": "visible",
    "opacity": "1",
    "coverage": 1.0,
}

NAV_IN_MAIN = {
    "index": 1,
    "selector": '[class*="banner"]',
    "tag": "nav",
    "position": "relative",
    "zIndex": "auto",
    "role": "",
    "ariaModal": "",
    "display": "block",
    "visibility": "visible",
    "opacity": "1",
    "coverage": 0.1,
}


def test_overlay_selectivity():
    assert is_overlay(COOKIE_WALL)
    assert not is_overlay(NAV_IN_MAIN)


def test_overlay_requires_visibility_and_stacking():
    assert not is_overlay({**COOKIE_WALL, "display": "none"})
    assert not is_overlay({**COOKIE_WALL, "opacity": "0"})
    assert not is_overlay({**COOKIE_WALL, "position": "static"})
    small_low = {**COOKIE_WALL, "zIndex": "1", "coverage": 0.05}
    assert not is_overlay(small_low)
    assert is_overlay({**small_low, "role": "dialog"})
    assert is_overlay({**small_low, "ariaModal": "true"})
    assert is_overlay({**small_low, "position": "fixed", "coverage": 0.6})


def test_chrome_inside_content_is_kept():
    assert not is_removable_chrome({"tag": "nav", "selector": "nav", "insideContent": True})
    assert is_removable_chrome({"tag": "footer", "selector": "footer", "insideContent": False})
    assert is_removable_chrome({"tag": "nav", "selector": "nav", "insideContent": False})
    assert not is_removable_chrome(
        {"tag": "nav", "selector": "nav", "insideContent": False}, preserve_navigation=True
    )
    assert is_removable_chrome(
        {"tag": "aside", "selector": "aside", "insideContent": False}, preserve_navigation=True
    )


def test_looks_like_spa():
    assert looks_like_spa({"markers": ["#root"], "scripts": 0, "bodyLength": 50_000})
    assert looks_like_spa({"markers": [], "scripts": 16, "bodyLength": 50_000})
    assert looks_like_spa({"markers": [], "scripts": 6, "bodyLength": 1_000})
    assert not looks_like_spa({"markers": [], "scripts": 6, "bodyLength": 50_000})
    assert not looks_like_spa({"markers": [], "scripts": 2, "bodyLength": 100})


def _scripted_page():
    def evaluate(script, arg):
        if script is cleaner_module._CLICK_JS:
            return 1
        if script is cleaner_module._MARK_OVERLAYS_JS:
            return [COOKIE_WALL, NAV_IN_MAIN]
        if script is cleaner_module._MARK_CHROME_JS:
            return [
                {"index": 0, "selector": "nav", "tag": "nav", "insideContent": True},
                {"index": 1, "selector": "footer", "tag": "footer", "insideContent": False},
                {"index": 2, "selector": "header", "tag": "header", "insideContent": False},
            ]
        if script is cleaner_module._REMOVE_MARKED_JS:
            return len(arg[1])
        if script is cleaner_module._UNLOCK_SCROLL_JS:
            return 0
        if script is cleaner_module._STRIP_ASSETS_JS:
            return {"scripts": 3}
        if script is cleaner_module._SPA_SIGNALS_JS:
            return {"markers": ["#root"], "scripts": 1, "bodyLength": 20}
        raise AssertionError("unexpected script")

    return FakePage(evaluate=evaluate)


def _removal_args(page):
    return [arg for script, arg in page.evaluated if script is cleaner_module._REMOVE_MARKED_JS]


def test_remove_overlays_removes_only_overlays():
    page = _scripted_page()
    removed = asyncio.run(PageCleaner().remove_overlays(page))
    assert removed == 1
    assert _removal_args(page) == [[OVERLAY_ATTRIBUTE, [0]]]


def test_cleanup_keeps_content_navigation():
    page = _scripted_page()
    assert asyncio.run(PageCleaner().cleanup_page(page)) == 2
    assert _removal_args(page) == [[CHROME_ATTRIBUTE, [1, 2]]]

    page = _scripted_page()
    assert asyncio.run(PageCleaner().cleanup_page(page, preserve_navigation=True)) == 1
    assert _removal_args(page) == [[CHROME_ATTRIBUTE, [1]]]


def test_detect_spa_and_script_failures_are_contained():
    assert asyncio.run(PageCleaner().detect_spa(_scripted_page())) is True

    def broken(script, arg):
        raise RuntimeError("execution context was destroyed")

    page = FakePage(evaluate=broken)
    cleaner = PageCleaner()
    assert asyncio.run(cleaner.detect_spa(page)) is False
    assert asyncio.run(cleaner.remove_overlays(page)) == 0
    assert asyncio.run(cleaner.cleanup_page(page)) == 0
