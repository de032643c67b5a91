import asyncio
import time

import pytest

from site_mdx import crawler as crawler_module
from site_mdx import finder as finder_module
from site_mdx.browser import BrowserPool
from site_mdx.cancellation import CancellationToken
from site_mdx.config import SiteConfig
from site_mdx.errors import BrowserLaunchError, InvalidUrlError
from site_mdx.site import TIMEOUT_ERROR, Frontier, SiteConverter, matches_path_filter, plan_chunks
from site_mdx.models import FrontierEntry
from site_mdx.sitemap import SitemapParser

from fakes import FakeBrowser, FakePage, FakeResponseStatus, FakeSession

SEED = "https://example.com/"
PATHS = ["", "about", "docs", "blog", "contact"]


def _sitemap(paths):
    urls = "".join(f"<url><loc>https://example.com/{path}</loc></url>" for path in paths)
    return f'<?xml version="1.0"?><urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{urls}</urlset>'


class FakeSite:
    """Serves one page per path and records how many loads overlap."""

    def __init__(self, delay=0.01, broken=(), links=None, duplicate=()):
        self.delay = delay
        self.broken = set(broken)
        self.links = links or []
        self.duplicate = set(duplicate)
        self.active = 0
        self.peak = 0
        self.loaded = []

    def html_for(self, url):
        path = url.rstrip("/").rsplit("/", 1)[-1] if url != SEED else "home"
        if url in self.duplicate:
            path = "shared"
        title = path.capitalize()
        words = " ".join(f"{path}word{i}" for i in range(30))
        return (
            f"<html><head><title>{title}</title></head><body>"
            f"<nav><a href='/'>Home</a></nav>"
            f"<main><h1>{title}</h1><p>The {path} page says {words}.</p></main>"
            "</body></html>"
        )

    def new_page(self):
        return SitePage(self)


class SitePage(FakePage):
    def __init__(self, site):
        super().__init__(url="about:blank")
        self.site = site

    async def goto(self, url, wait_until="load", timeout=0):
        site = self.site
        site.active += 1
        site.peak = max(site.peak, site.active)
        try:
            await asyncio.sleep(site.delay)
            if url in site.broken:
                raise RuntimeError("net::ERR_CONNECTION_REFUSED at " + url)
        finally:
            site.active -= 1
        site.loaded.append(url)
        self.url = url
        return FakeResponseStatus(200)

    async def content(self):
        return self.site.html_for(self.url)

    async def evaluate(self, script, arg=None):
        if script is finder_module._LINKS_JS:
            return self.site.links
        return None


def _converter(site, config=None, routes=None):
    config = config or SiteConfig()
    pool = BrowserPool(config.browser, browser=FakeBrowser(site.new_page))
    if routes is None:
        routes = {"https://example.com/sitemap.xml": _sitemap(PATHS)}
    parser = SitemapParser(config.sitemap, session=FakeSession(routes))
    return SiteConverter(config, pool=pool, sitemap_parser=parser)


def _run(converter, url=SEED, **kwargs):
    return asyncio.run(converter.convert(url, **kwargs))


def test_sitemap_crawl_converts_every_page():
    site = FakeSite()
    archive = _run(_converter(site, SiteConfig(concurrency_limit=2)))
    assert archive.stats.as_dict()["totalPages"] == 5
    assert archive.stats.successful_pages == 5
    assert archive.stats.failed_pages == 0
    names = [item.name for item in archive.files]
    assert names[0] == "index.md"
    assert len(names) == 6
    assert sorted(names[1:]) == [
        "pages/about.md",
        "pages/blog.md",
        "pages/contact.md",
        "pages/docs.md",
        "pages/example-com.md",
    ]
    assert site.peak <= 2
    assert len(site.loaded) == len(set(site.loaded)) == 5
    assert archive.success
    assert archive.folder_name.startswith("example-com_")


def test_page_document_contents():
    site = FakeSite()
    archive = _run(_converter(site))
    about = next(item for item in archive.files if item.name == "pages/about.md")
    assert about.content.startswith("---\ntitle: About\n")
    assert "# About" in about.content
    assert "aboutword5" in about.content
    assert "[[pages/about|About]] - [Original](https://example.com/about)" in archive.content


def test_no_sitemap_and_no_links_converts_seed_only():
    site = FakeSite()
    archive = _run(_converter(site, routes={}))
    assert archive.stats.total_pages == 1
    assert archive.stats.successful_pages == 1
    assert [item.name for item in archive.files] == ["index.md", "pages/example-com.md"]


def test_link_discovery_when_sitemap_missing():
    links = [
        {"href": "/docs", "url": "https://example.com/docs", "text": "Docs", "isInNavigation": True, "isInMain": False, "pathDepth": 1},
        {"href": "/blog", "url": "https://example.com/blog", "text": "Blog", "isInNavigation": False, "isInMain": True, "pathDepth": 1},
        {"href": "https://other.org/", "url": "https://other.org/", "text": "Other", "isInNavigation": False, "isInMain": True, "pathDepth": 0},
        {"href": "/", "url": SEED, "text": "Home", "isInNavigation": True, "isInMain": False, "pathDepth": 0},
    ]
    site = FakeSite(links=links)
    events = []
    archive = _run(_converter(site, routes={}), on_progress=lambda event, data: events.append(event))
    assert archive.stats.total_pages == 3
    assert site.loaded.count(SEED) == 2
    assert "finding_links" in events
    assert "sitemap_found" not in events


def test_failed_page_is_listed_and_others_survive():
    site = FakeSite(broken={"https://example.com/docs"})
    archive = _run(_converter(site))
    assert archive.stats.successful_pages == 4
    assert archive.stats.failed_pages == 1
    assert archive.success
    assert "pages/docs.md" not in [item.name for item in archive.files]
    assert "## Failed Conversions" in archive.content
    assert "- https://example.com/docs: The connection to the website was refused" in archive.content


def test_render_error_fails_only_that_page(monkeypatch):
    relink = crawler_module.relink_images

    def flaky_relink(html, assets, base_url):
        if base_url.rstrip("/").endswith("/blog"):
            raise ValueError("bad image markup")
        return relink(html, assets, base_url)

    monkeypatch.setattr(crawler_module, "relink_images", flaky_relink)
    archive = _run(_converter(FakeSite()))
    assert archive.stats.successful_pages == 4
    assert archive.stats.failed_pages == 1
    assert "- https://example.com/blog: Failed to convert URL: bad image markup" in archive.content


def test_job_timeout_marks_unfinished_pages():
    site = FakeSite(delay=5)
    archive = _run(_converter(site, SiteConfig(job_timeout=0.2)))
    assert archive.stats.total_pages == 5
    assert archive.stats.failed_pages == 5
    assert archive.content.count(TIMEOUT_ERROR) == 5


class SlowSession(FakeSession):
    def get(self, url, timeout=0, **kwargs):
        response = super().get(url, timeout, **kwargs)
        time.sleep(0.3)
        return response


def test_sitemap_discovery_stops_at_job_deadline():
    site = FakeSite()
    config = SiteConfig(job_timeout=0.2)
    session = SlowSession({"https://example.com/sitemap.xml": _sitemap(PATHS)})
    converter = SiteConverter(
        config,
        pool=BrowserPool(config.browser, browser=FakeBrowser(site.new_page)),
        sitemap_parser=SitemapParser(config.sitemap, session=session),
    )
    archive = _run(converter)
    assert session.requested == ["https://example.com/robots.txt"]
    assert archive.stats.total_pages == 1
    assert archive.content.count(TIMEOUT_ERROR) == 1


def test_cancel_stops_scheduling_and_records_remaining():
    site = FakeSite()
    token = CancellationToken()

    def on_progress(event, data):
        if event == "page_converted":
            token.cancel()

    archive = _run(
        _converter(site, SiteConfig(concurrency_limit=1, cancel_grace_period=0.1)),
        cancel_token=token,
        on_progress=on_progress,
    )
    assert archive.stats.successful_pages == 1
    assert archive.stats.failed_pages == 4
    assert archive.content.count("Cancelled before completion") == 4
    assert site.loaded == [SEED]


def test_duplicate_pages_are_skipped_when_enabled():
    dupes = {"https://example.com/blog", "https://example.com/contact"}
    site = FakeSite(duplicate=dupes)
    config = SiteConfig(concurrency_limit=1, skip_duplicate_content=True)
    archive = _run(_converter(site, config))
    assert archive.stats.successful_pages == 4
    assert "Duplicate content of https://example.com/blog (similarity 1.00)" in archive.content

    site = FakeSite(duplicate=dupes)
    archive = _run(_converter(site, SiteConfig(concurrency_limit=1)))
    assert archive.stats.successful_pages == 5


def test_progress_events_and_broken_callback():
    site = FakeSite()
    events = []
    _run(_converter(site), on_progress=lambda event, data: events.append((event, data)))
    names = [event for event, _ in events]
    assert names[0] == "discovering_sitemap"
    assert names[1] == "sitemap_found"
    assert names[2] == "processing_pages"
    assert names.count("page_converted") == 5
    assert names[-2:] == ["building_archive", "completed"]
    assert events[1][1]["count"] == 5
    assert events[-1][1]["totalPages"] == 5

    def broken(event, data):
        raise RuntimeError("callback bug")

    archive = _run(_converter(FakeSite()), on_progress=broken)
    assert archive.stats.successful_pages == 5


def test_max_pages_and_path_filter():
    archive = _run(_converter(FakeSite(), SiteConfig(max_pages=3)))
    assert archive.stats.total_pages == 3

    archive = _run(_converter(FakeSite(), SiteConfig(path_filter="/docs")))
    assert archive.stats.total_pages == 2
    assert "https://example.com/docs" in archive.content


def test_browser_launch_failure_is_fatal():
    async def launcher(config):
        raise RuntimeError("chromium missing")

    config = SiteConfig()
    converter = SiteConverter(
        config,
        pool=BrowserPool(config.browser, launcher=launcher),
        sitemap_parser=SitemapParser(session=FakeSession({"https://example.com/sitemap.xml": _sitemap(PATHS)})),
    )
    with pytest.raises(BrowserLaunchError):
        _run(converter)


def test_invalid_seed_is_rejected():
    with pytest.raises(InvalidUrlError):
        _run(_converter(FakeSite()), url="ftp://example.com")


def test_frontier_is_unique_by_normalized_url():
    frontier = Frontier()
    assert frontier.add("https://example.com/a/") is not None
    assert frontier.add("https://example.com/a#x") is None
    assert not frontier.add_entry(FrontierEntry(normalized_url="https://example.com/a", url="https://example.com/a"))
    assert len(frontier) == 1
    assert "https://example.com/a" in frontier


def test_plan_chunks_applies_filter_and_limit():
    def entry(path):
        return FrontierEntry(normalized_url=f"https://example.com{path}", url=f"https://example.com{path}")

    seed = entry("/")
    chunks = [[seed], [entry("/docs/a"), entry("/blog/b"), entry("/docs/c")], [entry("/docs/d")]]
    planned = plan_chunks(chunks, seed.normalized_url, "/docs", limit=3)
    assert [[item.url for item in chunk] for chunk in planned] == [
        ["https://example.com/"],
        ["https://example.com/docs/a", "https://example.com/docs/c"],
    ]
    assert matches_path_filter("https://example.com/docs/x", "https://example.com/docs")
    assert not matches_path_filter("https://example.com/blog", "docs")
