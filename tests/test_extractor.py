import asyncio

import pytest
from bs4 import BeautifulSoup

from site_mdx.config import ExtractionConfig
from site_mdx.errors import ExtractionError
from site_mdx.extractor import (
    ContentExtractor,
    extract_from_html,
    extract_metadata,
    find_content_blocks,
    find_selector_sections,
    has_meaningful_content,
    is_image_url,
)

from fakes import FakePage

LONG = "This paragraph carries enough words to count as meaningful page content for the extractor."

ARTICLE_PAGE = f"""
<html>
<head>
  <title>Fallback Title | Example</title>
  <meta property="og:title" content="Open Graph Title">
  <meta name="description" content="A short description">
  <meta name="author" content="Jane Doe">
  <meta property="article:published_time" content="2024-03-01">
  <meta property="og:site_name" content="Example Site">
</head>
<body>
  <nav><a href="/">Home</a></nav>
  <article>
    <h1>Article Heading</h1>
    <p>{LONG}</p>
    <img src="/images/photo.png" alt="A photo">
    <img data-src="https://cdn.example.com/lazy.jpg" alt="Lazy">
    <img src="data:image/png;base64,AAAA">
    <script>console.log("noise")</script>
  </article>
  <footer>Footer text</footer>
</body>
</html>
"""


def _soup(html):
    return BeautifulSoup(html, "html.parser")


def test_selector_tier_extracts_article():
    content = extract_from_html(ARTICLE_PAGE, "https://example.com/post")
    assert content.strategy == "selectors"
    assert "Article Heading" in content.html
    assert "Footer text" not in content.html
    assert "console.log" not in content.html
    assert 'class="combined-content"' in content.html


def test_metadata_prefers_open_graph():
    content = extract_from_html(ARTICLE_PAGE, "https://example.com/post")
    meta = content.metadata
    assert meta.title == "Open Graph Title"
    assert meta.description == "A short description"
    assert meta.author == "Jane Doe"
    assert meta.date == "2024-03-01"
    assert meta.site == "Example Site"
    assert meta.source_url == "https://example.com/post"


def test_metadata_falls_back_to_h1_then_url():
    html = "<html><body><h1>Only Heading</h1></body></html>"
    meta = extract_metadata(_soup(html), html, "https://example.com/some-page")
    assert meta.title == "Only Heading"
    assert meta.site == "example.com"

    html = "<html><body><p>nothing</p></body></html>"
    meta = extract_metadata(_soup(html), html, "https://example.com/some-page")
    assert meta.title == "Some Page"


def test_images_resolved_from_content_only():
    content = extract_from_html(ARTICLE_PAGE, "https://example.com/post")
    assert [image.src for image in content.images] == [
        "https://example.com/images/photo.png",
        "https://cdn.example.com/lazy.jpg",
    ]
    assert content.images[0].alt == "A photo"
    assert 'src="https://cdn.example.com/lazy.jpg"' in content.html


def test_selector_sections_skip_nested_matches():
    html = f"""
    <body>
      <main><article><h2>First</h2><p>{LONG}</p></article></main>
      <div class="post"><h2>Second</h2><p>{LONG}</p></div>
    </body>
    """
    combined = find_selector_sections(_soup(html), ExtractionConfig())
    assert combined.count("<h2>First</h2>") == 1
    assert combined.index("First") < combined.index("Second")


def test_content_blocks_tier_when_no_selector_matches():
    html = f"""
    <body>
      <div class="x"><h2>Block</h2><p>{LONG} {LONG}</p></div>
      <div class="tiny"><p>short</p></div>
    </body>
    """
    soup = _soup(html)
    assert find_selector_sections(soup, ExtractionConfig()) is None
    blocks = find_content_blocks(soup, ExtractionConfig())
    assert "Block" in blocks
    assert "short" not in blocks


def test_text_tier_for_bare_text_pages():
    html = "<html><body><span>Just some text &amp; more</span></body></html>"
    content = extract_from_html(html, "https://example.com/")
    assert content.strategy == "text-extraction"
    assert "<p>Just some text &amp; more</p>" in content.html


def test_meaningful_content_needs_structure():
    assert not has_meaningful_content(_soup(f"<div><span>{LONG}</span></div>").div)
    assert has_meaningful_content(_soup(f"<div><p>{LONG}</p></div>").div)
    assert not has_meaningful_content(None)


def test_truncates_oversized_html():
    content = extract_from_html(ARTICLE_PAGE, "https://example.com/post", ExtractionConfig(max_html_chars=200))
    assert content.html.endswith("<!-- truncated -->")


def test_is_image_url():
    assert is_image_url("https://example.com/a/b.JPG")
    assert is_image_url("https://images.unsplash.com/photo-123")
    assert is_image_url("https://example.com/render?w=400")
    assert not is_image_url("https://example.com/page")


def test_content_extractor_reads_page():
    page = FakePage(html=ARTICLE_PAGE, url="https://example.com/final")
    content = asyncio.run(ContentExtractor().extract(page, source_url="https://example.com/post"))
    assert content.metadata.source_url == "https://example.com/post"
    assert content.images[0].src == "https://example.com/images/photo.png"


def test_content_extractor_wraps_read_failure():
    class BrokenPage(FakePage):
        async def content(self):
            raise RuntimeError("target closed")

    with pytest.raises(ExtractionError):
        asyncio.run(ContentExtractor().extract(BrokenPage()))
