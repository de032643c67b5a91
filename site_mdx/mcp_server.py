"""MCP server exposing site-mdx page and site conversion tools."""

from __future__ import annotations

import logging
from typing import Optional

from mcp.server.fastmcp import FastMCP

from .config import SiteConfig
from .crawler import convert_page as render_page
from .site import convert_site as crawl_site
from .writer import write_archive

logger = logging.getLogger("site_mdx.mcp")
logger.setLevel(logging.ERROR)

mcp = FastMCP(name="site-mdx")


@mcp.tool()
async def convert_page(
    url: str,
) -> str:
    """Render a web page with Playwright and return it as Markdown."""

    result = await render_page(url, SiteConfig())
    if not result.success:
        raise RuntimeError(f"Failed to convert {url}: {result.error}")
    return result.content or ""


@mcp.tool()
async def convert_site(
    url: str,
    max_pages: int = 20,
    path_filter: Optional[str] = None,
    output_dir: Optional[str] = None,
) -> str:
    """Crawl a website and return its Markdown index.

    When ``output_dir`` is given the full archive (index, pages and
    attachments) is written there as well.
    """

    config = SiteConfig(max_pages=max_pages, path_filter=path_filter)
    archive = await crawl_site(url, config)
    if output_dir:
        destination = write_archive(archive, output_dir)
        return f"{archive.content}\n<!-- archive written to {destination} -->\n"
    return archive.content


def main() -> None:
    """Entry point for running the MCP server."""
    logging.basicConfig(level=logging.ERROR)
    mcp.run()


if __name__ == "__main__":
    main()
