"""Roam Research MCP server implementation using FastMCP."""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastmcp import FastMCP

from .client import RequestScheduler, RoamClient
from .config import ServerConfig, setup_logging
from .models import PageContentLine

logger = logging.getLogger(__name__)

# Global client instance and the process-wide request scheduler
_client: RoamClient | None = None
_scheduler: RequestScheduler | None = None


def get_client() -> RoamClient:
    """Get the global Roam client instance."""
    if _client is None:
        raise RuntimeError("Roam client not initialized. Server not started properly.")
    return _client


@asynccontextmanager
async def lifespan(_app: FastMCP):  # type: ignore[no-untyped-def]
    """Manage server lifecycle."""
    global _client, _scheduler

    logger.info("Starting Roam MCP server")

    config = ServerConfig()  # type: ignore[call-arg]
    api_config = config.get_api_config()

    _scheduler = config.get_scheduler()
    _client = RoamClient(
        api_config,
        _scheduler,
        max_depth_ceiling=config.max_depth_ceiling,
        split_threshold=config.split_threshold,
        hard_cap=config.hard_cap,
        use_nested_pull=config.use_nested_pull,
    )

    logger.info(
        f"Roam client initialized for graph {api_config.graph_name!r} "
        f"(reservoir {config.reservoir}/{config.reservoir_refresh_interval:g}s, "
        f"max concurrent {config.max_concurrent})"
    )

    try:
        yield
    finally:
        logger.info("Shutting down Roam MCP server")
        if _client:
            await _client.close()
            _client = None
        _scheduler = None


mcp = FastMCP(
    "Roam Research MCP Server",
    instructions="MCP server for reading and writing Roam Research graphs",
    lifespan=lifespan,
)


@mcp.tool(
    name="roam_search_hierarchy_indented",
    description=(
        "Show a block's hierarchy as an indented list. Give parent_uid to list the "
        "block and its descendants, or child_uid to list its ancestors down to the "
        "block. max_depth counts levels including the anchor block (default 1, max 7). "
        "Large results are split into parts; request others with 'part'."
    ),
)
async def search_hierarchy_indented(
    parent_uid: str | None = None,
    child_uid: str | None = None,
    page_title_uid: str | None = None,
    max_depth: int = 1,
    part: int = 1,
) -> dict[str, Any]:
    client = get_client()
    return await client.search_hierarchy_indented(
        parent_uid=parent_uid,
        child_uid=child_uid,
        page_title_uid=page_title_uid,
        max_depth=max_depth,
        part=part,
    )


@mcp.tool(
    name="roam_fetch_page_by_title",
    description="Fetch a page's blocks as a nested markdown outline, with block references resolved.",
)
async def fetch_page_by_title(title: str) -> str:
    client = get_client()
    return await client.fetch_page_by_title(title)


@mcp.tool(
    name="roam_find_pages_modified_today",
    description="List the titles of pages that have blocks edited since midnight.",
)
async def find_pages_modified_today(max_num_pages: int = 50) -> dict[str, Any]:
    client = get_client()
    return await client.find_pages_modified_today(max_num_pages)


@mcp.tool(
    name="roam_create_page",
    description=(
        "Create a page (or reuse an existing one with the same title) and append "
        "content lines. Each line has 'text' and 'level'; level 1 sits directly "
        "under the page, level N under the previous level N-1 line."
    ),
)
async def create_page(title: str, content: list[PageContentLine] | None = None) -> dict[str, Any]:
    client = get_client()
    return await client.create_page(title, content)


def main() -> None:
    """Run the server over stdio."""
    setup_logging(os.environ.get("ROAM_LOG_LEVEL", "INFO"))
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
