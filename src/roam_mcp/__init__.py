"""Roam Research MCP server: rate-limited Roam API client and hierarchy tools."""

__version__ = "0.1.0"
