"""Data models and error types for the Roam MCP server."""

from .errors import (
    AuthenticationError,
    BlockNotFoundError,
    InvalidRequestError,
    NetworkError,
    PageNotFoundError,
    QueryError,
    RateLimitError,
    ReferenceResolutionError,
    RetriesExhaustedError,
    RoamError,
    TimeoutError,
)
from .requests import APIConfiguration, HierarchyRequest, PageContentLine

__all__ = [
    "APIConfiguration",
    "AuthenticationError",
    "BlockNotFoundError",
    "HierarchyRequest",
    "InvalidRequestError",
    "NetworkError",
    "PageContentLine",
    "PageNotFoundError",
    "QueryError",
    "RateLimitError",
    "ReferenceResolutionError",
    "RetriesExhaustedError",
    "RoamError",
    "TimeoutError",
]
