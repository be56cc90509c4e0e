"""Roam API client package."""

from .api_client import RoamClient
from .backoff import ErrorClass, classify, delay_for_attempt, retry_with_backoff
from .scheduler import RequestScheduler

__all__ = [
    "ErrorClass",
    "RequestScheduler",
    "RoamClient",
    "classify",
    "delay_for_attempt",
    "retry_with_backoff",
]
