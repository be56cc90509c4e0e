"""Roam API client implementation."""

from .api_client_pages import RoamClientPages


class RoamClient(RoamClientPages):
    """Full Roam client: transport, hierarchy traversal and page operations.

    Every remote call goes through the root scheduler passed in at
    construction, via the per-feature child schedulers the mixins create.
    """

    async def __aenter__(self) -> "RoamClient":
        return self
