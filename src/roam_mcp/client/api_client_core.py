"""Roam API client - transport, response handling and write actions."""

from __future__ import annotations

import json
import sys
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx

from ..models import (
    APIConfiguration,
    AuthenticationError,
    NetworkError,
    QueryError,
    RateLimitError,
    TimeoutError,
)

if TYPE_CHECKING:
    from .scheduler import RequestScheduler


def log_event(message: str, component: str = "CLIENT") -> None:
    """Log an event to stderr with timestamp and consistent formatting."""
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    print(f"[{timestamp}] [{component}] {message}", file=sys.stderr, flush=True)


class _ClientLogger:
    """Lightweight logger that delegates to log_event.

    The stdlib logging module is reconfigured by FastMCP, so the client
    writes straight to stderr instead. Methods accept *args/**kwargs for
    call-site compatibility with logging.Logger; only the message is used.
    """

    def __init__(self, component: str = "CLIENT") -> None:
        self._component = component

    def _msg(self, msg: object) -> str:
        try:
            return str(msg)
        except Exception:
            return repr(msg)

    def info(self, msg: object, *args: object, **kwargs: object) -> None:
        log_event(self._msg(msg), self._component)

    def warning(self, msg: object, *args: object, **kwargs: object) -> None:
        log_event(f"WARNING: {self._msg(msg)}", self._component)

    def error(self, msg: object, *args: object, **kwargs: object) -> None:
        log_event(f"ERROR: {self._msg(msg)}", self._component)

    def debug(self, msg: object, *args: object, **kwargs: object) -> None:
        log_event(f"DEBUG: {self._msg(msg)}", self._component)


class RoamClientCore:
    """Core Roam API client - every call is dispatched through the scheduler."""

    def __init__(
        self,
        config: APIConfiguration,
        scheduler: RequestScheduler,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the Roam API client.

        Args:
            config: Connection settings
            scheduler: Root request scheduler shared by the whole process
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.graph = config.graph_name
        self._scheduler = scheduler
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def scheduler(self) -> RequestScheduler:
        return self._scheduler

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            headers = {
                "X-Authorization": f"Bearer {self.config.api_token.get_secret_value()}",
                "Content-Type": "application/json; charset=utf-8",
                "Accept": "application/json",
            }
            # The backend answers with 307/308 redirects to the graph's peer;
            # httpx keeps method and body on those.
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=httpx.Timeout(self.config.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RoamClientCore":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def _handle_response(self, response: httpx.Response) -> dict[str, Any]:
        """Handle API response and errors."""
        if response.status_code in (401, 403):
            raise AuthenticationError("Invalid API token or unauthorized access to graph")

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                message=f"Too many requests: {response.text.strip() or 'try again in a minute'}",
            )

        if response.status_code >= 500:
            raise NetworkError(f"Server error: {response.status_code}")

        if response.status_code >= 400:
            try:
                error_data = response.json()
                message = error_data.get("message") or error_data.get("error") or "API request failed"
            except (json.JSONDecodeError, AttributeError):
                message = response.text.strip() or f"API error: {response.status_code}"
            raise QueryError(f"{response.status_code} {message}")

        if not response.content:
            return {}

        try:
            return response.json()  # type: ignore[no-any-return]
        except json.JSONDecodeError as err:
            raise NetworkError("Invalid response format from API") from err

    async def _post(self, endpoint: str, body: dict[str, Any], operation: str) -> dict[str, Any]:
        """Issue exactly one POST against the graph; called under the scheduler."""
        try:
            response = await self.client.post(f"/api/graph/{self.graph}/{endpoint}", json=body)
        except httpx.TimeoutException as err:
            raise TimeoutError(operation) from err
        except httpx.HTTPError as err:
            raise NetworkError(f"{operation} failed: {err}") from err
        return await self._handle_response(response)

    async def q(
        self,
        query: str,
        args: list[Any] | None = None,
        scheduler: RequestScheduler | None = None,
    ) -> Any:
        """Run a datalog query and return its ``result`` payload.

        Args:
            query: Datalog query string
            args: Positional inputs bound to the query's ``:in`` clause
            scheduler: Per-feature child scheduler; defaults to the root one
        """
        body = {"query": query, "args": list(args or [])}
        data = await (scheduler or self._scheduler).schedule(self._post, "q", body, "q")
        return data.get("result") if isinstance(data, dict) else data

    async def write(
        self,
        body: dict[str, Any],
        scheduler: RequestScheduler | None = None,
    ) -> dict[str, Any]:
        """Submit one write action (create-page, create-block, batch-actions, ...)."""
        operation = str(body.get("action", "write"))
        return await (scheduler or self._scheduler).schedule(self._post, "write", body, operation)

    async def create_page_action(self, title: str, scheduler: RequestScheduler | None = None) -> dict[str, Any]:
        return await self.write({"action": "create-page", "page": {"title": title}}, scheduler)

    async def create_block_action(
        self,
        parent_uid: str,
        text: str,
        order: int | str = "last",
        uid: str | None = None,
        scheduler: RequestScheduler | None = None,
    ) -> dict[str, Any]:
        block: dict[str, Any] = {"string": text}
        if uid:
            block["uid"] = uid
        return await self.write(
            {"action": "create-block", "location": {"parent-uid": parent_uid, "order": order}, "block": block},
            scheduler,
        )

    async def update_block_action(
        self, uid: str, text: str, scheduler: RequestScheduler | None = None
    ) -> dict[str, Any]:
        return await self.write({"action": "update-block", "block": {"uid": uid, "string": text}}, scheduler)

    async def batch_actions(
        self, actions: list[dict[str, Any]], scheduler: RequestScheduler | None = None
    ) -> dict[str, Any]:
        return await self.write({"action": "batch-actions", "actions": actions}, scheduler)
