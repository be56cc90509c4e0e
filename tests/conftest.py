"""Shared fixtures: an in-memory Roam graph served through httpx.MockTransport."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest
from pydantic import SecretStr

from roam_mcp.client import RequestScheduler, RoamClient
from roam_mcp.client.api_client_hierarchy import (
    CHILDREN_QUERY,
    CONTENT_QUERY,
    PAGE_OF_BLOCK_QUERY,
    PARENT_QUERY,
)
from roam_mcp.client.api_client_pages import FIND_PAGE_QUERY, MODIFIED_SINCE_QUERY, PAGE_BLOCKS_QUERY
from roam_mcp.client.refs import REFS_QUERY
from roam_mcp.models import APIConfiguration


class FakeGraph:
    """Tiny stand-in for a Roam graph that answers the queries this package issues."""

    def __init__(self) -> None:
        self.entities: dict[str, dict[str, Any]] = {}
        self.queries: list[dict[str, Any]] = []
        self.writes: list[dict[str, Any]] = []
        self.modified_today: list[str] = []
        # (predicate(body) -> bool, status, text) consumed on first match
        self.failures: list[tuple[Any, int, str]] = []

    def add_page(self, uid: str, title: str) -> None:
        self.entities[uid] = {"uid": uid, "title": title, "parent": None, "order": 0, "page": None}

    def add_block(self, uid: str, string: str, parent: str, order: int) -> None:
        page = parent if self.entities[parent]["title"] is not None else self.entities[parent]["page"]
        self.entities[uid] = {
            "uid": uid,
            "string": string,
            "title": None,
            "parent": parent,
            "order": order,
            "page": page,
        }

    def fail_when(self, predicate: Any, status: int = 429, text: str = "Too many requests") -> None:
        self.failures.append((predicate, status, text))

    def children_of(self, uid: str) -> list[dict[str, Any]]:
        return [e for e in self.entities.values() if e["parent"] == uid]

    def _pull(self, uid: str, depth: int) -> dict[str, Any]:
        entity = self.entities[uid]
        result: dict[str, Any] = {":block/uid": uid}
        if entity.get("string") is not None:
            result[":block/string"] = entity["string"]
        if entity.get("title") is not None:
            result[":node/title"] = entity["title"]
        if entity["parent"] is not None:
            result[":block/order"] = entity["order"]
        children = self.children_of(uid)
        if depth > 1 and children:
            result[":block/children"] = [self._pull(c["uid"], depth - 1) for c in children]
        return result

    def _descendants(self, uid: str) -> list[dict[str, Any]]:
        found = []
        for child in self.children_of(uid):
            found.append(child)
            found.extend(self._descendants(child["uid"]))
        return found

    def run_query(self, query: str, args: list[Any]) -> Any:
        if query == CONTENT_QUERY:
            entity = self.entities.get(args[0])
            if entity is None:
                return None
            return entity.get("string") if entity.get("string") is not None else entity.get("title")
        if query == PAGE_OF_BLOCK_QUERY:
            entity = self.entities.get(args[0])
            return entity["page"] if entity else None
        if query == CHILDREN_QUERY:
            return [
                [e["parent"], e["uid"], e["string"], e["order"]]
                for e in self.entities.values()
                if e["parent"] in args[0] and e.get("string") is not None
            ]
        if query == PARENT_QUERY:
            entity = self.entities.get(args[0])
            if not entity or entity["parent"] is None:
                return []
            parent = self.entities[entity["parent"]]
            if parent.get("string") is None:
                return []
            return [[parent["uid"], parent["string"]]]
        if query.startswith("[:find (pull ?b"):
            if args[0] not in self.entities:
                return None
            return self._pull(args[0], query.count(":block/children") + 1)
        if query == REFS_QUERY:
            return [
                [uid, self.entities[uid]["string"]]
                for uid in args[0]
                if uid in self.entities and self.entities[uid].get("string") is not None
            ]
        if query == FIND_PAGE_QUERY:
            for e in self.entities.values():
                if e.get("title") == args[0]:
                    return e["uid"]
            return None
        if query == PAGE_BLOCKS_QUERY:
            page = next((e for e in self.entities.values() if e.get("title") == args[1]), None)
            if page is None:
                return []
            return [[e["uid"], e["string"], e["order"], e["parent"]] for e in self._descendants(page["uid"])]
        if query == MODIFIED_SINCE_QUERY:
            return [[title] for title in self.modified_today]
        raise AssertionError(f"Unexpected query: {query}")

    def run_write(self, body: dict[str, Any]) -> dict[str, Any]:
        self.writes.append(body)
        if body["action"] == "create-page":
            uid = f"page-{len(self.entities)}"
            self.add_page(uid, body["page"]["title"])
        elif body["action"] == "batch-actions":
            for action in body["actions"]:
                if action["action"] == "create-block":
                    parent = action["location"]["parent-uid"]
                    order = len(self.children_of(parent))
                    self.add_block(action["block"]["uid"], action["block"]["string"], parent, order)
        return {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        for i, (predicate, status, text) in enumerate(self.failures):
            if predicate(body):
                del self.failures[i]
                return httpx.Response(status, text=text)

        if request.url.path.endswith("/q"):
            self.queries.append(body)
            return httpx.Response(200, json={"result": self.run_query(body["query"], body["args"])})
        if request.url.path.endswith("/write"):
            return httpx.Response(200, json=self.run_write(body))
        return httpx.Response(404, text="Not found")


@pytest.fixture
def api_config() -> APIConfiguration:
    return APIConfiguration(api_token=SecretStr("roam-graph-token-test"), graph_name="test-graph")


@pytest.fixture
def graph() -> FakeGraph:
    return FakeGraph()


@pytest.fixture
def scheduler() -> RequestScheduler:
    return RequestScheduler(reservoir=None, max_attempts=3, base_delay=0.0)


@pytest.fixture
def make_client(api_config, graph, scheduler):
    def _make(**kwargs: Any) -> RoamClient:
        return RoamClient(api_config, scheduler, transport=httpx.MockTransport(graph.handler), **kwargs)

    return _make
