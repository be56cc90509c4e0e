"""Roam API client - hierarchy traversal (descendants / ancestors) and indented output."""

import asyncio
from typing import Any

from pydantic import ValidationError

from ..models import (
    BlockNotFoundError,
    HierarchyRequest,
    InvalidRequestError,
    NetworkError,
    QueryError,
    RoamError,
    TimeoutError,
)
from .api_client_core import RoamClientCore, _ClientLogger
from .outline_helper import DEFAULT_HARD_CAP, DEFAULT_SPLIT_THRESHOLD, paginate, render_tree
from .refs import resolve_refs
from .tree_helper import BlockRow, CanonicalTree, normalize_nested, normalize_rows

MAX_DEPTH_CEILING = 7

CONTENT_QUERY = """[:find ?text .
                    :in $ ?uid
                    :where [?b :block/uid ?uid]
                           (or [?b :block/string ?text]
                               [?b :node/title ?text])]"""

PAGE_OF_BLOCK_QUERY = """[:find ?page-uid .
                          :in $ ?uid
                          :where [?b :block/uid ?uid]
                                 [?b :block/page ?p]
                                 [?p :block/uid ?page-uid]]"""

CHILDREN_QUERY = """[:find ?parent-uid ?uid ?string ?order
                     :in $ [?parent-uid ...]
                     :where [?p :block/uid ?parent-uid]
                            [?p :block/children ?c]
                            [?c :block/uid ?uid]
                            [?c :block/string ?string]
                            [?c :block/order ?order]]"""

# Pages carry no :block/string, so the walk stops below the page
PARENT_QUERY = """[:find ?parent-uid ?parent-string
                   :in $ ?uid
                   :where [?b :block/uid ?uid]
                          [?p :block/children ?b]
                          [?p :block/uid ?parent-uid]
                          [?p :block/string ?parent-string]]"""


def build_pull_pattern(depth: int) -> str:
    """Pull pattern nesting ``:block/children`` so ``depth`` levels come back."""
    attrs = "[:block/string :node/title :block/uid :block/order"
    if depth <= 1:
        return attrs + "]"
    return f"{attrs} {{:block/children {build_pull_pattern(depth - 1)}}}]"


def build_subtree_query(depth: int) -> str:
    return f"""[:find (pull ?b {build_pull_pattern(depth)}) .
               :in $ ?uid
               :where [?b :block/uid ?uid]]"""


class RoamClientHierarchy(RoamClientCore):
    """Descendant/ancestor traversal rendered as paginated indented text."""

    def __init__(
        self,
        *args: Any,
        max_depth_ceiling: int = MAX_DEPTH_CEILING,
        split_threshold: int = DEFAULT_SPLIT_THRESHOLD,
        hard_cap: int = DEFAULT_HARD_CAP,
        use_nested_pull: bool = True,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.max_depth_ceiling = max_depth_ceiling
        self.split_threshold = split_threshold
        self.hard_cap = hard_cap
        self.use_nested_pull = use_nested_pull
        self._hierarchy_scheduler = self.scheduler.create_child("hierarchy")

    def clamp_depth(self, max_depth: int | None) -> int:
        return min(max(1, max_depth or 1), self.max_depth_ceiling)

    async def _query(self, query: str, args: list[Any]) -> Any:
        return await self.q(query, args, scheduler=self._hierarchy_scheduler)

    async def _resolve(self, text: str) -> str:
        return await resolve_refs(self, text, scheduler=self._hierarchy_scheduler)

    async def _resolve_tree(self, tree: CanonicalTree) -> None:
        nodes = list(tree.nodes.values())
        contents = await asyncio.gather(*(self._resolve(n.content) for n in nodes))
        for node, content in zip(nodes, contents):
            node.content = content

    async def fetch_block_content(self, uid: str) -> str | None:
        """Raw text of a block (or title of a page); None if the uid is unknown."""
        return await self._query(CONTENT_QUERY, [uid])

    async def fetch_page_uid_of(self, uid: str) -> str | None:
        return await self._query(PAGE_OF_BLOCK_QUERY, [uid])

    async def fetch_descendants(self, uid: str, max_depth: int = 1) -> CanonicalTree:
        """Anchor block plus its subtree, ``max_depth`` levels including the anchor.

        Uses one nested pull query; falls back to one children query per level
        when nested pull is disabled, returns a malformed result, is refused
        by the backend or fails in transport. Exhausted quota retries and an
        unknown ``uid`` still propagate.

        Raises:
            BlockNotFoundError: ``uid`` does not resolve to a block
        """
        logger = _ClientLogger("HIERARCHY")
        depth = self.clamp_depth(max_depth)

        tree: CanonicalTree | None = None
        if self.use_nested_pull:
            try:
                tree = await self._fetch_descendants_nested(uid, depth)
            except (QueryError, NetworkError, TimeoutError) as e:
                logger.warning(f"Nested pull failed for {uid}, fetching level by level: {e}")
            if tree is None:
                logger.debug(f"Nested pull unusable for {uid}; using level-by-level fetch")

        if tree is None:
            tree = await self._fetch_descendants_by_level(uid, depth)

        logger.debug(f"Fetched {len(tree)} blocks under {uid} (depth {depth})")
        return tree

    async def _fetch_descendants_nested(self, uid: str, depth: int) -> CanonicalTree | None:
        result = await self._query(build_subtree_query(depth), [uid])
        if result is None:
            raise BlockNotFoundError(uid)
        if not isinstance(result, dict):
            return None

        tree = normalize_nested(result, max_depth=depth)
        if not tree.roots or tree.roots[0] != uid:
            return None

        await self._resolve_tree(tree)
        return tree

    async def _fetch_descendants_by_level(self, uid: str, depth: int) -> CanonicalTree:
        content = await self.fetch_block_content(uid)
        if content is None:
            raise BlockNotFoundError(uid)
        content = await self._resolve(content)

        rows: list[BlockRow] = []
        visited = {uid}
        frontier = [uid]
        for _level in range(1, depth):
            if not frontier:
                break
            raw_rows = await self._query(CHILDREN_QUERY, [frontier]) or []

            level_rows = []
            for parent_uid, child_uid, string, order in raw_rows:
                if child_uid in visited:
                    continue
                visited.add(child_uid)
                level_rows.append((parent_uid, child_uid, string or "", order))

            # A level is attached only once every block on it is resolved
            resolved = await asyncio.gather(*(self._resolve(r[2]) for r in level_rows))
            for (parent_uid, child_uid, _string, order), text in zip(level_rows, resolved):
                rows.append(BlockRow(child_uid, text, order if isinstance(order, int) else 0, parent_uid))

            frontier = [r[1] for r in level_rows]

        return normalize_rows(rows, uid, anchor_content=content, max_depth=depth)

    async def fetch_ancestors(self, uid: str, max_depth: int = 1) -> CanonicalTree:
        """Chain from the farthest collected ancestor down to ``uid``.

        Walks up one parent query at a time, collecting at most
        ``max_depth - 1`` ancestors and stopping at the page level.

        Raises:
            BlockNotFoundError: ``uid`` does not resolve to a block
        """
        depth = self.clamp_depth(max_depth)

        content = await self.fetch_block_content(uid)
        if content is None:
            raise BlockNotFoundError(uid)

        ancestors: list[tuple[str, str]] = []
        visited = {uid}
        current = uid
        while len(ancestors) < depth - 1:
            rows = await self._query(PARENT_QUERY, [current]) or []
            if not rows:
                break
            parent_uid, parent_string = rows[0]
            if parent_uid in visited:
                break
            visited.add(parent_uid)
            ancestors.append((parent_uid, parent_string or ""))
            current = parent_uid

        chain = list(reversed(ancestors)) + [(uid, content)]
        resolved = await asyncio.gather(*(self._resolve(text) for _, text in chain))
        return CanonicalTree.from_chain(zip((u for u, _ in chain), resolved))

    async def _check_page_scope(self, uid: str, page_uid: str) -> None:
        if uid == page_uid:
            return
        found = await self.fetch_page_uid_of(uid)
        if found != page_uid:
            raise BlockNotFoundError(uid, f"Block with UID {uid} not found on page {page_uid}")

    @staticmethod
    def _failure(message: str) -> dict[str, Any]:
        return {"success": False, "matches": [], "message": message}

    async def search_hierarchy_indented(self, **params: Any) -> dict[str, Any]:
        """Render a block's descendants or ancestors as an indented list.

        Args (keyword):
            parent_uid: Anchor for descendant mode
            child_uid: Anchor for ancestor mode
            page_title_uid: Optional page the anchor must belong to
            max_depth: Levels to include, anchor included (default 1, max 7)
            part: Which part of a split result to return (default 1)

        Returns:
            {"success": True, "content", "total_blocks_found", "message",
             "total_parts"/"current_part" when split} or
            {"success": False, "matches": [], "message"}. Never raises.
        """
        logger = _ClientLogger("HIERARCHY")

        try:
            request = HierarchyRequest(**params)
        except ValidationError as e:
            error = InvalidRequestError(_validation_message(e))
            logger.warning(f"Rejected hierarchy request: {error.message}")
            return self._failure(error.message)

        anchor = request.parent_uid or request.child_uid
        try:
            if request.page_title_uid:
                await self._check_page_scope(anchor, request.page_title_uid)
            if request.parent_uid:
                tree = await self.fetch_descendants(request.parent_uid, request.max_depth)
            else:
                tree = await self.fetch_ancestors(request.child_uid, request.max_depth)
        except BlockNotFoundError as e:
            return self._failure(e.message)
        except RoamError as e:
            logger.error(f"Hierarchy search for {anchor} failed: {e.message}")
            return self._failure(f"Error processing hierarchy: {e.message}")
        except Exception as e:  # noqa: BLE001
            logger.error(f"Unexpected error in hierarchy search for {anchor}: {type(e).__name__}: {e}")
            return self._failure(f"Error processing hierarchy: {e}")

        total_blocks = len(tree)
        page = paginate(render_tree(tree), request.part, self.split_threshold, self.hard_cap)

        message = f"Found {total_blocks} blocks in hierarchy"
        result: dict[str, Any] = {
            "success": True,
            "content": page.text,
            "total_blocks_found": total_blocks,
        }
        if page.split:
            result["total_parts"] = page.total_parts
            result["current_part"] = page.current_part
            message += (
                f". Result split into {page.total_parts} parts. "
                f"Showing part {page.current_part} of {page.total_parts}. "
                f"Use 'part' parameter (1-{page.total_parts}) to view other parts."
            )
        elif page.truncated:
            message += f". Output truncated to {self.hard_cap} characters."
        result["message"] = message
        return result


def _validation_message(error: ValidationError) -> str:
    messages = []
    for item in error.errors():
        msg = str(item.get("msg", ""))
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        loc = ".".join(str(p) for p in item.get("loc", ()))
        messages.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(messages) or "Invalid request"
