"""Canonical block trees built from Roam query results.

Roam hands back block structure in two shapes:

- flat rows ``(uid, string, order, parent_uid)`` from ``:find`` queries
  that bind individual attributes
- nested maps from ``(pull ?b [...])`` queries, keyed ``:block/uid``,
  ``:block/string``, ``:block/order``, ``:block/children`` (pages carry
  ``:node/title`` instead of a string)

Both are normalized into a ``CanonicalTree``: an arena of ``TreeNode``
objects keyed by uid, with explicit parent -> children edges and a depth on
every node (roots are depth 0). A uid is placed at most once per tree, so a
node can never sit under two parents and the tree cannot contain a cycle.

Sibling order is ascending ``order``; equal orders keep the order in which
the rows were fetched (Python's sort is stable).

These helpers are pure: no network and no reference resolution. Callers
fetch, resolve and then serialize (see ``outline_helper``).
"""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, NamedTuple


class BlockRow(NamedTuple):
    """One flat query row."""

    uid: str
    content: str
    order: int
    parent_uid: str | None


@dataclass
class TreeNode:
    uid: str
    content: str
    order: int
    depth: int
    parent_uid: str | None = None
    children: list[str] = field(default_factory=list)


class CanonicalTree:
    """Depth-annotated, order-sorted arena of blocks.

    ``max_depth`` counts levels: with ``max_depth=2`` only depths 0 and 1
    are placed. ``None`` means unbounded.
    """

    def __init__(self, max_depth: int | None = None):
        self.max_depth = max_depth
        self.nodes: dict[str, TreeNode] = {}
        self.roots: list[str] = []

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, uid: object) -> bool:
        return uid in self.nodes

    def get(self, uid: str) -> TreeNode | None:
        return self.nodes.get(uid)

    def add_node(
        self,
        uid: str,
        content: str,
        order: int = 0,
        parent_uid: str | None = None,
    ) -> TreeNode | None:
        """Place a node under ``parent_uid`` (or as a root).

        Returns None when the node would exceed ``max_depth``.

        Raises:
            ValueError: uid already placed, or parent not in the tree
        """
        if uid in self.nodes:
            raise ValueError(f"Block {uid} is already placed in this tree")

        parent: TreeNode | None = None
        if parent_uid is None:
            depth = 0
        else:
            parent = self.nodes.get(parent_uid)
            if parent is None:
                raise ValueError(f"Parent {parent_uid} of block {uid} is not in this tree")
            depth = parent.depth + 1

        if self.max_depth is not None and depth >= self.max_depth:
            return None

        node = TreeNode(uid=uid, content=content, order=order, depth=depth, parent_uid=parent_uid)
        self.nodes[uid] = node
        if parent is None:
            self.roots.append(uid)
        else:
            parent.children.append(uid)
        return node

    def children(self, uid: str) -> list[TreeNode]:
        node = self.nodes.get(uid)
        if node is None:
            return []
        return [self.nodes[c] for c in node.children]

    def sort_children(self) -> None:
        """Sort roots and every sibling group by ascending order (stable)."""
        by_order = lambda child_uid: self.nodes[child_uid].order  # noqa: E731
        self.roots.sort(key=by_order)
        for node in self.nodes.values():
            node.children.sort(key=by_order)

    def walk(self) -> Iterator[TreeNode]:
        """Depth-first preorder; children follow their parent directly."""
        stack = [self.nodes[uid] for uid in reversed(self.roots)]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(self.nodes[c] for c in reversed(node.children))

    @property
    def depth(self) -> int:
        """Deepest depth present (-1 for an empty tree)."""
        return max((n.depth for n in self.nodes.values()), default=-1)

    @classmethod
    def from_chain(cls, chain: Iterable[tuple[str, str]]) -> CanonicalTree:
        """Build a single-path tree from ``(uid, content)`` pairs, top first."""
        tree = cls()
        parent_uid: str | None = None
        for uid, content in chain:
            if uid in tree:
                break
            tree.add_node(uid, content, 0, parent_uid)
            parent_uid = uid
        return tree


def normalize_rows(
    rows: Iterable[BlockRow | tuple[Any, ...]],
    anchor_uid: str | None,
    *,
    anchor_content: str | None = None,
    max_depth: int | None = None,
) -> CanonicalTree:
    """Build a tree from flat ``(uid, content, order, parent_uid)`` rows.

    With ``anchor_content`` the anchor itself becomes the single root and
    rows parented to it sit at depth 1. Without it, rows whose parent is the
    anchor (or absent) become depth-0 roots, which is how a page's top-level
    blocks are laid out. Rows whose parent never appears are dropped; when a
    uid appears twice the first row wins.
    """
    by_parent: dict[str | None, list[BlockRow]] = defaultdict(list)
    seen: set[str] = set()
    for raw in rows:
        row = raw if isinstance(raw, BlockRow) else _coerce_row(raw)
        if row.uid in seen or row.uid == anchor_uid:
            continue
        seen.add(row.uid)
        parent = row.parent_uid if row.parent_uid else None
        by_parent[anchor_uid if parent is None else parent].append(row)

    tree = CanonicalTree(max_depth=max_depth)
    top_parent: str | None = None
    if anchor_content is not None and anchor_uid is not None:
        tree.add_node(anchor_uid, anchor_content)
        top_parent = anchor_uid

    queue: deque[tuple[BlockRow, str | None]] = deque(
        (row, top_parent) for row in by_parent.get(anchor_uid, [])
    )
    while queue:
        row, parent_uid = queue.popleft()
        if tree.add_node(row.uid, row.content, row.order, parent_uid) is None:
            continue
        queue.extend((child, row.uid) for child in by_parent.get(row.uid, []))

    tree.sort_children()
    return tree


def _coerce_row(raw: tuple[Any, ...]) -> BlockRow:
    uid, content, order, parent_uid = raw
    return BlockRow(str(uid), content or "", _as_order(order), parent_uid)


def _as_order(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _pull_field(raw: dict[str, Any], name: str, namespace: str = "block") -> Any:
    """Read ``:block/name``, ``block/name`` or bare ``name`` from a pull map."""
    for key in (f":{namespace}/{name}", f"{namespace}/{name}", name):
        if key in raw:
            return raw[key]
    return None


def normalize_nested(
    raw: dict[str, Any] | list[dict[str, Any]],
    *,
    max_depth: int | None = None,
) -> CanonicalTree:
    """Build a tree from a nested pull result (or a list of them as roots).

    Missing order defaults to 0, missing content to ``""``. Nodes without a
    uid, and uids already placed, are skipped along with their subtrees.
    """
    tree = CanonicalTree(max_depth=max_depth)
    top = raw if isinstance(raw, list) else [raw]
    queue: deque[tuple[Any, str | None]] = deque((item, None) for item in top)

    while queue:
        item, parent_uid = queue.popleft()
        if not isinstance(item, dict):
            continue
        uid = _pull_field(item, "uid")
        if not uid or uid in tree:
            continue

        content = _pull_field(item, "string")
        if content is None:
            content = _pull_field(item, "title", namespace="node")

        node = tree.add_node(str(uid), content or "", _as_order(_pull_field(item, "order")), parent_uid)
        if node is None:
            continue
        for child in _pull_field(item, "children") or []:
            queue.append((child, node.uid))

    tree.sort_children()
    return tree
