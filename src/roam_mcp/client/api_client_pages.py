"""Roam API client - page lookup, recent-page listing and page creation."""

import asyncio
import uuid
from datetime import datetime
from typing import Any

from ..models import InvalidRequestError, PageContentLine, PageNotFoundError, RoamError
from .api_client_core import _ClientLogger
from .api_client_hierarchy import RoamClientHierarchy
from .outline_helper import render_tree
from .refs import resolve_refs
from .tree_helper import BlockRow, normalize_rows

BATCH_LIMIT = 10

ANCESTOR_RULE = """[
  [ (ancestor ?b ?a)
    [?a :block/children ?b] ]
  [ (ancestor ?b ?a)
    [?parent :block/children ?b]
    (ancestor ?parent ?a) ]
]"""

FIND_PAGE_QUERY = """[:find ?uid .
                      :in $ ?title
                      :where [?e :node/title ?title]
                             [?e :block/uid ?uid]]"""

PAGE_BLOCKS_QUERY = """[:find ?block-uid ?block-str ?order ?parent-uid
                        :in $ % ?page-title
                        :where [?page :node/title ?page-title]
                               [?block :block/string ?block-str]
                               [?block :block/uid ?block-uid]
                               [?block :block/order ?order]
                               (ancestor ?block ?page)
                               [?parent :block/children ?block]
                               [?parent :block/uid ?parent-uid]]"""

MODIFIED_SINCE_QUERY = """[:find ?title
                           :in $ ?start_of_day %
                           :where [?page :node/title ?title]
                                  (ancestor ?block ?page)
                                  [?block :edit/time ?time]
                                  [(> ?time ?start_of_day)]]"""


def capitalize_words(text: str) -> str:
    """Upper-case the first letter of every space-separated word."""
    return " ".join(word[:1].upper() + word[1:] for word in text.split(" "))


def _title_variations(title: str) -> list[str]:
    variations: list[str] = []
    for candidate in (title, capitalize_words(title), title.lower()):
        if candidate not in variations:
            variations.append(candidate)
    return variations


def check_levels(lines: list[PageContentLine]) -> None:
    """Reject a line nested more than one level below the line before it."""
    previous = 0
    for line in lines:
        if line.level > previous + 1:
            raise InvalidRequestError(f"Invalid block hierarchy: level {line.level} block has no parent")
        previous = line.level


class RoamClientPages(RoamClientHierarchy):
    """Page-level operations, paced by their own child scheduler."""

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._pages_scheduler = self.scheduler.create_child("pages")

    async def find_page_uid(self, title: str) -> str | None:
        return await self.q(FIND_PAGE_QUERY, [title], scheduler=self._pages_scheduler)

    async def fetch_page_by_title(self, title: str) -> str:
        """Return a page as ``# <title>`` followed by its indented block outline.

        The title is tried as given, with capitalized words, then lowercase.

        Raises:
            InvalidRequestError: empty title
            PageNotFoundError: no variation matches a page
        """
        if not title or not title.strip():
            raise InvalidRequestError("title is required")

        page_uid: str | None = None
        page_title = title
        for variation in _title_variations(title.strip()):
            page_uid = await self.find_page_uid(variation)
            if page_uid:
                page_title = variation
                break

        if not page_uid:
            raise PageNotFoundError(
                title,
                f'Page with title "{title}" not found (tried original, capitalized words, and lowercase)',
            )

        rows = await self.q(
            PAGE_BLOCKS_QUERY, [ANCESTOR_RULE, page_title], scheduler=self._pages_scheduler
        )
        if not rows:
            return f"{title} (no content found)"

        contents = await asyncio.gather(
            *(resolve_refs(self, row[1] or "", scheduler=self._pages_scheduler) for row in rows)
        )
        blocks = [
            BlockRow(block_uid, content, order if isinstance(order, int) else 0, parent_uid)
            for (block_uid, _string, order, parent_uid), content in zip(rows, contents)
        ]
        tree = normalize_rows(blocks, page_uid)
        outline = render_tree(tree).rstrip("\n")

        return f"# {title}\n\n{outline}"

    async def find_pages_modified_today(self, max_num_pages: int = 50) -> dict[str, Any]:
        """Titles of pages holding a block edited since local midnight."""
        start_of_day = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
        start_ms = int(start_of_day.timestamp() * 1000)

        try:
            results = await self.q(
                MODIFIED_SINCE_QUERY, [start_ms, ANCESTOR_RULE], scheduler=self._pages_scheduler
            )
        except RoamError as e:
            raise RoamError(f"Failed to find modified pages: {e.message}") from e

        pages: list[str] = []
        for (page_title,) in results or []:
            if page_title not in pages:
                pages.append(page_title)
        pages = pages[: max(0, max_num_pages)]

        if not pages:
            return {"success": True, "pages": [], "message": "No pages have been modified today"}
        return {
            "success": True,
            "pages": pages,
            "message": f"Found {len(pages)} page(s) modified today",
        }

    async def create_page(
        self,
        title: str,
        content: list[PageContentLine | dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Find or create a page, then append ``content`` lines by level.

        Level 1 lines go directly under the page; a level-N line is placed
        under the most recent level-(N-1) line.

        Raises:
            InvalidRequestError: a line's level has no parent line before it
        """
        logger = _ClientLogger("PAGES")
        page_title = str(title).strip()
        if not page_title:
            raise InvalidRequestError("title is required")

        lines = [c if isinstance(c, PageContentLine) else PageContentLine(**c) for c in content or []]
        check_levels(lines)

        page_uid = await self.find_page_uid(page_title)
        if not page_uid:
            await self.create_page_action(page_title, scheduler=self._pages_scheduler)
            page_uid = await self.find_page_uid(page_title)
            if not page_uid:
                raise RoamError(f"Failed to create page: could not find created page {page_title!r}")
            logger.info(f"Created page {page_title!r} ({page_uid})")

        level_parents: dict[int, str] = {}
        for start in range(0, len(lines), BATCH_LIMIT):
            actions = []
            for line in lines[start:start + BATCH_LIMIT]:
                parent_uid = page_uid if line.level == 1 else level_parents[line.level - 1]
                block_uid = uuid.uuid4().hex[:9]
                actions.append({
                    "action": "create-block",
                    "location": {"parent-uid": parent_uid, "order": "last"},
                    "block": {"string": line.text, "uid": block_uid},
                })
                level_parents[line.level] = block_uid
                for deeper in [lvl for lvl in level_parents if lvl > line.level]:
                    del level_parents[deeper]

            await self.batch_actions(actions, scheduler=self._pages_scheduler)

        return {"success": True, "uid": page_uid, "blocks_created": len(lines)}
