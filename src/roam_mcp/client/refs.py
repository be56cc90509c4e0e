"""Block reference resolution: ``((uid))`` → the referenced block's text."""

import re
from typing import TYPE_CHECKING

from ..models import ReferenceResolutionError, RetriesExhaustedError, RoamError

if TYPE_CHECKING:
    from .api_client_core import RoamClientCore
    from .scheduler import RequestScheduler

BLOCK_REF_PATTERN = re.compile(r"\(\(([a-zA-Z0-9_-]+)\)\)")

REFS_QUERY = """[:find ?uid ?string
                 :in $ [?uid ...]
                 :where [?b :block/uid ?uid]
                        [?b :block/string ?string]]"""


def find_block_refs(text: str) -> list[str]:
    """Distinct referenced uids in order of first appearance."""
    seen: dict[str, None] = {}
    for match in BLOCK_REF_PATTERN.finditer(text or ""):
        seen.setdefault(match.group(1), None)
    return list(seen)


async def resolve_refs(
    client: "RoamClientCore",
    text: str,
    scheduler: "RequestScheduler | None" = None,
) -> str:
    """Substitute every ``((uid))`` in ``text`` with the referenced block text.

    One level only: text pulled in by a reference is not resolved again.
    References to unknown blocks are left untouched. Text without
    references returns without a remote call.

    Raises:
        ReferenceResolutionError: the lookup query failed
    """
    uids = find_block_refs(text)
    if not uids:
        return text

    try:
        rows = await client.q(REFS_QUERY, [uids], scheduler=scheduler)
    except RetriesExhaustedError:
        raise
    except RoamError as e:
        raise ReferenceResolutionError(f"Failed to resolve block references: {e.message}") from e

    replacements = {uid: string for uid, string in (rows or [])}
    return BLOCK_REF_PATTERN.sub(lambda m: replacements.get(m.group(1), m.group(0)), text)
