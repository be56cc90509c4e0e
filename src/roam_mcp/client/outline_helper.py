"""Indented outline rendering and pagination for canonical block trees."""

from __future__ import annotations

from dataclasses import dataclass

from .tree_helper import CanonicalTree

DEFAULT_SPLIT_THRESHOLD = 5000
DEFAULT_HARD_CAP = 20000
# Parts are cut at a newline only if one sits in the last 20% of the window
NEWLINE_WINDOW_RATIO = 0.8


@dataclass
class PaginatedResult:
    text: str
    total_parts: int = 1
    current_part: int = 1
    split: bool = False
    truncated: bool = False


def render_tree(tree: CanonicalTree) -> str:
    """One ``"<2*depth spaces>- <content>\\n"`` line per node, depth first."""
    return "".join(f"{'  ' * node.depth}- {node.content}\n" for node in tree.walk())


def split_text_into_parts(
    text: str,
    max_size: int = DEFAULT_SPLIT_THRESHOLD,
    window_ratio: float = NEWLINE_WINDOW_RATIO,
) -> list[str]:
    """Split ``text`` into ordered parts of at most ``max_size`` characters.

    Each cut lands just after the last newline inside the window. When that
    newline is missing or falls before ``window_ratio * max_size`` the part
    is hard-cut at ``max_size`` instead, so no part is degenerately short.
    ``"".join(parts) == text`` always holds.
    """
    if max_size < 1:
        raise ValueError("max_size must be positive")

    parts: list[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= max_size:
            parts.append(remaining)
            break

        newline = remaining.rfind("\n", 0, max_size)
        if newline == -1 or newline < max_size * window_ratio:
            cut = max_size
        else:
            cut = newline + 1

        parts.append(remaining[:cut])
        remaining = remaining[cut:]

    return parts


def truncate_text(text: str, hard_cap: int) -> str:
    """Cut ``text`` to ``hard_cap`` characters and append a truncation marker."""
    if len(text) <= hard_cap:
        return text
    return f"{text[:hard_cap]}\n... [truncated: showing {hard_cap} of {len(text)} characters]\n"


def paginate(
    text: str,
    part: int = 1,
    split_threshold: int = DEFAULT_SPLIT_THRESHOLD,
    hard_cap: int = DEFAULT_HARD_CAP,
) -> PaginatedResult:
    """Select one part of ``text``.

    Text longer than ``split_threshold`` is split and ``part`` (1-based) is
    clamped into ``[1, total_parts]``. With ``split_threshold=0`` pagination
    is off, and a single block longer than ``hard_cap`` is truncated.
    """
    if split_threshold and len(text) > split_threshold:
        parts = split_text_into_parts(text, split_threshold)
        current = min(max(1, part), len(parts))
        return PaginatedResult(parts[current - 1], len(parts), current, split=True)

    if len(text) > hard_cap:
        return PaginatedResult(truncate_text(text, hard_cap), truncated=True)

    return PaginatedResult(text)
