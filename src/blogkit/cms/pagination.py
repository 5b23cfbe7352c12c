"""Over-fetch pagination and argument checks shared by every provider.

Asking the backend for ``limit + 1`` rows tells us whether another page
exists without a separate count query, whether or not the backend can
report totals.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from blogkit.errors import InvalidArgumentError

T = TypeVar("T")

MAX_PAGE_SIZE = 50


def clamp_limit(limit: int, ceiling: int = MAX_PAGE_SIZE) -> int:
    """Clamp a requested page size into ``[1, ceiling]``."""
    return min(max(int(limit), 1), ceiling)


def require_page(page: int) -> int:
    """Pages are 1-based; anything lower is rejected before any I/O."""
    if page < 1:
        raise InvalidArgumentError(f"page must be >= 1, got {page}")
    return page


def page_offset(page: int, limit: int) -> int:
    return (page - 1) * limit


def split_page(rows: Sequence[T], limit: int) -> tuple[list[T], bool]:
    """Slice an over-fetched batch down to ``limit`` and report whether more exist."""
    return list(rows[:limit]), len(rows) > limit


async def paginate(
    fetch_page: Callable[[int], Awaitable[Sequence[T]]],
    limit: int,
) -> tuple[list[T], bool]:
    """Run ``fetch_page(limit + 1)`` and split the result.

    ``fetch_page`` receives the number of rows to request and must apply the
    page offset itself.
    """
    rows = await fetch_page(limit + 1)
    return split_page(rows, limit)


def parse_id(value: str | None, kind: str = "post") -> int:
    """Convert a canonical string id to a backend's integer key."""
    try:
        return int(str(value).strip())
    except ValueError:
        raise InvalidArgumentError(f"invalid {kind} id {value!r}: expected an integer") from None


def require_slug(slug: str) -> str:
    if not slug or not slug.strip():
        raise InvalidArgumentError("slug must not be empty")
    return slug
