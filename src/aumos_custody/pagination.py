"""Page-based pagination for list queries.

Lists are returned in the ``{"data": [...], "hasNextPage": bool}`` shape.
``hasNextPage`` is exact: one extra item beyond the page is inspected.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Protocol, Sequence, TypeVar

from aumos_custody.errors import BadRequestError

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20
MAX_LIMIT = 100


class _Serialisable(Protocol):
    def to_dict(self) -> dict[str, object]: ...


T = TypeVar("T", bound=_Serialisable)


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of results.

    Attributes
    ----------
    data:
        Items on this page.
    has_next_page:
        True when at least one more item follows this page.
    page:
        1-based page number.
    limit:
        Maximum number of items per page.
    """

    data: list[T]
    has_next_page: bool
    page: int
    limit: int

    def to_dict(self) -> dict[str, object]:
        return {
            "data": [item.to_dict() for item in self.data],
            "hasNextPage": self.has_next_page,
        }


def check_page_params(
    page: int | None,
    limit: int | None,
    max_limit: int = MAX_LIMIT,
) -> tuple[int, int]:
    """Apply defaults and bounds to ``page`` and ``limit``.

    Raises
    ------
    BadRequestError
        When ``page < 1`` or ``limit`` is outside ``1..max_limit``.
    """
    page = DEFAULT_PAGE if page is None else page
    limit = min(DEFAULT_LIMIT, max_limit) if limit is None else limit
    if page < 1:
        raise BadRequestError("page must be at least 1.")
    if limit < 1 or limit > max_limit:
        raise BadRequestError(f"limit must be between 1 and {max_limit}.")
    return page, limit


def paginate(items: Sequence[T], page: int, limit: int) -> Page[T]:
    """Slice ``items`` into the requested page."""
    start = (page - 1) * limit
    window = list(items[start:start + limit + 1])
    return Page(
        data=window[:limit],
        has_next_page=len(window) > limit,
        page=page,
        limit=limit,
    )
