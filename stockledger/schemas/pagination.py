"""
Paging shapes shared by the ledger and the audit queries.

Pages are 1-based; an out-of-range page is an empty slice, never an error.
"""
from math import ceil
from typing import Generic, List, Optional, Tuple, TypeVar

from pydantic import BaseModel, ConfigDict

from stockledger.config import Settings
from stockledger.exceptions import ValidationError

T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    model_config = ConfigDict(frozen=True)

    items: List[T]
    total: int
    page: int
    page_size: int
    total_pages: int

    @classmethod
    def build(cls, items: List[T], total: int, page: int, page_size: int) -> "Page[T]":
        return cls(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=ceil(total / page_size) if total else 0,
        )


def _positive(name: str, value) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ValidationError(name, f"must be a positive integer, got {value!r}")
    return value


def check_paging(page: int, page_size: int) -> Tuple[int, int]:
    """Validate page/page_size and return the matching (offset, limit)."""
    _positive("page", page)
    _positive("page_size", page_size)
    return (page - 1) * page_size, page_size


def check_limit(limit: int) -> int:
    return _positive("limit", limit)


def resolve_pagination(settings: Settings, page: Optional[int] = None,
                       limit: Optional[int] = None) -> Tuple[int, int]:
    """
    Caller-layer helper: apply the documented defaults (page=1, limit=10)
    when omitted and cap the page size at MAX_PAGE_SIZE.
    """
    page = settings.DEFAULT_PAGE if page is None else _positive("page", page)
    limit = settings.DEFAULT_PAGE_SIZE if limit is None else _positive("limit", limit)
    return page, min(limit, settings.MAX_PAGE_SIZE)
