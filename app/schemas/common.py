# app/schemas/common.py
from sqlmodel import SQLModel


class Pagination(SQLModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = (total + limit - 1) // limit
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


def clamp_page(page: int | None, limit: int | None, default_limit: int, max_limit: int) -> tuple[int, int]:
    """
    Normalize paging input: page >= 1, 1 <= limit <= max_limit.
    """
    page = max(1, page or 1)
    limit = limit if limit is not None else default_limit
    limit = min(max(1, limit), max_limit)
    return page, limit
