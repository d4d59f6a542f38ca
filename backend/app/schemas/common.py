"""Shared schema building blocks."""

from __future__ import annotations

from pydantic import BaseModel, Field


class Pagination(BaseModel):
    """Paging metadata returned alongside list results."""

    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)
    total: int = Field(..., ge=0)
    pages: int = Field(..., ge=0)
    has_more: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        pages = (total + limit - 1) // limit
        return cls(page=page, limit=limit, total=total, pages=pages, has_more=page * limit < total)
