"""Page/limit validation shared by list endpoints."""

from __future__ import annotations

from app.core.exceptions import ValidationError


def validate_page(page: int, page_size: int, max_page_size: int) -> int:
    """Reject out-of-range paging values and return the row offset."""

    if page < 1:
        raise ValidationError("Page must be a positive integer")
    if page_size < 1 or page_size > max_page_size:
        raise ValidationError(f"Limit must be between 1 and {max_page_size}")
    return (page - 1) * page_size
