"""Page envelope for history endpoints (check-in instances)."""

from pydantic import BaseModel


class PaginatedResponse(BaseModel):
    """Items for one page plus the total row count; has_more is true while offset + limit < total."""

    items: list
    total: int
    limit: int
    offset: int
    has_more: bool
