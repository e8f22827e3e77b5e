"""Shared schema definitions."""

from __future__ import annotations

from typing import Any, Generic, Iterable, Sequence, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    """One page of a listing plus the row count before paging."""

    items: Sequence[T]
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1)
    skip: int = Field(..., ge=0)

    @classmethod
    def from_rows(cls, rows: Iterable[Any], total: int, *, skip: int, limit: int):
        """Build a page straight from ORM rows."""

        return cls.model_validate(
            {"items": list(rows), "total": total, "skip": skip, "limit": limit},
            from_attributes=True,
        )
