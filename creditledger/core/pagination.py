"""Pagination helpers."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class CursorPage(BaseModel, Generic[T]):
    items: list[T]
    limit: int
    next_cursor: int | None = None


def clamp_limit(limit: int, max_limit: int = 200) -> int:
    return max(1, min(limit, max_limit))
