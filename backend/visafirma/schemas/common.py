from datetime import datetime
from math import ceil
from typing import Generic, List, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class Timestamped(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    created_at: datetime
    updated_at: datetime | None = None


class IDModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID


class Page(BaseModel, Generic[T]):
    data: List[T]
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def build(cls, data: List[T], *, total: int, page: int, limit: int) -> "Page[T]":
        return cls(data=data, total=total, page=page, limit=limit, total_pages=ceil(total / limit) if limit else 0)
