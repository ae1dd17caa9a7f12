from typing import Any, Generic, Sequence, TypeVar

from fastapi import Query
from pydantic import BaseModel, Field
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar('T')

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class PageParams(BaseModel):
    """Page request"""

    limit: int = Field(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, description='Items per page')
    offset: int = Field(0, ge=0, description='Items to skip')


class PageData(BaseModel, Generic[T]):
    """One page of results"""

    items: list[T]
    total: int
    limit: int
    offset: int


def page_params(
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, description='Items per page'),
    offset: int = Query(0, ge=0, description='Items to skip'),
) -> PageParams:
    """Page query parameters"""
    return PageParams(limit=limit, offset=offset)


async def paginate(db: AsyncSession, stmt: Select, params: PageParams) -> tuple[Sequence[Any], int]:
    """
    Run ``stmt`` for one page and count the full result.

    Returns:
        The page items and the total count.
    """
    total = (await db.execute(select(func.count()).select_from(stmt.order_by(None).subquery()))).scalar_one()
    result = await db.execute(stmt.limit(params.limit).offset(params.offset))
    return result.scalars().all(), total


def page_data(items: list[Any], total: int, params: PageParams) -> dict[str, Any]:
    return {'items': items, 'total': total, 'limit': params.limit, 'offset': params.offset}
