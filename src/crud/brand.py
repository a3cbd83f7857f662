from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import asc, desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.crud.base import BaseCRUD
from src.errors import InvalidSortFieldError, PersistenceError
from src.models.brand import Brand


SORT_FIELDS = {
    "name": Brand.name,
    "createdAt": Brand.created_at,
}

ASCENDING_ORDERS = {"asc", "1"}
SORT_ORDERS = {"asc", "desc", "1", "-1"}


@dataclass
class BrandPage:
    items: list[Brand]
    total_items: int
    total_pages: int


class BrandCRUD(BaseCRUD[Brand]):
    """Persistence gateway for the brands table."""

    def __init__(self) -> None:
        super().__init__(Brand)

    async def find_one(self, session: AsyncSession, *, id: UUID) -> Brand | None:
        return await self.get(session, id=id)

    async def find_by_name(self, session: AsyncSession, *, name: str) -> Brand | None:
        r = await session.execute(select(Brand).where(Brand.name == name))
        return r.scalar_one_or_none()

    async def update_by_id(self, session: AsyncSession, *, id: UUID, obj_in: Any) -> Brand | None:
        brand = await self.get(session, id=id)
        if brand is None:
            return None
        return await self.update(session, db_obj=brand, obj_in=obj_in)

    async def paginate(
        self,
        session: AsyncSession,
        *,
        criteria: list[Any],
        skip: int,
        limit: int,
        sort_by: str = "name",
        order: str = "desc",
    ) -> BrandPage:
        if sort_by not in SORT_FIELDS:
            raise InvalidSortFieldError(sort_by, tuple(SORT_FIELDS))

        column = SORT_FIELDS[sort_by]
        direction = asc if order in ASCENDING_ORDERS else desc

        try:
            stmt = (
                select(Brand)
                .where(*criteria)
                .order_by(direction(column), direction(Brand.id))
                .offset(max(skip, 0))
                .limit(max(1, limit))
            )
            items = list((await session.execute(stmt)).scalars().all())

            count_stmt = select(func.count()).select_from(Brand).where(*criteria)
            total = int((await session.execute(count_stmt)).scalar_one())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Pagination failed: {e}") from e

        return BrandPage(
            items=items,
            total_items=total,
            total_pages=math.ceil(total / limit) if limit > 0 else 0,
        )


brands = BrandCRUD()
