from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.crud.brand import brands
from src.errors import NotFoundError, PersistenceError
from src.models.brand import Brand, BrandType
from src.schemas.brand import BrandCreate, BrandSnapshot, BrandUpdate
from src.schemas.job import DeleteFilePayload, StoredFile, UploadFilePayload
from src.worker.queue import JobHandle, TaskQueue

logger = logging.getLogger(__name__)


DEFAULT_PER_PAGE = 7


@dataclass
class BrandListParams:
    search: str | None = None
    is_active: bool | None = None
    type: BrandType | None = None
    page: int = 1
    per_page: int = DEFAULT_PER_PAGE
    sort_by: str = "name"
    order: str = "desc"


@dataclass
class BrandListResult:
    items: list[Brand]
    total_items: int
    total_pages: int
    page: int
    per_page: int


def _contains_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class BrandService:
    """Brand use cases: persistence first, icon side effects through the job queue."""

    def __init__(self, session: AsyncSession, *, queue: TaskQueue) -> None:
        self.session = session
        self.queue = queue

    @asynccontextmanager
    async def _db_errors(self, action: str) -> AsyncIterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Could not {action}: {e}") from e

    async def _get_or_404(self, brand_id: UUID) -> Brand:
        brand = await brands.find_one(self.session, id=brand_id)
        if brand is None:
            raise NotFoundError("Brand")
        return brand

    async def _enqueue_upload(self, brand: Brand, file: StoredFile, *, after: JobHandle | None = None) -> JobHandle:
        payload = UploadFilePayload(file=file, brand=BrandSnapshot.model_validate(brand))
        return await self.queue.enqueue(self.session, payload, after=after)

    async def create_brand(self, data: BrandCreate, file: StoredFile | None = None) -> Brand:
        async with self._db_errors("create brand"):
            brand = await brands.create(
                self.session,
                obj_in={
                    "name": data.name,
                    "type": data.type.value,
                    "is_active": data.is_active,
                    "icon": "",
                },
            )
            if file is not None:
                await self._enqueue_upload(brand, file)

            await self.session.commit()
            await self.session.refresh(brand)

        if file is not None:
            self.queue.notify()

        logger.info("brand created brand_id=%s icon_pending=%s", brand.id, file is not None)
        return brand

    async def list_brands(self, params: BrandListParams) -> BrandListResult:
        criteria: list[Any] = []
        if params.search:
            criteria.append(Brand.name.ilike(_contains_pattern(params.search), escape="\\"))
        if params.is_active is not None:
            criteria.append(Brand.is_active == params.is_active)
        if params.type is not None:
            criteria.append(Brand.type == params.type.value)

        skip = (params.page - 1) * params.per_page
        page = await brands.paginate(
            self.session,
            criteria=criteria,
            skip=skip,
            limit=params.per_page,
            sort_by=params.sort_by,
            order=params.order,
        )

        return BrandListResult(
            items=page.items,
            total_items=page.total_items,
            total_pages=page.total_pages,
            page=params.page,
            per_page=params.per_page,
        )

    async def show_brand(self, brand_id: UUID) -> Brand:
        async with self._db_errors("load brand"):
            return await self._get_or_404(brand_id)

    async def update_brand(self, brand_id: UUID, data: BrandUpdate, file: StoredFile | None = None) -> Brand:
        async with self._db_errors("update brand"):
            brand = await self._get_or_404(brand_id)

            patch: dict[str, Any] = {"name": data.name, "type": data.type.value}
            if data.is_active is not None:
                patch["is_active"] = data.is_active

            brand = await brands.update(self.session, db_obj=brand, obj_in=patch)

            if file is not None:
                # The upload waits for the old icon's deletion to finish.
                previous = None
                if brand.icon:
                    previous = await self.queue.enqueue(self.session, DeleteFilePayload(url=brand.icon))
                await self._enqueue_upload(brand, file, after=previous)

            await self.session.commit()
            await self.session.refresh(brand)

        if file is not None:
            self.queue.notify()

        logger.info("brand updated brand_id=%s icon_pending=%s", brand.id, file is not None)
        return brand

    async def delete_brand(self, brand_id: UUID) -> Brand:
        async with self._db_errors("delete brand"):
            brand = await self._get_or_404(brand_id)

            if brand.icon:
                await self.queue.enqueue(self.session, DeleteFilePayload(url=brand.icon))

            await brands.delete(self.session, db_obj=brand)
            await self.session.commit()

        if brand.icon:
            self.queue.notify()

        logger.info("brand deleted brand_id=%s", brand.id)
        return brand

    async def change_status(self, brand_id: UUID) -> Brand:
        async with self._db_errors("change brand status"):
            brand = await self._get_or_404(brand_id)
            brand = await brands.update(self.session, db_obj=brand, obj_in={"is_active": not brand.is_active})
            await self.session.commit()
            await self.session.refresh(brand)

        return brand
