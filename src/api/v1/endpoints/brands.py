from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError

from src.api.deps import get_brand_service, get_upload_storage
from src.crud.brand import SORT_ORDERS, brands
from src.errors import PersistenceError, ValidationError
from src.models.brand import BrandType
from src.schemas.brand import (
    BrandCreate,
    BrandEnvelope,
    BrandListData,
    BrandListEnvelope,
    BrandRead,
    BrandUpdate,
)
from src.schemas.job import StoredFile
from src.services.brand_service import DEFAULT_PER_PAGE, BrandListParams, BrandService
from src.services.uploads import LocalUploadStorage, remove_stored_file


router = APIRouter(prefix="/brands", tags=["brands"])


def _parse_brand_id(brand_id: str) -> uuid.UUID:
    try:
        # Keep it explicit to get a clean 404 for malformed UUIDs.
        return uuid.UUID(brand_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Brand not found")


def _validate_form(schema, **fields):
    try:
        return schema(**fields)
    except PydanticValidationError as e:
        # Re-raise with body locations so form errors look like JSON body errors.
        raise RequestValidationError(
            [{**err, "loc": ("body", *err["loc"])} for err in e.errors(include_url=False)]
        ) from e


async def _ensure_name_available(service: BrandService, name: str, *, brand_id: uuid.UUID | None = None) -> None:
    existing = await brands.find_by_name(service.session, name=name)
    if existing is not None and existing.id != brand_id:
        raise ValidationError("The brand already exists.", field="name")


async def _store_file(storage: LocalUploadStorage, file: UploadFile | None) -> StoredFile | None:
    if file is None or not file.filename:
        return None
    return await storage.save(file)


@asynccontextmanager
async def _discard_on_error(stored: StoredFile | None) -> AsyncIterator[None]:
    # The failed transaction took the job that would have consumed the file with it.
    try:
        yield
    except PersistenceError:
        if stored is not None:
            await remove_stored_file(stored)
        raise


@router.post("", response_model=BrandEnvelope, status_code=status.HTTP_201_CREATED)
async def create_brand_endpoint(
    name: str = Form(...),
    type: str = Form(...),
    is_active: bool = Form(True),
    file: UploadFile | None = File(None),
    service: BrandService = Depends(get_brand_service),
    storage: LocalUploadStorage = Depends(get_upload_storage),
) -> BrandEnvelope:
    data = _validate_form(BrandCreate, name=name, type=type, is_active=is_active)
    await _ensure_name_available(service, data.name)

    stored = await _store_file(storage, file)
    async with _discard_on_error(stored):
        brand = await service.create_brand(data, stored)

    return BrandEnvelope(message="Brand created successfully.", data=BrandRead.model_validate(brand))


@router.get("", response_model=BrandListEnvelope)
async def list_brands_endpoint(
    search: str | None = Query(None, description="Case-insensitive substring of the brand name"),
    is_active: bool | None = Query(None),
    type: BrandType | None = Query(None, description="vehicle | product"),
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=100, alias="perPage"),
    sort_by: str = Query("name", alias="sortBy", description="Sort field: name | createdAt"),
    order: str = Query("desc", description="Sort order: asc | desc (or 1 | -1)"),
    service: BrandService = Depends(get_brand_service),
) -> BrandListEnvelope:
    if order not in SORT_ORDERS:
        raise ValidationError(
            "Invalid sort order. Allowed values are: asc, desc, 1, -1", field="order", location="query"
        )

    result = await service.list_brands(
        BrandListParams(
            search=search,
            is_active=is_active,
            type=type,
            page=page,
            per_page=per_page,
            sort_by=sort_by,
            order=order,
        )
    )

    return BrandListEnvelope(
        message="Brand list.",
        data=BrandListData(
            brands=[BrandRead.model_validate(b) for b in result.items],
            total_items=result.total_items,
            total_pages=result.total_pages,
            page=result.page,
            per_page=result.per_page,
        ),
    )


@router.get("/{brand_id}", response_model=BrandEnvelope)
async def show_brand_endpoint(
    brand_id: str,
    service: BrandService = Depends(get_brand_service),
) -> BrandEnvelope:
    brand = await service.show_brand(_parse_brand_id(brand_id))
    return BrandEnvelope(message="Brand details.", data=BrandRead.model_validate(brand))


@router.put("/{brand_id}", response_model=BrandEnvelope)
async def update_brand_endpoint(
    brand_id: str,
    name: str = Form(...),
    type: str = Form(...),
    is_active: bool | None = Form(None),
    file: UploadFile | None = File(None),
    service: BrandService = Depends(get_brand_service),
    storage: LocalUploadStorage = Depends(get_upload_storage),
) -> BrandEnvelope:
    brand_uuid = _parse_brand_id(brand_id)
    await service.show_brand(brand_uuid)

    data = _validate_form(BrandUpdate, name=name, type=type, is_active=is_active)
    await _ensure_name_available(service, data.name, brand_id=brand_uuid)

    stored = await _store_file(storage, file)
    async with _discard_on_error(stored):
        brand = await service.update_brand(brand_uuid, data, stored)

    return BrandEnvelope(message="Brand updated successfully.", data=BrandRead.model_validate(brand))


@router.put("/{brand_id}/change-status", response_model=BrandEnvelope)
async def change_brand_status_endpoint(
    brand_id: str,
    service: BrandService = Depends(get_brand_service),
) -> BrandEnvelope:
    brand = await service.change_status(_parse_brand_id(brand_id))
    return BrandEnvelope(message="Brand status changed successfully.", data=BrandRead.model_validate(brand))


@router.delete("/{brand_id}", response_model=BrandEnvelope)
async def delete_brand_endpoint(
    brand_id: str,
    service: BrandService = Depends(get_brand_service),
) -> BrandEnvelope:
    brand = await service.delete_brand(_parse_brand_id(brand_id))
    return BrandEnvelope(message="Brand deleted successfully.", data=BrandRead.model_validate(brand))
