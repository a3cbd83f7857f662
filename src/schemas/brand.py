from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from src.models.brand import BrandType


# Letters (including Spanish accented ones), digits and spaces.
BRAND_NAME_PATTERN = r"^[a-zA-Z0-9 áéíóúÁÉÍÓÚñÑüÜ]+$"
BRAND_NAME_MAX_LENGTH = 90


class BrandCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=BRAND_NAME_MAX_LENGTH, pattern=BRAND_NAME_PATTERN)
    type: BrandType
    is_active: bool = True


class BrandUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=BRAND_NAME_MAX_LENGTH, pattern=BRAND_NAME_PATTERN)
    type: BrandType
    is_active: bool | None = None


class BrandRead(BaseModel):
    id: UUID
    name: str
    icon: str
    is_active: bool
    type: BrandType

    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BrandListData(BaseModel):
    brands: list[BrandRead]
    total_items: int
    total_pages: int
    page: int
    per_page: int


class BrandEnvelope(BaseModel):
    message: str
    data: BrandRead


class BrandListEnvelope(BaseModel):
    message: str
    data: BrandListData


class BrandSnapshot(BaseModel):
    """Brand state captured at enqueue time and embedded in job payloads."""

    id: UUID
    name: str
    icon: str = ""
    is_active: bool = True
    type: BrandType

    class Config:
        from_attributes = True
