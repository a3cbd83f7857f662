from __future__ import annotations

import enum
import uuid

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow


class BrandType(str, enum.Enum):
    VEHICLE = "vehicle"
    PRODUCT = "product"


class Brand(Base):
    __tablename__ = "brands"
    __table_args__ = (
        UniqueConstraint("name", name="uq_brands_name"),
        CheckConstraint("type IN ('vehicle', 'product')", name="ck_brands_type"),
        Index("idx_brands_type", "type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    name: Mapped[str] = mapped_column(String(90), nullable=False)
    icon: Mapped[str] = mapped_column(String(500), nullable=False, default="", server_default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    type: Mapped[str] = mapped_column(String(20), nullable=False)

    created_at: Mapped[object] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at: Mapped[object] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow, server_default=func.now()
    )
