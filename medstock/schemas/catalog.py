from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from pydantic import Field, field_validator

from medstock.schemas.common import _Base


# ========= categories =========
class CategoryCreate(_Base):
    name: Annotated[str, Field(min_length=1, max_length=128)]

    @field_validator("name", mode="before")
    @classmethod
    def _trim(cls, v):
        return v.strip() if isinstance(v, str) else v


class CategoryRename(CategoryCreate):
    pass


class CategoryOut(_Base):
    id: int
    name: str
    created_at: Optional[datetime] = None


# ========= medicines =========
class MedicineCreate(_Base):
    """unit is descriptive only (tablet / ml / box ...)."""

    name: Annotated[str, Field(min_length=1, max_length=200)]
    unit: Annotated[str, Field(min_length=1, max_length=32)]
    category_id: Optional[int] = None

    model_config = _Base.model_config | {
        "json_schema_extra": {
            "example": {"name": "Paracetamol 500mg", "unit": "tablet", "category_id": 1}
        }
    }

    @field_validator("name", "unit", mode="before")
    @classmethod
    def _trim(cls, v):
        return v.strip() if isinstance(v, str) else v


class MedicineUpdate(_Base):
    """
    Partial update. Sending ``category_id: null`` clears the category;
    leaving it out keeps it.
    """

    name: Optional[Annotated[str, Field(min_length=1, max_length=200)]] = None
    unit: Optional[Annotated[str, Field(min_length=1, max_length=32)]] = None
    category_id: Optional[int] = None


class MedicineOut(_Base):
    id: int
    name: str
    unit: str
    category_id: Optional[int] = None
    created_at: Optional[datetime] = None


class MedicineWithStockOut(MedicineOut):
    available_quantity: int = 0
