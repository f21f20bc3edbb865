# medstock/api/routers/categories.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from medstock.api.deps import get_catalog, get_session
from medstock.schemas.catalog import CategoryCreate, CategoryOut, CategoryRename
from medstock.schemas.common import OkOut
from medstock.services.medicine_service import MedicineCatalog

router = APIRouter(prefix="/categories", tags=["catalog"])


@router.post("", response_model=CategoryOut, status_code=status.HTTP_201_CREATED)
async def create_category(
    body: CategoryCreate,
    session: AsyncSession = Depends(get_session),
    catalog: MedicineCatalog = Depends(get_catalog),
) -> CategoryOut:
    cat = await catalog.create_category(session, body.name)
    return CategoryOut.model_validate(cat)


@router.get("", response_model=List[CategoryOut])
async def list_categories(
    session: AsyncSession = Depends(get_session),
    catalog: MedicineCatalog = Depends(get_catalog),
) -> List[CategoryOut]:
    return [CategoryOut.model_validate(c) for c in await catalog.list_categories(session)]


@router.patch("/{category_id}", response_model=CategoryOut)
async def rename_category(
    category_id: int,
    body: CategoryRename,
    session: AsyncSession = Depends(get_session),
    catalog: MedicineCatalog = Depends(get_catalog),
) -> CategoryOut:
    cat = await catalog.rename_category(session, category_id, body.name)
    return CategoryOut.model_validate(cat)


@router.delete("/{category_id}", response_model=OkOut)
async def delete_category(
    category_id: int,
    session: AsyncSession = Depends(get_session),
    catalog: MedicineCatalog = Depends(get_catalog),
) -> OkOut:
    """409 referenced while medicines still use the category."""
    await catalog.delete_category(session, category_id)
    return OkOut()
