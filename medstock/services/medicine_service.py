from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from medstock.core.errors import (
    DuplicateError,
    InvalidArgumentError,
    NotFoundError,
    ReferencedError,
)
from medstock.core.tx import tx_commit
from medstock.models.batch import Batch
from medstock.models.category import MedicineCategory
from medstock.models.medicine import Medicine
from medstock.models.stock_transaction import StockTransaction
from medstock.services.availability import AvailabilityEngine

log = logging.getLogger("medstock.catalog")

_UNSET: Any = object()


def _text(value: Optional[str], field: str, max_len: int) -> str:
    v = (value or "").strip()
    if not v:
        raise InvalidArgumentError(f"{field} is required")
    if len(v) > max_len:
        raise InvalidArgumentError(f"{field} is longer than {max_len} characters")
    return v


class MedicineCatalog:
    """
    Categories + medicines (reference data).

    Nothing here touches quantities. Deletes are refused while anything
    references the row; there is no cascade.
    """

    def __init__(self, availability: Optional[AvailabilityEngine] = None) -> None:
        self.availability = availability or AvailabilityEngine()

    # ------------------------------------------------------------------
    # categories
    # ------------------------------------------------------------------

    async def create_category(self, session: AsyncSession, name: str) -> MedicineCategory:
        n = _text(name, "name", 128)
        await self._ensure_category_name_free(session, n)
        async with tx_commit(session):
            try:
                cat = MedicineCategory(name=n)
                session.add(cat)
                await session.flush()
            except IntegrityError as e:
                raise DuplicateError(f"category '{n}' already exists") from e
        await session.refresh(cat)
        log.info("category created id=%s name=%s", cat.id, cat.name)
        return cat

    async def list_categories(self, session: AsyncSession) -> List[MedicineCategory]:
        rows = await session.execute(select(MedicineCategory).order_by(MedicineCategory.name.asc()))
        return list(rows.scalars().all())

    async def get_category(self, session: AsyncSession, category_id: int) -> MedicineCategory:
        cat = await session.get(MedicineCategory, int(category_id))
        if cat is None:
            raise NotFoundError("category", category_id)
        return cat

    async def rename_category(
        self, session: AsyncSession, category_id: int, name: str
    ) -> MedicineCategory:
        n = _text(name, "name", 128)
        cat = await self.get_category(session, category_id)
        if n == cat.name:
            return cat
        await self._ensure_category_name_free(session, n)
        async with tx_commit(session):
            try:
                cat.name = n
                await session.flush()
            except IntegrityError as e:
                raise DuplicateError(f"category '{n}' already exists") from e
        return cat

    async def delete_category(self, session: AsyncSession, category_id: int) -> None:
        cat = await self.get_category(session, category_id)
        used = (
            await session.execute(
                select(func.count(Medicine.id)).where(Medicine.category_id == cat.id)
            )
        ).scalar_one()
        if used:
            raise ReferencedError(
                f"category {cat.id} is used by {used} medicine(s)",
                context={"category_id": cat.id, "medicines": int(used)},
            )
        async with tx_commit(session):
            await session.delete(cat)
        log.info("category deleted id=%s", category_id)

    async def _ensure_category_name_free(self, session: AsyncSession, name: str) -> None:
        hit = (
            await session.execute(
                select(MedicineCategory.id).where(MedicineCategory.name == name).limit(1)
            )
        ).scalar_one_or_none()
        if hit is not None:
            raise DuplicateError(f"category '{name}' already exists", context={"name": name})

    # ------------------------------------------------------------------
    # medicines
    # ------------------------------------------------------------------

    async def create_medicine(
        self,
        session: AsyncSession,
        *,
        name: str,
        unit: str,
        category_id: Optional[int] = None,
    ) -> Medicine:
        n = _text(name, "name", 200)
        u = _text(unit, "unit", 32)
        if category_id is not None:
            await self.get_category(session, category_id)
        async with tx_commit(session):
            med = Medicine(name=n, unit=u, category_id=category_id)
            session.add(med)
            await session.flush()
        await session.refresh(med)
        log.info("medicine created id=%s name=%s unit=%s", med.id, med.name, med.unit)
        return med

    async def get_medicine(self, session: AsyncSession, medicine_id: int) -> Medicine:
        med = await session.get(Medicine, int(medicine_id))
        if med is None:
            raise NotFoundError("medicine", medicine_id)
        return med

    async def list_medicines(
        self,
        session: AsyncSession,
        *,
        category_id: Optional[int] = None,
        search: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> List[Tuple[Medicine, int]]:
        """(medicine, available quantity) ordered by name."""
        stmt = select(Medicine)
        if category_id is not None:
            stmt = stmt.where(Medicine.category_id == int(category_id))
        if search:
            stmt = stmt.where(func.lower(Medicine.name).like(f"%{search.strip().lower()}%"))
        stmt = stmt.order_by(Medicine.name.asc(), Medicine.id.asc())
        meds = list((await session.execute(stmt)).scalars().all())
        levels = await self.availability.available_many(
            session, [m.id for m in meds], as_of=as_of
        )
        return [(m, levels.get(m.id, 0)) for m in meds]

    async def update_medicine(
        self,
        session: AsyncSession,
        medicine_id: int,
        *,
        name: Optional[str] = None,
        category_id: Any = _UNSET,
        unit: Optional[str] = None,
    ) -> Medicine:
        """
        name / category edits always allowed (``category_id=None`` clears it);
        unit only while no batch or transaction references the medicine.
        """
        med = await self.get_medicine(session, medicine_id)
        new_name = _text(name, "name", 200) if name is not None else None
        new_unit = _text(unit, "unit", 32) if unit is not None else None

        if category_id is not _UNSET and category_id is not None:
            await self.get_category(session, category_id)
        if new_unit is not None and new_unit != med.unit:
            refs = await self._reference_counts(session, med.id)
            if any(refs.values()):
                raise ReferencedError(
                    f"unit of medicine {med.id} is fixed once stock exists",
                    context={"medicine_id": med.id, **refs},
                )

        async with tx_commit(session):
            if new_name is not None:
                med.name = new_name
            if category_id is not _UNSET:
                med.category_id = category_id
            if new_unit is not None:
                med.unit = new_unit
            await session.flush()
        await session.refresh(med)
        return med

    async def delete_medicine(self, session: AsyncSession, medicine_id: int) -> None:
        med = await self.get_medicine(session, medicine_id)
        refs = await self._reference_counts(session, med.id)
        if any(refs.values()):
            raise ReferencedError(
                f"medicine {med.id} has stock history and cannot be deleted",
                context={"medicine_id": med.id, **refs},
            )
        async with tx_commit(session):
            await session.delete(med)
        log.info("medicine deleted id=%s", medicine_id)

    async def _reference_counts(self, session: AsyncSession, medicine_id: int) -> Dict[str, int]:
        batches = (
            await session.execute(select(func.count(Batch.id)).where(Batch.medicine_id == medicine_id))
        ).scalar_one()
        txs = (
            await session.execute(
                select(func.count(StockTransaction.id)).where(
                    StockTransaction.medicine_id == medicine_id
                )
            )
        ).scalar_one()
        return {"batches": int(batches), "transactions": int(txs)}
