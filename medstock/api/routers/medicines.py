# medstock/api/routers/medicines.py
from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from medstock.api.deps import (
    get_availability,
    get_batch_service,
    get_catalog,
    get_ledger,
    get_session,
)
from medstock.schemas.availability import AvailabilityOut
from medstock.schemas.batch import BatchOut
from medstock.schemas.catalog import (
    MedicineCreate,
    MedicineOut,
    MedicineUpdate,
    MedicineWithStockOut,
)
from medstock.schemas.common import OkOut
from medstock.schemas.stock_ledger import TransactionOut
from medstock.services.availability import AvailabilityEngine
from medstock.services.batch_service import BatchService, batch_to_dict
from medstock.services.medicine_service import MedicineCatalog
from medstock.services.stock_ledger import StockLedger

router = APIRouter(prefix="/medicines", tags=["catalog"])


@router.post("", response_model=MedicineOut, status_code=status.HTTP_201_CREATED)
async def create_medicine(
    body: MedicineCreate,
    session: AsyncSession = Depends(get_session),
    catalog: MedicineCatalog = Depends(get_catalog),
) -> MedicineOut:
    med = await catalog.create_medicine(
        session, name=body.name, unit=body.unit, category_id=body.category_id
    )
    return MedicineOut.model_validate(med)


@router.get("", response_model=List[MedicineWithStockOut])
async def list_medicines(
    category_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    as_of: Optional[date] = Query(None),
    session: AsyncSession = Depends(get_session),
    catalog: MedicineCatalog = Depends(get_catalog),
) -> List[MedicineWithStockOut]:
    rows = await catalog.list_medicines(
        session, category_id=category_id, search=search, as_of=as_of
    )
    return [
        MedicineWithStockOut(
            **MedicineOut.model_validate(m).model_dump(), available_quantity=qty
        )
        for m, qty in rows
    ]


@router.get("/{medicine_id}", response_model=MedicineOut)
async def get_medicine(
    medicine_id: int,
    session: AsyncSession = Depends(get_session),
    catalog: MedicineCatalog = Depends(get_catalog),
) -> MedicineOut:
    return MedicineOut.model_validate(await catalog.get_medicine(session, medicine_id))


@router.patch("/{medicine_id}", response_model=MedicineOut)
async def update_medicine(
    medicine_id: int,
    body: MedicineUpdate,
    session: AsyncSession = Depends(get_session),
    catalog: MedicineCatalog = Depends(get_catalog),
) -> MedicineOut:
    kwargs = {"name": body.name, "unit": body.unit}
    if "category_id" in body.model_fields_set:
        kwargs["category_id"] = body.category_id
    med = await catalog.update_medicine(session, medicine_id, **kwargs)
    return MedicineOut.model_validate(med)


@router.delete("/{medicine_id}", response_model=OkOut)
async def delete_medicine(
    medicine_id: int,
    session: AsyncSession = Depends(get_session),
    catalog: MedicineCatalog = Depends(get_catalog),
) -> OkOut:
    """409 referenced once the medicine has batches or ledger rows."""
    await catalog.delete_medicine(session, medicine_id)
    return OkOut()


# ---------------------------
# stock views of one medicine
# ---------------------------
@router.get("/{medicine_id}/batches", response_model=List[BatchOut])
async def get_batches_for_medicine(
    medicine_id: int,
    include_empty: bool = Query(True),
    as_of: Optional[date] = Query(None),
    session: AsyncSession = Depends(get_session),
    batches: BatchService = Depends(get_batch_service),
    availability: AvailabilityEngine = Depends(get_availability),
) -> List[BatchOut]:
    rows = await batches.get_batches_for_medicine(
        session, medicine_id, include_empty=include_empty
    )
    soon = availability.expiring_soon_days
    return [BatchOut.model_validate(batch_to_dict(b, as_of=as_of, soon_days=soon)) for b in rows]


@router.get("/{medicine_id}/availability", response_model=AvailabilityOut)
async def get_availability_report(
    medicine_id: int,
    as_of: Optional[date] = Query(None),
    session: AsyncSession = Depends(get_session),
    availability: AvailabilityEngine = Depends(get_availability),
) -> AvailabilityOut:
    report = await availability.availability_report(session, medicine_id, as_of=as_of)
    return AvailabilityOut.model_validate(report.to_dict())


@router.get("/{medicine_id}/transactions", response_model=List[TransactionOut])
async def list_for_medicine(
    medicine_id: int,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    ledger: StockLedger = Depends(get_ledger),
) -> List[TransactionOut]:
    rows = await ledger.list_for_medicine(session, medicine_id, limit=limit, offset=offset)
    return [TransactionOut.model_validate(r) for r in rows]
