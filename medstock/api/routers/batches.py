# medstock/api/routers/batches.py
from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from medstock.api.deps import get_availability, get_batch_service, get_ledger, get_session
from medstock.schemas.batch import (
    BatchCreate,
    BatchCreatedOut,
    BatchDeletedOut,
    BatchOut,
    BatchUpdate,
    BatchUpdatedOut,
    ReconcileOut,
    StockMove,
)
from medstock.schemas.stock_ledger import TransactionOut
from medstock.services.availability import AvailabilityEngine
from medstock.services.batch_service import BatchService, batch_to_dict
from medstock.services.stock_ledger import Attribution, StockLedger

router = APIRouter(prefix="/batches", tags=["batches"])


def _out(b, availability: AvailabilityEngine, **kw) -> BatchOut:
    return BatchOut.model_validate(
        batch_to_dict(b, soon_days=availability.expiring_soon_days, **kw)
    )


@router.post("", response_model=BatchCreatedOut, status_code=status.HTTP_201_CREATED)
async def create_batch(
    body: BatchCreate,
    session: AsyncSession = Depends(get_session),
    batches: BatchService = Depends(get_batch_service),
    availability: AvailabilityEngine = Depends(get_availability),
) -> BatchCreatedOut:
    batch, opening = await batches.create_batch(
        session,
        medicine_id=body.medicine_id,
        batch_name=body.batch_name,
        quantity=body.quantity,
        expiry_date=body.expiry_date,
    )
    return BatchCreatedOut(
        batch=_out(batch, availability),
        opening_transaction=TransactionOut.model_validate(opening),
    )


# /expired must be registered before /{batch_id}
@router.get("/expired", response_model=List[BatchOut])
async def list_expired(
    as_of: Optional[date] = Query(None),
    category_id: Optional[int] = Query(None),
    session: AsyncSession = Depends(get_session),
    batches: BatchService = Depends(get_batch_service),
    availability: AvailabilityEngine = Depends(get_availability),
) -> List[BatchOut]:
    rows = await batches.list_expired(session, as_of=as_of, category_id=category_id)
    return [_out(b, availability, as_of=as_of, medicine_name=name) for b, name in rows]


@router.get("/{batch_id}", response_model=BatchOut)
async def get_batch(
    batch_id: int,
    session: AsyncSession = Depends(get_session),
    batches: BatchService = Depends(get_batch_service),
    availability: AvailabilityEngine = Depends(get_availability),
) -> BatchOut:
    return _out(await batches.get_batch(session, batch_id), availability)


@router.patch("/{batch_id}", response_model=BatchUpdatedOut)
async def update_batch(
    batch_id: int,
    body: BatchUpdate,
    session: AsyncSession = Depends(get_session),
    batches: BatchService = Depends(get_batch_service),
    availability: AvailabilityEngine = Depends(get_availability),
) -> BatchUpdatedOut:
    batch, correction = await batches.update_batch(
        session,
        batch_id,
        batch_name=body.batch_name,
        expiry_date=body.expiry_date,
        quantity=body.quantity,
        note=body.note,
    )
    return BatchUpdatedOut(
        batch=_out(batch, availability),
        correction=TransactionOut.model_validate(correction) if correction is not None else None,
    )


@router.delete("/{batch_id}", response_model=BatchDeletedOut)
async def delete_batch(
    batch_id: int,
    note: Optional[str] = Query(None, max_length=150),
    session: AsyncSession = Depends(get_session),
    batches: BatchService = Depends(get_batch_service),
) -> BatchDeletedOut:
    closing = await batches.delete_batch(session, batch_id, note=note)
    return BatchDeletedOut(
        batch_id=batch_id,
        closing_transaction=TransactionOut.model_validate(closing) if closing is not None else None,
    )


# ---------------------------
# manual ledger entries
# ---------------------------
@router.post("/{batch_id}/restock", response_model=TransactionOut)
async def restock(
    batch_id: int,
    body: StockMove,
    session: AsyncSession = Depends(get_session),
    batches: BatchService = Depends(get_batch_service),
) -> TransactionOut:
    row = await batches.restock(session, batch_id, body.quantity, note=body.note)
    return TransactionOut.model_validate(row)


@router.post("/{batch_id}/remove", response_model=TransactionOut)
async def remove_stock(
    batch_id: int,
    body: StockMove,
    session: AsyncSession = Depends(get_session),
    batches: BatchService = Depends(get_batch_service),
) -> TransactionOut:
    row = await batches.remove_stock(
        session,
        batch_id,
        body.quantity,
        note=body.note,
        attribution=Attribution(
            patient_id=body.patient_id, family_member_id=body.family_member_id
        ),
    )
    return TransactionOut.model_validate(row)


@router.get("/{batch_id}/transactions", response_model=List[TransactionOut])
async def list_for_batch(
    batch_id: int,
    session: AsyncSession = Depends(get_session),
    ledger: StockLedger = Depends(get_ledger),
) -> List[TransactionOut]:
    return [TransactionOut.model_validate(r) for r in await ledger.list_for_batch(session, batch_id)]


@router.post("/{batch_id}/reconcile", response_model=ReconcileOut)
async def reconcile_batch(
    batch_id: int,
    repair: bool = Query(False),
    session: AsyncSession = Depends(get_session),
    ledger: StockLedger = Depends(get_ledger),
) -> ReconcileOut:
    """
    Compare quantity with the ledger sum; lifts a quarantine when they agree.
    ``repair=true`` resets quantity to the ledger sum first.
    """
    return ReconcileOut.model_validate(await ledger.reconcile_batch(session, batch_id, repair=repair))
