# tests/helpers/inventory.py
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from medstock.models.batch import Batch
from medstock.models.enums import TransactionReason, TransactionType
from medstock.models.medicine import Medicine
from medstock.models.stock_transaction import StockTransaction
from medstock.services.batch_service import BatchService
from medstock.services.ledger_writer import write_ledger
from medstock.services.medicine_service import MedicineCatalog

UTC = timezone.utc

__all__ = [
    "TODAY",
    "days",
    "make_medicine",
    "make_batch",
    "seed_batch_raw",
    "batch_qty",
    "ledger_sum",
    "tx_count",
]

TODAY = date.today()


def days(n: int) -> date:
    return TODAY + timedelta(days=n)


# ------------------------------------------------------------------------------
# catalog
# ------------------------------------------------------------------------------


async def make_medicine(
    session: AsyncSession,
    name: str = "Paracetamol 500mg",
    *,
    unit: str = "tablet",
    category_id: Optional[int] = None,
) -> Medicine:
    return await MedicineCatalog().create_medicine(
        session, name=name, unit=unit, category_id=category_id
    )


# ------------------------------------------------------------------------------
# batches
# ------------------------------------------------------------------------------


async def make_batch(
    session: AsyncSession,
    medicine_id: int,
    *,
    name: str = "B-1",
    qty: int = 10,
    expires_in: int = 90,
) -> Batch:
    """Through BatchService: opening stock lands in the ledger."""
    batch, _ = await BatchService().create_batch(
        session,
        medicine_id=medicine_id,
        batch_name=name,
        quantity=qty,
        expiry_date=days(expires_in),
    )
    return batch


async def seed_batch_raw(
    session: AsyncSession,
    medicine_id: int,
    *,
    name: str,
    qty: int,
    expiry_date: date,
    created_at: Optional[datetime] = None,
) -> Batch:
    """
    Batch + opening ledger row written directly (bypasses the past-expiry
    check), for already-expired stock.
    """
    b = Batch(
        medicine_id=medicine_id,
        batch_name=name,
        quantity=qty,
        expiry_date=expiry_date,
        created_at=created_at or datetime.now(UTC),
    )
    session.add(b)
    await session.flush()
    # an empty batch has no opening movement (ledger changes are never 0)
    if qty:
        await write_ledger(
            session,
            medicine_id=medicine_id,
            batch_id=b.id,
            batch_name=name,
            type=TransactionType.ADDED.value,
            change=qty,
            after_quantity=qty,
            reason=TransactionReason.OPENING_STOCK.value,
            created_at=b.created_at,
        )
    await session.commit()
    return b


# ------------------------------------------------------------------------------
# readers (always hit the database, never the identity map)
# ------------------------------------------------------------------------------


async def batch_qty(session: AsyncSession, batch_id: int) -> int:
    row = await session.execute(select(Batch.quantity).where(Batch.id == batch_id))
    return int(row.scalar_one())


async def ledger_sum(session: AsyncSession, batch_id: int) -> int:
    row = await session.execute(
        select(func.coalesce(func.sum(StockTransaction.change), 0)).where(
            StockTransaction.batch_id == batch_id
        )
    )
    return int(row.scalar_one())


async def tx_count(session: AsyncSession, **filters) -> int:
    stmt = select(func.count(StockTransaction.id))
    for k, v in filters.items():
        stmt = stmt.where(getattr(StockTransaction, k) == v)
    return int((await session.execute(stmt)).scalar_one())
