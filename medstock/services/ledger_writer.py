from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from medstock.models.enums import TransactionReason
from medstock.models.stock_transaction import StockTransaction
from medstock.obs.metrics import ledger_appends_total


_KNOWN_REASONS = {r.value for r in TransactionReason}


def _reason_label(reason: str) -> str:
    head = reason.split(":", 1)[0].strip()
    return head if head in _KNOWN_REASONS else "manual"


async def write_ledger(
    session: AsyncSession,
    *,
    medicine_id: int,
    batch_id: int,
    batch_name: str,
    type: str,
    change: int,
    after_quantity: int,
    reason: str,
    created_at: datetime,
    patient_id: Optional[str] = None,
    family_member_id: Optional[str] = None,
    treatment_ref: Optional[str] = None,
    ref_line: Optional[int] = None,
) -> StockTransaction:
    """
    Insert one ledger row and flush it (no commit).

    Callers own the balance update and the transaction boundary; a duplicate
    (treatment_ref, ref_line, batch_id, reason) surfaces as IntegrityError on
    flush.
    """
    row = StockTransaction(
        medicine_id=int(medicine_id),
        batch_id=int(batch_id),
        batch_name=batch_name,
        type=str(type),
        change=int(change),
        after_quantity=int(after_quantity),
        reason=reason,
        patient_id=patient_id,
        family_member_id=family_member_id,
        treatment_ref=treatment_ref,
        ref_line=ref_line,
        created_at=created_at,
    )
    session.add(row)
    await session.flush()
    ledger_appends_total.labels(str(type), _reason_label(reason)).inc()
    return row
