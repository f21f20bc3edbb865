from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medstock.core.errors import InsufficientStockError, InvalidArgumentError
from medstock.models.batch import Batch
from medstock.models.medicine import Medicine


@dataclass(frozen=True)
class BatchAllocation:
    batch_id: int
    quantity: int
    batch_name: Optional[str] = None
    expiry_date: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "quantity": self.quantity,
            "batch_name": self.batch_name,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
        }


def shortage_detail(
    *,
    medicine_id: int,
    medicine_name: Optional[str],
    requested_qty: int,
    available_qty: int,
) -> Dict[str, Any]:
    return {
        "medicine_id": int(medicine_id),
        "medicine_name": medicine_name,
        "requested_qty": int(requested_qty),
        "available_qty": int(available_qty),
        "short_qty": max(0, int(requested_qty) - int(available_qty)),
    }


def _created_key(ts: Optional[datetime]) -> datetime:
    # SQLite hands back naive values, fresh objects carry tz-aware ones
    if ts is None:
        return datetime.min
    if ts.tzinfo is not None:
        return ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


def fefo_order(batches: Iterable[Batch]) -> List[Batch]:
    """
    FEFO order: expiry_date ASC, then creation order (created_at, id) so that
    equal expiry dates always resolve the same way.
    """
    return sorted(batches, key=lambda b: (b.expiry_date, _created_key(b.created_at), b.id))


def plan_fefo(
    batches: Sequence[Batch],
    need: int,
    as_of: date,
) -> Tuple[List[BatchAllocation], int]:
    """
    Greedy FEFO slicing over ``batches`` (pure, no I/O).

    Expired and empty batches are skipped. Returns (plan, remaining); a
    remaining > 0 means the candidates cannot cover ``need``.
    """
    remaining = int(need)
    plan: List[BatchAllocation] = []

    for b in fefo_order(batches):
        if remaining <= 0:
            break
        if b.expiry_date < as_of or int(b.quantity or 0) <= 0:
            continue
        take = min(remaining, int(b.quantity))
        plan.append(
            BatchAllocation(
                batch_id=int(b.id),
                quantity=take,
                batch_name=b.batch_name,
                expiry_date=b.expiry_date,
            )
        )
        remaining -= take

    return plan, remaining


class FefoAllocator:
    """
    First-expire-first-out allocation.

    Candidates are the medicine's batches with expiry_date >= as_of and
    quantity > 0, ordered by (expiry_date, created_at, id). The plan takes
    from the earliest-expiring batch until the line is satisfied and splits
    across batches as needed.

    With ``lock=True`` the candidate rows are read FOR UPDATE (PostgreSQL);
    callers that mutate must already hold the in-process batch locks.
    """

    async def candidates(
        self,
        session: AsyncSession,
        *,
        medicine_id: int,
        as_of: date,
        lock: bool = False,
        only_ids: Optional[Iterable[int]] = None,
    ) -> List[Batch]:
        stmt = (
            select(Batch)
            .where(
                Batch.medicine_id == medicine_id,
                Batch.expiry_date >= as_of,
                Batch.quantity > 0,
            )
            .order_by(Batch.expiry_date.asc(), Batch.created_at.asc(), Batch.id.asc())
        )
        if only_ids is not None:
            stmt = stmt.where(Batch.id.in_(list(only_ids)))
        if lock:
            stmt = stmt.with_for_update()
            # re-read: identity map may hold values from before the lock
            stmt = stmt.execution_options(populate_existing=True)
        return list((await session.execute(stmt)).scalars().all())

    async def allocate(
        self,
        session: AsyncSession,
        *,
        medicine_id: int,
        requested_quantity: int,
        as_of: Optional[date] = None,
        lock: bool = False,
    ) -> List[BatchAllocation]:
        """
        Plan ``requested_quantity`` of one medicine.

        Raises InsufficientStockError when the non-expired stock is short.
        """
        if int(requested_quantity) <= 0:
            raise InvalidArgumentError(
                "requested_quantity must be positive",
                context={"medicine_id": medicine_id, "requested_quantity": requested_quantity},
            )
        day = as_of or date.today()
        rows = await self.candidates(session, medicine_id=medicine_id, as_of=day, lock=lock)
        plan, remaining = plan_fefo(rows, int(requested_quantity), day)

        if remaining > 0:
            name = (
                await session.execute(select(Medicine.name).where(Medicine.id == medicine_id))
            ).scalar_one_or_none()
            raise InsufficientStockError(
                [
                    shortage_detail(
                        medicine_id=medicine_id,
                        medicine_name=name,
                        requested_qty=int(requested_quantity),
                        available_qty=int(requested_quantity) - remaining,
                    )
                ],
                phase="allocating",
            )
        return plan
