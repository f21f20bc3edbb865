from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from medstock.core.errors import (
    ConflictError,
    InsufficientStockError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    StockError,
)
from medstock.core.locks import BatchLockRegistry, get_lock_registry
from medstock.core.tx import tx_commit
from medstock.models.batch import Batch
from medstock.models.enums import TransactionReason, TransactionType
from medstock.models.medicine import Medicine
from medstock.models.stock_transaction import StockTransaction
from medstock.obs.metrics import ledger_mismatch_total
from medstock.services.fefo_allocator import shortage_detail
from medstock.services.ledger_writer import write_ledger
from medstock.services.stock_events import StockEventWriter

UTC = timezone.utc
log = logging.getLogger("medstock.ledger")


@dataclass(frozen=True)
class Attribution:
    """Who a ledger row is traced to (both optional)."""

    patient_id: Optional[str] = None
    family_member_id: Optional[str] = None


def parse_type(type: Union[str, TransactionType]) -> TransactionType:
    """Stored value ("ADDED") or alias name ("DISPENSE")."""
    raw = str(type).strip().upper()
    try:
        return TransactionType(raw)
    except ValueError:
        pass
    try:
        return TransactionType[raw]
    except KeyError:
        raise InvalidArgumentError(f"unknown transaction type: {type}") from None


def _check_change(change: int, type: Union[str, TransactionType]) -> TransactionType:
    t = parse_type(type)
    c = int(change)
    if c == 0:
        raise InvalidArgumentError("change must be non-zero")
    if t == TransactionType.ADDED and c < 0:
        raise InvalidArgumentError("ADDED transactions need a positive change")
    if t == TransactionType.REMOVED and c > 0:
        raise InvalidArgumentError("REMOVED transactions need a negative change")
    return t


def _check_reason(reason: Optional[str]) -> str:
    r = (reason or "").strip()
    if not r:
        raise InvalidArgumentError("reason is required")
    if len(r) > 200:
        raise InvalidArgumentError("reason is longer than 200 characters")
    return r


def compose_reason(code: Union[str, TransactionReason], note: Optional[str] = None) -> str:
    """"restock" / "restock: delivery 4411" (code first, metrics group on it)."""
    head = str(code)
    note = (note or "").strip()
    if not note or note == head:
        return head
    return f"{head}: {note}"[:200]


def transaction_to_dict(
    row: StockTransaction, *, medicine_name: Optional[str] = None
) -> Dict[str, Any]:
    out = {
        "id": row.id,
        "medicine_id": row.medicine_id,
        "batch_id": row.batch_id,
        "batch_name": row.batch_name,
        "change": row.change,
        "type": row.type,
        "reason": row.reason,
        "after_quantity": row.after_quantity,
        "patient_id": row.patient_id,
        "family_member_id": row.family_member_id,
        "treatment_ref": row.treatment_ref,
        "ref_line": row.ref_line,
        "created_at": row.created_at,
    }
    if medicine_name is not None:
        out["medicine_name"] = medicine_name
    return out


class StockLedger:
    """
    The one mutation path into batch quantities.

    append():
      - validates arguments, resolves the batch (NotFound) before any lock
      - holds the batch lock, re-reads the row (FOR UPDATE on PG),
        checks quantity + change >= 0, updates the balance, writes the row
      - commits before the lock is released
      - any failure leaves the batch untouched

    apply_locked() is the same step without lock / commit, for callers that
    already hold the locks of a wider scope (prescriptions, batch admin).
    """

    def __init__(
        self,
        locks: Optional[BatchLockRegistry] = None,
        events: Optional[StockEventWriter] = None,
    ) -> None:
        self._locks = locks
        self.events = events or StockEventWriter()

    @property
    def locks(self) -> BatchLockRegistry:
        return self._locks or get_lock_registry()

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    async def get_batch(self, session: AsyncSession, batch_id: int) -> Batch:
        b = await session.get(Batch, int(batch_id))
        if b is None:
            raise NotFoundError("batch", batch_id)
        return b

    async def reload_for_update(self, session: AsyncSession, batch_id: int) -> Batch:
        """Fresh row under lock; NotFound if it vanished meanwhile."""
        stmt = (
            select(Batch)
            .where(Batch.id == int(batch_id))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        b = (await session.execute(stmt)).scalar_one_or_none()
        if b is None:
            raise NotFoundError("batch", batch_id)
        return b

    async def list_for_medicine(
        self,
        session: AsyncSession,
        medicine_id: int,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> List[StockTransaction]:
        """Newest first."""
        if await session.get(Medicine, int(medicine_id)) is None:
            raise NotFoundError("medicine", medicine_id)
        stmt = (
            select(StockTransaction)
            .where(StockTransaction.medicine_id == int(medicine_id))
            .order_by(StockTransaction.created_at.desc(), StockTransaction.id.desc())
            .offset(max(0, int(offset)))
            .limit(max(1, min(int(limit), 1000)))
        )
        return list((await session.execute(stmt)).scalars().all())

    async def list_for_batch(self, session: AsyncSession, batch_id: int) -> List[StockTransaction]:
        """
        Newest first. Rows of a deleted batch stay listable; NotFound only
        when neither the batch nor any row exists.
        """
        stmt = (
            select(StockTransaction)
            .where(StockTransaction.batch_id == int(batch_id))
            .order_by(StockTransaction.created_at.desc(), StockTransaction.id.desc())
        )
        rows = list((await session.execute(stmt)).scalars().all())
        if not rows and await session.get(Batch, int(batch_id)) is None:
            raise NotFoundError("batch", batch_id)
        return rows

    async def list_transactions(
        self,
        session: AsyncSession,
        *,
        type: Optional[Union[str, TransactionType]] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """
        Global listing for the stock screen: optional type filter, free-text
        search over medicine name and reason, newest first.
        """
        conds = []
        if type is not None:
            conds.append(StockTransaction.type == parse_type(type).value)
        if search:
            pattern = f"%{search.strip().lower()}%"
            conds.append(
                or_(
                    func.lower(Medicine.name).like(pattern),
                    func.lower(StockTransaction.reason).like(pattern),
                )
            )

        base = select(StockTransaction, Medicine.name).join(
            Medicine, Medicine.id == StockTransaction.medicine_id
        )
        if conds:
            base = base.where(*conds)

        total = (
            await session.execute(select(func.count()).select_from(base.subquery()))
        ).scalar_one()

        size = max(1, min(500, int(limit)))
        rows = (
            await session.execute(
                base.order_by(StockTransaction.created_at.desc(), StockTransaction.id.desc())
                .offset(max(0, int(offset)))
                .limit(size)
            )
        ).all()
        return {
            "total": int(total),
            "items": [transaction_to_dict(tx, medicine_name=name) for tx, name in rows],
        }

    async def ledger_sum(self, session: AsyncSession, batch_id: int) -> int:
        total = (
            await session.execute(
                select(func.coalesce(func.sum(StockTransaction.change), 0)).where(
                    StockTransaction.batch_id == int(batch_id)
                )
            )
        ).scalar_one()
        return int(total or 0)

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    async def apply_locked(
        self,
        session: AsyncSession,
        batch: Batch,
        *,
        change: int,
        type: Union[str, TransactionType],
        reason: str,
        attribution: Optional[Attribution] = None,
        treatment_ref: Optional[str] = None,
        ref_line: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> StockTransaction:
        """
        Balance update + ledger row for a batch whose lock the caller holds
        and which was re-read under that lock. No commit.
        """
        t = _check_change(change, type)
        before = int(batch.quantity)
        after = before + int(change)
        if after < 0:
            raise InsufficientStockError(
                [
                    shortage_detail(
                        medicine_id=batch.medicine_id,
                        medicine_name=None,
                        requested_qty=-int(change),
                        available_qty=before,
                    )
                ],
                phase="committing",
            )

        batch.quantity = after
        attr = attribution or Attribution()
        return await write_ledger(
            session,
            medicine_id=batch.medicine_id,
            batch_id=batch.id,
            batch_name=batch.batch_name,
            type=t.value,
            change=int(change),
            after_quantity=after,
            reason=reason,
            created_at=now or datetime.now(UTC),
            patient_id=attr.patient_id,
            family_member_id=attr.family_member_id,
            treatment_ref=treatment_ref,
            ref_line=ref_line,
        )

    async def append(
        self,
        session: AsyncSession,
        batch_id: int,
        change: int,
        type: Union[str, TransactionType],
        reason: str,
        attribution: Optional[Attribution] = None,
        *,
        as_of: Optional[date] = None,
    ) -> StockTransaction:
        _check_change(change, type)
        reason = _check_reason(reason)
        await self.get_batch(session, batch_id)

        async with self.locks.hold([int(batch_id)]):
            async with tx_commit(session):
                try:
                    batch = await self.reload_for_update(session, batch_id)
                    row = await self.apply_locked(
                        session,
                        batch,
                        change=change,
                        type=type,
                        reason=reason,
                        attribution=attribution,
                    )
                    day = as_of or date.today()
                    if int(change) < 0 and not batch.is_expired(day):
                        await self.events.emit_out_of_stock(
                            session, [batch.medicine_id], as_of=day, cause="ledger"
                        )
                except StockError:
                    raise
                except IntegrityError as e:
                    raise ConflictError(f"ledger write rejected: {e.orig}") from e
                except SQLAlchemyError as e:
                    raise InternalError(f"storage failure during ledger append: {e}") from e

        log.info(
            "ledger %s batch=%s change=%s after=%s reason=%s",
            row.type,
            row.batch_id,
            row.change,
            row.after_quantity,
            row.reason,
        )
        return row

    # ------------------------------------------------------------------
    # reconciliation
    # ------------------------------------------------------------------

    async def reconcile_batch(
        self,
        session: AsyncSession,
        batch_id: int,
        *,
        repair: bool = False,
    ) -> Dict[str, Any]:
        """
        Compare quantity with SUM(change) of the batch's ledger rows.

        Consistent → any quarantine on the batch is lifted.
        Inconsistent + repair → quantity is reset to the ledger sum (the
        ledger is the source of truth), then the quarantine is lifted.
        """
        await self.get_batch(session, batch_id)
        async with self.locks.hold([int(batch_id)], allow_quarantined=True):
            async with tx_commit(session):
                batch = await self.reload_for_update(session, batch_id)
                total = await self.ledger_sum(session, batch_id)
                quantity = int(batch.quantity)
                consistent = quantity == total
                repaired = False
                if not consistent:
                    ledger_mismatch_total.inc()
                    log.error(
                        "ledger mismatch batch=%s quantity=%s ledger_sum=%s",
                        batch_id,
                        quantity,
                        total,
                    )
                    if repair:
                        if total < 0:
                            raise InternalError(
                                f"ledger sum for batch {batch_id} is negative ({total})"
                            )
                        batch.quantity = total
                        repaired = True
                        log.warning("batch %s quantity reset to ledger sum %s", batch_id, total)

        lifted = False
        if consistent or repaired:
            lifted = self.locks.release_quarantine(int(batch_id))
        return {
            "batch_id": int(batch_id),
            "quantity": total if repaired else quantity,
            "ledger_sum": total,
            "consistent": consistent,
            "repaired": repaired,
            "quarantine_lifted": lifted,
        }

    async def reconcile_all(self, session: AsyncSession) -> List[Dict[str, Any]]:
        """Every batch whose quantity disagrees with its ledger."""
        sums = (
            select(
                StockTransaction.batch_id.label("batch_id"),
                func.sum(StockTransaction.change).label("ledger_sum"),
            )
            .group_by(StockTransaction.batch_id)
            .subquery("l")
        )
        rows = (
            await session.execute(
                select(Batch.id, Batch.quantity, func.coalesce(sums.c.ledger_sum, 0))
                .select_from(Batch)
                .join(sums, sums.c.batch_id == Batch.id, isouter=True)
                .where(Batch.quantity != func.coalesce(sums.c.ledger_sum, 0))
                .order_by(Batch.id.asc())
            )
        ).all()
        return [
            {"batch_id": int(bid), "quantity": int(qty), "ledger_sum": int(total)}
            for bid, qty, total in rows
        ]
