from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from medstock.core.errors import (
    DuplicateError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    StockError,
)
from medstock.core.tx import tx_commit
from medstock.models.batch import Batch
from medstock.models.enums import ExpiryState, TransactionReason, TransactionType
from medstock.models.medicine import Medicine
from medstock.models.stock_transaction import StockTransaction
from medstock.services.stock_ledger import Attribution, StockLedger, compose_reason
from medstock.services.utils.expiry_rules import classify_expiry, days_to_expiry

UTC = timezone.utc
log = logging.getLogger("medstock.batches")


def _positive_int(value: Any, field: str) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise InvalidArgumentError(f"{field} must be an integer") from None
    if isinstance(value, bool) or n != value or n <= 0:
        raise InvalidArgumentError(f"{field} must be a positive integer", context={field: value})
    return n


def _clean_name(name: Optional[str]) -> str:
    n = (name or "").strip()
    if not n:
        raise InvalidArgumentError("batch_name is required")
    if len(n) > 64:
        raise InvalidArgumentError("batch_name is longer than 64 characters")
    return n


def batch_to_dict(
    b: Batch,
    *,
    as_of: Optional[date] = None,
    soon_days: int = 30,
    medicine_name: Optional[str] = None,
) -> Dict[str, Any]:
    day = as_of or date.today()
    out = {
        "id": b.id,
        "medicine_id": b.medicine_id,
        "batch_name": b.batch_name,
        "quantity": b.quantity,
        "expiry_date": b.expiry_date,
        "created_at": b.created_at,
        "days_to_expiry": days_to_expiry(b.expiry_date, day),
        "expiry_status": classify_expiry(b.expiry_date, day, soon_days).value,
    }
    if medicine_name is not None:
        out["medicine_name"] = medicine_name
    return out


class BatchService:
    """
    Batch store (admin side).

    Quantity never changes here directly: opening stock, restock, removals,
    corrections and the closing entry of a delete all go through StockLedger
    under the batch lock, so sum(ledger.change) == quantity for every batch.
    """

    def __init__(self, ledger: Optional[StockLedger] = None) -> None:
        self.ledger = ledger or StockLedger()

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    async def create_batch(
        self,
        session: AsyncSession,
        *,
        medicine_id: int,
        batch_name: str,
        quantity: int,
        expiry_date: date,
        as_of: Optional[date] = None,
    ) -> Tuple[Batch, StockTransaction]:
        """
        New batch + its opening ADDED entry (reason ``opening_stock``).

        - quantity <= 0 / past expiry_date → InvalidArgument
        - unknown medicine → NotFound
        - batch_name taken for this medicine → Duplicate
        """
        qty = _positive_int(quantity, "quantity")
        name = _clean_name(batch_name)
        day = as_of or date.today()
        if not isinstance(expiry_date, date):
            raise InvalidArgumentError("expiry_date must be a date")
        if expiry_date < day:
            raise InvalidArgumentError(
                "expiry_date is in the past",
                context={"expiry_date": expiry_date.isoformat(), "as_of": day.isoformat()},
            )

        if await session.get(Medicine, int(medicine_id)) is None:
            raise NotFoundError("medicine", medicine_id)
        await self._ensure_name_free(session, int(medicine_id), name)

        async with tx_commit(session):
            try:
                batch = Batch(
                    medicine_id=int(medicine_id),
                    batch_name=name,
                    quantity=0,
                    expiry_date=expiry_date,
                    expiry_state=ExpiryState.OK.value,
                    created_at=datetime.now(UTC),
                )
                session.add(batch)
                await session.flush()

                # a brand-new id: nobody else can hold or wait for its lock yet
                opening = await self.ledger.apply_locked(
                    session,
                    batch,
                    change=qty,
                    type=TransactionType.ADDED,
                    reason=TransactionReason.OPENING_STOCK.value,
                )
            except IntegrityError as e:
                raise DuplicateError(
                    f"batch_name '{name}' already exists for medicine {medicine_id}",
                    context={"medicine_id": int(medicine_id), "batch_name": name},
                ) from e
            except SQLAlchemyError as e:
                raise InternalError(f"storage failure while creating batch: {e}") from e

        log.info(
            "batch created id=%s medicine=%s name=%s qty=%s exp=%s",
            batch.id,
            batch.medicine_id,
            batch.batch_name,
            qty,
            expiry_date,
        )
        return batch, opening

    async def _ensure_name_free(
        self,
        session: AsyncSession,
        medicine_id: int,
        name: str,
        *,
        exclude_id: Optional[int] = None,
    ) -> None:
        stmt = select(Batch.id).where(Batch.medicine_id == medicine_id, Batch.batch_name == name)
        if exclude_id is not None:
            stmt = stmt.where(Batch.id != exclude_id)
        if (await session.execute(stmt.limit(1))).scalar_one_or_none() is not None:
            raise DuplicateError(
                f"batch_name '{name}' already exists for medicine {medicine_id}",
                context={"medicine_id": medicine_id, "batch_name": name},
            )

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    async def get_batch(self, session: AsyncSession, batch_id: int) -> Batch:
        return await self.ledger.get_batch(session, batch_id)

    async def get_batches_for_medicine(
        self,
        session: AsyncSession,
        medicine_id: int,
        *,
        include_empty: bool = True,
    ) -> List[Batch]:
        """All batches of a medicine in FEFO order (expired ones included)."""
        if await session.get(Medicine, int(medicine_id)) is None:
            raise NotFoundError("medicine", medicine_id)
        stmt = select(Batch).where(Batch.medicine_id == int(medicine_id))
        if not include_empty:
            stmt = stmt.where(Batch.quantity > 0)
        stmt = stmt.order_by(Batch.expiry_date.asc(), Batch.created_at.asc(), Batch.id.asc())
        return list((await session.execute(stmt)).scalars().all())

    async def list_expired(
        self,
        session: AsyncSession,
        *,
        as_of: Optional[date] = None,
        category_id: Optional[int] = None,
    ) -> List[Tuple[Batch, str]]:
        """(batch, medicine name) for expired batches still holding stock."""
        day = as_of or date.today()
        stmt = (
            select(Batch, Medicine.name)
            .join(Medicine, Medicine.id == Batch.medicine_id)
            .where(Batch.expiry_date < day, Batch.quantity > 0)
        )
        if category_id is not None:
            stmt = stmt.where(Medicine.category_id == int(category_id))
        stmt = stmt.order_by(Batch.expiry_date.asc(), Batch.id.asc())
        return [(b, name) for b, name in (await session.execute(stmt)).all()]

    # ------------------------------------------------------------------
    # manual ledger entries
    # ------------------------------------------------------------------

    async def restock(
        self,
        session: AsyncSession,
        batch_id: int,
        quantity: int,
        *,
        note: Optional[str] = None,
    ) -> StockTransaction:
        qty = _positive_int(quantity, "quantity")
        return await self.ledger.append(
            session,
            batch_id,
            qty,
            TransactionType.ADDED,
            compose_reason(TransactionReason.RESTOCK, note),
        )

    async def remove_stock(
        self,
        session: AsyncSession,
        batch_id: int,
        quantity: int,
        *,
        note: Optional[str] = None,
        attribution: Optional[Attribution] = None,
    ) -> StockTransaction:
        qty = _positive_int(quantity, "quantity")
        return await self.ledger.append(
            session,
            batch_id,
            -qty,
            TransactionType.REMOVED,
            compose_reason(TransactionReason.DISPOSAL, note),
            attribution,
        )

    # ------------------------------------------------------------------
    # edit / delete
    # ------------------------------------------------------------------

    async def update_batch(
        self,
        session: AsyncSession,
        batch_id: int,
        *,
        batch_name: Optional[str] = None,
        expiry_date: Optional[date] = None,
        quantity: Optional[int] = None,
        note: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> Tuple[Batch, Optional[StockTransaction]]:
        """
        Admin "edit batch".

        - batch_name / expiry_date: edited in place
        - quantity: posted as one correction entry for the delta (ADDED or
          REMOVED); an unchanged quantity writes nothing
        """
        name = _clean_name(batch_name) if batch_name is not None else None
        if quantity is not None:
            if isinstance(quantity, bool) or int(quantity) != quantity or int(quantity) < 0:
                raise InvalidArgumentError("quantity must be a non-negative integer")
        if expiry_date is not None and not isinstance(expiry_date, date):
            raise InvalidArgumentError("expiry_date must be a date")

        current = await self.ledger.get_batch(session, batch_id)
        if name is not None and name != current.batch_name:
            await self._ensure_name_free(session, current.medicine_id, name, exclude_id=current.id)

        day = as_of or date.today()
        correction: Optional[StockTransaction] = None
        async with self.ledger.locks.hold([int(batch_id)]):
            async with tx_commit(session):
                try:
                    batch = await self.ledger.reload_for_update(session, batch_id)
                    was_available = not batch.is_expired(day) and batch.quantity > 0

                    if name is not None:
                        batch.batch_name = name
                    if expiry_date is not None and expiry_date != batch.expiry_date:
                        batch.expiry_date = expiry_date
                        # next sweep re-announces from scratch
                        batch.expiry_state = ExpiryState.OK.value

                    if quantity is not None:
                        delta = int(quantity) - int(batch.quantity)
                        if delta != 0:
                            correction = await self.ledger.apply_locked(
                                session,
                                batch,
                                change=delta,
                                type=TransactionType.ADDED if delta > 0 else TransactionType.REMOVED,
                                reason=compose_reason(TransactionReason.CORRECTION, note),
                            )
                    await session.flush()

                    still_available = not batch.is_expired(day) and batch.quantity > 0
                    if was_available and not still_available:
                        await self.ledger.events.emit_out_of_stock(
                            session, [batch.medicine_id], as_of=day, cause="correction"
                        )
                except StockError:
                    raise
                except IntegrityError as e:
                    raise DuplicateError(f"batch update rejected: {e.orig}") from e
                except SQLAlchemyError as e:
                    raise InternalError(f"storage failure while updating batch: {e}") from e

        log.info(
            "batch updated id=%s name=%s exp=%s qty=%s correction=%s",
            batch.id,
            batch.batch_name,
            batch.expiry_date,
            batch.quantity,
            correction.change if correction is not None else 0,
        )
        return batch, correction

    async def delete_batch(
        self,
        session: AsyncSession,
        batch_id: int,
        *,
        note: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> Optional[StockTransaction]:
        """
        Remove a batch. Remaining quantity is written off first with a closing
        REMOVED entry (reason ``disposal``); the ledger rows stay.

        Returns the closing entry, or None for an exhausted batch.
        """
        await self.ledger.get_batch(session, batch_id)
        day = as_of or date.today()
        closing: Optional[StockTransaction] = None

        async with self.ledger.locks.hold([int(batch_id)]):
            async with tx_commit(session):
                try:
                    batch = await self.ledger.reload_for_update(session, batch_id)
                    medicine_id = batch.medicine_id
                    was_available = not batch.is_expired(day) and batch.quantity > 0
                    if batch.quantity > 0:
                        closing = await self.ledger.apply_locked(
                            session,
                            batch,
                            change=-int(batch.quantity),
                            type=TransactionType.REMOVED,
                            reason=compose_reason(
                                TransactionReason.DISPOSAL, note or "batch deleted"
                            ),
                        )
                    await session.delete(batch)
                    await session.flush()
                    if was_available:
                        await self.ledger.events.emit_out_of_stock(
                            session, [medicine_id], as_of=day, cause="batch_deleted"
                        )
                except StockError:
                    raise
                except SQLAlchemyError as e:
                    raise InternalError(f"storage failure while deleting batch: {e}") from e

        log.info(
            "batch deleted id=%s written_off=%s",
            batch_id,
            -closing.change if closing is not None else 0,
        )
        return closing
