from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from medstock.core.errors import (
    BusyError,
    ConflictError,
    DuplicateError,
    InconsistentStateError,
    InsufficientStockError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    StockError,
)
from medstock.models.batch import Batch
from medstock.models.enums import TransactionReason, TransactionType
from medstock.models.medicine import Medicine
from medstock.models.stock_transaction import StockTransaction
from medstock.obs.metrics import prescriptions_total
from medstock.services.availability import AvailabilityEngine
from medstock.services.fefo_allocator import (
    BatchAllocation,
    FefoAllocator,
    plan_fefo,
    shortage_detail,
)
from medstock.services.stock_ledger import Attribution, StockLedger

log = logging.getLogger("medstock.prescriptions")


class PrescriptionState(StrEnum):
    VALIDATING = "VALIDATING"
    ALLOCATING = "ALLOCATING"
    COMMITTING = "COMMITTING"
    COMMITTED = "COMMITTED"
    FAILED = "FAILED"
    ROLLED_BACK = "ROLLED_BACK"


@dataclass(frozen=True)
class PrescriptionLine:
    medicine_id: int
    quantity: int


@dataclass
class PrescriptionResult:
    treatment_ref: str
    state: PrescriptionState
    transactions: List[StockTransaction] = field(default_factory=list)
    plan: Dict[int, List[BatchAllocation]] = field(default_factory=dict)
    available_after: Dict[int, int] = field(default_factory=dict)
    replayed: bool = False


@dataclass
class PrescriptionCheck:
    ok: bool
    state: PrescriptionState
    shortages: List[Dict[str, Any]] = field(default_factory=list)
    plan: Dict[int, List[BatchAllocation]] = field(default_factory=dict)
    available: Dict[int, int] = field(default_factory=dict)


LineInput = Union[PrescriptionLine, Mapping[str, Any], Tuple[int, int]]


def _as_line(raw: LineInput) -> PrescriptionLine:
    if isinstance(raw, PrescriptionLine):
        return raw
    if isinstance(raw, Mapping):
        mid = raw.get("medicine_id")
        qty = raw.get("quantity", raw.get("requested_quantity"))
    else:
        mid, qty = raw
    for name, v in (("medicine_id", mid), ("quantity", qty)):
        if isinstance(v, bool) or not isinstance(v, int):
            raise InvalidArgumentError(f"line {name} must be an integer", context={name: v})
    return PrescriptionLine(medicine_id=mid, quantity=qty)


def merge_lines(lines: Iterable[LineInput]) -> List[PrescriptionLine]:
    """
    Validate + merge duplicate medicines (quantities summed), first-seen order.
    """
    merged: Dict[int, int] = {}
    for raw in lines:
        line = _as_line(raw)
        if line.quantity <= 0:
            raise InvalidArgumentError(
                "line quantity must be positive",
                context={"medicine_id": line.medicine_id, "quantity": line.quantity},
            )
        merged[line.medicine_id] = merged.get(line.medicine_id, 0) + line.quantity
    if not merged:
        raise InvalidArgumentError("prescription has no lines")
    return [PrescriptionLine(mid, qty) for mid, qty in merged.items()]


class PrescriptionCoordinator:
    """
    recordPrescription: all lines deducted as one unit, or none.

    VALIDATING   availability per line (lock-free); every short line reported
    ALLOCATING   lock the medicines' candidate batches (ascending id), re-read
                 them and build the FEFO plan under the locks
    COMMITTING   one ledger REMOVED row per planned batch slice, single commit
    COMMITTED    transactions + plan + availability after commit

    Any failure in COMMITTING rolls the database transaction back (ROLLED_BACK)
    so no partial deduction is ever visible. If the rollback itself fails the
    touched batches are quarantined and InconsistentStateError is raised.

    A treatment_ref that already has prescription rows is not deducted again;
    the stored rows are returned (replayed=True) when the merged lines match
    what was recorded, otherwise DuplicateError.
    """

    def __init__(
        self,
        ledger: Optional[StockLedger] = None,
        allocator: Optional[FefoAllocator] = None,
        availability: Optional[AvailabilityEngine] = None,
    ) -> None:
        self.ledger = ledger or StockLedger()
        self.allocator = allocator or FefoAllocator()
        self.availability = availability or AvailabilityEngine()

    @property
    def locks(self):
        return self.ledger.locks

    def _enter(self, ref: str, state: PrescriptionState) -> PrescriptionState:
        log.debug("prescription %s -> %s", ref, state.value)
        return state

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _medicine_names(
        self, session: AsyncSession, lines: Sequence[PrescriptionLine]
    ) -> Dict[int, str]:
        ids = [ln.medicine_id for ln in lines]
        rows = (
            await session.execute(select(Medicine.id, Medicine.name).where(Medicine.id.in_(ids)))
        ).all()
        names = {int(mid): name for mid, name in rows}
        missing = [mid for mid in ids if mid not in names]
        if missing:
            raise NotFoundError("medicine", missing[0] if len(missing) == 1 else missing)
        return names

    def _shortages(
        self,
        lines: Sequence[PrescriptionLine],
        levels: Mapping[int, int],
        names: Mapping[int, str],
    ) -> List[Dict[str, Any]]:
        return [
            shortage_detail(
                medicine_id=ln.medicine_id,
                medicine_name=names.get(ln.medicine_id),
                requested_qty=ln.quantity,
                available_qty=levels.get(ln.medicine_id, 0),
            )
            for ln in lines
            if ln.quantity > levels.get(ln.medicine_id, 0)
        ]

    async def _candidate_ids(
        self, session: AsyncSession, lines: Sequence[PrescriptionLine], day: date
    ) -> List[int]:
        ids: List[int] = []
        for ln in lines:
            rows = await self.allocator.candidates(session, medicine_id=ln.medicine_id, as_of=day)
            ids.extend(int(b.id) for b in rows)
        return sorted(set(ids))

    async def _existing(self, session: AsyncSession, treatment_ref: str) -> List[StockTransaction]:
        stmt = (
            select(StockTransaction)
            .where(
                StockTransaction.treatment_ref == treatment_ref,
                StockTransaction.reason == TransactionReason.PRESCRIPTION.value,
            )
            .order_by(StockTransaction.ref_line.asc(), StockTransaction.id.asc())
        )
        return list((await session.execute(stmt)).scalars().all())

    @staticmethod
    def _same_lines(rows: Sequence[StockTransaction], lines: Sequence[PrescriptionLine]) -> bool:
        stored: Dict[int, Tuple[int, int]] = {}
        for r in rows:
            mid, qty = stored.get(r.ref_line, (r.medicine_id, 0))
            stored[r.ref_line] = (mid, qty - r.change)
        wanted = {n: (ln.medicine_id, ln.quantity) for n, ln in enumerate(lines, start=1)}
        return stored == wanted

    @staticmethod
    def _plan_from_rows(rows: Sequence[StockTransaction]) -> Dict[int, List[BatchAllocation]]:
        plan: Dict[int, List[BatchAllocation]] = {}
        for r in rows:
            plan.setdefault(r.medicine_id, []).append(
                BatchAllocation(batch_id=r.batch_id, quantity=-r.change, batch_name=r.batch_name)
            )
        return plan

    async def _replay(
        self,
        session: AsyncSession,
        treatment_ref: str,
        rows: List[StockTransaction],
        day: date,
    ) -> PrescriptionResult:
        plan = self._plan_from_rows(rows)
        prescriptions_total.labels("replayed").inc()
        log.info("prescription %s already committed (%d rows), replaying", treatment_ref, len(rows))
        return PrescriptionResult(
            treatment_ref=treatment_ref,
            state=PrescriptionState.COMMITTED,
            transactions=rows,
            plan=plan,
            available_after=await self.availability.available_many(session, plan.keys(), as_of=day),
            replayed=True,
        )

    async def _plan_locked(
        self,
        session: AsyncSession,
        lines: Sequence[PrescriptionLine],
        locked_ids: Sequence[int],
        day: date,
    ) -> Tuple[Dict[int, List[BatchAllocation]], Dict[int, Batch], List[PrescriptionLine]]:
        plan: Dict[int, List[BatchAllocation]] = {}
        batches: Dict[int, Batch] = {}
        short: List[PrescriptionLine] = []
        for ln in lines:
            rows = await self.allocator.candidates(
                session,
                medicine_id=ln.medicine_id,
                as_of=day,
                lock=True,
                only_ids=locked_ids,
            )
            batches.update({int(b.id): b for b in rows})
            slices, remaining = plan_fefo(rows, ln.quantity, day)
            if remaining > 0:
                short.append(ln)
            plan[ln.medicine_id] = slices
        return plan, batches, short

    # ------------------------------------------------------------------
    # entry points
    # ------------------------------------------------------------------

    async def check_prescription(
        self,
        session: AsyncSession,
        lines: Iterable[LineInput],
        *,
        as_of: Optional[date] = None,
    ) -> PrescriptionCheck:
        """Dry run of VALIDATING + ALLOCATING. No lock, no write."""
        merged = merge_lines(lines)
        day = as_of or date.today()
        names = await self._medicine_names(session, merged)

        levels = await self.availability.available_many(
            session, [ln.medicine_id for ln in merged], as_of=day
        )
        shortages = self._shortages(merged, levels, names)
        if shortages:
            return PrescriptionCheck(
                ok=False, state=PrescriptionState.FAILED, shortages=shortages, available=levels
            )

        plan: Dict[int, List[BatchAllocation]] = {}
        for ln in merged:
            plan[ln.medicine_id] = await self.allocator.allocate(
                session, medicine_id=ln.medicine_id, requested_quantity=ln.quantity, as_of=day
            )
        return PrescriptionCheck(
            ok=True, state=PrescriptionState.ALLOCATING, plan=plan, available=levels
        )

    async def record_prescription(
        self,
        session: AsyncSession,
        treatment_ref: str,
        lines: Iterable[LineInput],
        attribution: Optional[Attribution] = None,
        *,
        as_of: Optional[date] = None,
    ) -> PrescriptionResult:
        ref = (treatment_ref or "").strip()
        if not ref:
            raise InvalidArgumentError("treatment_ref is required")
        if len(ref) > 128:
            raise InvalidArgumentError("treatment_ref is longer than 128 characters")
        merged = merge_lines(lines)
        day = as_of or date.today()
        attr = attribution or Attribution()

        try:
            names = await self._medicine_names(session, merged)
        except StockError:
            prescriptions_total.labels("invalid").inc()
            raise

        try:
            async with self.locks.hold_key(ref):
                return await self._record_locked(session, ref, merged, names, attr, day)
        except BusyError:
            prescriptions_total.labels("busy").inc()
            log.warning("prescription %s: batch locks busy", ref)
            raise

    async def _record_locked(
        self,
        session: AsyncSession,
        ref: str,
        lines: List[PrescriptionLine],
        names: Dict[int, str],
        attr: Attribution,
        day: date,
    ) -> PrescriptionResult:
        existing = await self._existing(session, ref)
        if existing:
            if not self._same_lines(existing, lines):
                prescriptions_total.labels("conflict").inc()
                log.warning("prescription %s replayed with different lines", ref)
                raise DuplicateError(
                    f"treatment_ref {ref} was already recorded with different lines",
                    context={"treatment_ref": ref},
                )
            return await self._replay(session, ref, existing, day)

        # VALIDATING
        state = self._enter(ref, PrescriptionState.VALIDATING)
        levels = await self.availability.available_many(
            session, [ln.medicine_id for ln in lines], as_of=day
        )
        shortages = self._shortages(lines, levels, names)
        if shortages:
            self._enter(ref, PrescriptionState.FAILED)
            prescriptions_total.labels("insufficient").inc()
            log.info("prescription %s rejected in %s: %s", ref, state.value, shortages)
            raise InsufficientStockError(shortages, phase="validating")

        # ALLOCATING
        state = self._enter(ref, PrescriptionState.ALLOCATING)
        locked_ids = await self._candidate_ids(session, lines, day)

        async with self.locks.hold(locked_ids) as held:
            plan, batches, short = await self._plan_locked(session, lines, held, day)
            if short:
                # re-check against the whole store: a real shortage, or a
                # batch that appeared after the lock set was chosen
                fresh = await self.availability.available_many(
                    session, [ln.medicine_id for ln in lines], as_of=day
                )
                real = self._shortages(short, fresh, names)
                self._enter(ref, PrescriptionState.FAILED)
                await session.rollback()
                if real:
                    prescriptions_total.labels("insufficient").inc()
                    log.info("prescription %s rejected in %s: %s", ref, state.value, real)
                    raise InsufficientStockError(real, phase="allocating")
                prescriptions_total.labels("conflict").inc()
                raise ConflictError(
                    "allocation plan invalidated by a concurrent change; retry",
                    context={"treatment_ref": ref},
                )

            # COMMITTING
            state = self._enter(ref, PrescriptionState.COMMITTING)
            touched = sorted({a.batch_id for slices in plan.values() for a in slices})
            written: List[StockTransaction] = []
            try:
                for line_no, ln in enumerate(lines, start=1):
                    for alloc in plan[ln.medicine_id]:
                        written.append(
                            await self.ledger.apply_locked(
                                session,
                                batches[alloc.batch_id],
                                change=-alloc.quantity,
                                type=TransactionType.REMOVED,
                                reason=TransactionReason.PRESCRIPTION.value,
                                attribution=attr,
                                treatment_ref=ref,
                                ref_line=line_no,
                            )
                        )
                await self.ledger.events.emit_out_of_stock(
                    session, [ln.medicine_id for ln in lines], as_of=day, cause="prescription"
                )
                await session.commit()
            except BaseException as exc:
                await self._roll_back(session, ref, touched, exc)
                if isinstance(exc, StockError):
                    raise
                if isinstance(exc, SQLAlchemyError):
                    raise InternalError(
                        f"storage failure while committing prescription {ref}: {exc}",
                        context={"treatment_ref": ref},
                    ) from exc
                raise

        state = self._enter(ref, PrescriptionState.COMMITTED)
        available_after = await self.availability.available_many(
            session, [ln.medicine_id for ln in lines], as_of=day
        )
        prescriptions_total.labels("committed").inc()
        log.info(
            "prescription %s committed: %d line(s), %d ledger row(s)",
            ref,
            len(lines),
            len(written),
        )
        return PrescriptionResult(
            treatment_ref=ref,
            state=state,
            transactions=written,
            plan=plan,
            available_after=available_after,
        )

    async def _roll_back(
        self,
        session: AsyncSession,
        ref: str,
        touched: Sequence[int],
        cause: BaseException,
    ) -> None:
        """COMMITTING -> ROLLED_BACK, or quarantine when the rollback fails."""
        try:
            await session.rollback()
        except Exception as rb_exc:
            self.locks.quarantine(touched)
            prescriptions_total.labels("inconsistent").inc()
            log.error(
                "prescription %s: rollback failed after %r, batches %s quarantined",
                ref,
                cause,
                list(touched),
            )
            raise InconsistentStateError(
                f"prescription {ref} could not be rolled back; "
                "affected batches refuse writes until reconciled",
                touched,
            ) from rb_exc
        self._enter(ref, PrescriptionState.ROLLED_BACK)
        prescriptions_total.labels("rolled_back").inc()
        log.warning("prescription %s rolled back: %r", ref, cause)
