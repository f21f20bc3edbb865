# medstock/api/routers/prescriptions.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from medstock.api.deps import get_coordinator, get_session
from medstock.schemas.prescription import (
    PrescriptionCheckIn,
    PrescriptionCheckOut,
    PrescriptionIn,
    PrescriptionOut,
)
from medstock.schemas.stock_ledger import TransactionOut
from medstock.services.prescription_coordinator import PrescriptionCoordinator
from medstock.services.stock_ledger import Attribution

router = APIRouter(prefix="/prescriptions", tags=["prescriptions"])


def _plan_out(plan):
    return {mid: [a.to_dict() for a in slices] for mid, slices in plan.items()}


@router.post("", response_model=PrescriptionOut)
async def record_prescription(
    body: PrescriptionIn,
    session: AsyncSession = Depends(get_session),
    coordinator: PrescriptionCoordinator = Depends(get_coordinator),
) -> PrescriptionOut:
    """
    Deduct every line FEFO, or nothing.

    - 409 insufficient_stock: details list every short line
    - 503 busy: batch locks not acquired in time (retryable)
    """
    result = await coordinator.record_prescription(
        session,
        body.treatment_ref,
        [ln.model_dump() for ln in body.lines],
        Attribution(patient_id=body.patient_id, family_member_id=body.family_member_id),
    )
    return PrescriptionOut(
        treatment_ref=result.treatment_ref,
        state=result.state.value,
        replayed=result.replayed,
        transactions=[TransactionOut.model_validate(t) for t in result.transactions],
        plan=_plan_out(result.plan),
        available_after=result.available_after,
    )


@router.post("/check", response_model=PrescriptionCheckOut)
async def check_prescription(
    body: PrescriptionCheckIn,
    session: AsyncSession = Depends(get_session),
    coordinator: PrescriptionCoordinator = Depends(get_coordinator),
) -> PrescriptionCheckOut:
    """Dry run: availability + FEFO plan, nothing written."""
    check = await coordinator.check_prescription(
        session, [ln.model_dump() for ln in body.lines], as_of=body.as_of
    )
    return PrescriptionCheckOut(
        ok=check.ok,
        state=check.state.value,
        shortages=check.shortages,
        plan=_plan_out(check.plan),
        available=check.available,
    )
