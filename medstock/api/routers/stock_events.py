# medstock/api/routers/stock_events.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from medstock.api.deps import get_event_writer, get_expiry_monitor, get_session
from medstock.api.problem import raise_problem
from medstock.models.enums import EventStatus
from medstock.schemas.events import ExpiryScanIn, ExpiryScanOut, StockEventOut
from medstock.services.expiry_monitor import ExpiryMonitor
from medstock.services.stock_events import StockEventWriter

router = APIRouter(tags=["events"])


@router.get("/stock-events", response_model=List[StockEventOut])
async def list_events(
    status: Optional[str] = Query("PENDING", description="PENDING / DELIVERED / ALL"),
    topic: Optional[str] = Query(None),
    after_id: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    session: AsyncSession = Depends(get_session),
    events: StockEventWriter = Depends(get_event_writer),
) -> List[StockEventOut]:
    flt: Optional[EventStatus] = None
    if status and status.upper() != "ALL":
        try:
            flt = EventStatus(status.upper())
        except ValueError:
            raise_problem(
                status_code=422,
                error_code="invalid_argument",
                message=f"unknown event status: {status}",
                details=[{"type": "validation", "path": "status", "reason": "PENDING/DELIVERED/ALL"}],
            )
    rows = await events.list_events(session, status=flt, topic=topic, limit=limit, after_id=after_id)
    return [StockEventOut.model_validate(ev) for ev in rows]


@router.post("/stock-events/{event_id}/ack", response_model=StockEventOut)
async def ack_event(
    event_id: int,
    session: AsyncSession = Depends(get_session),
    events: StockEventWriter = Depends(get_event_writer),
) -> StockEventOut:
    return StockEventOut.model_validate(await events.ack(session, event_id))


@router.post("/expiry/scan", response_model=ExpiryScanOut)
async def run_expiry_scan(
    body: Optional[ExpiryScanIn] = None,
    session: AsyncSession = Depends(get_session),
    monitor: ExpiryMonitor = Depends(get_expiry_monitor),
) -> ExpiryScanOut:
    """Run the daily expiry sweep now."""
    result = await monitor.scan(session, as_of=body.as_of if body else None)
    return ExpiryScanOut.model_validate(result.to_dict())
