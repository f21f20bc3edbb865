# medstock/api/routers/transactions.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from medstock.api.deps import get_ledger, get_session
from medstock.schemas.stock_ledger import TransactionPage
from medstock.services.stock_ledger import StockLedger

router = APIRouter(prefix="/transactions", tags=["ledger"])


@router.get("", response_model=TransactionPage)
async def list_transactions(
    type: Optional[str] = Query(None, description="ADDED / REMOVED (aliases accepted)"),
    search: Optional[str] = Query(None, max_length=200, description="medicine name or reason"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    ledger: StockLedger = Depends(get_ledger),
) -> TransactionPage:
    page = await ledger.list_transactions(
        session, type=type, search=search, limit=limit, offset=offset
    )
    return TransactionPage.model_validate(page)


@router.get("/mismatches", response_model=List[dict])
async def list_mismatches(
    session: AsyncSession = Depends(get_session),
    ledger: StockLedger = Depends(get_ledger),
) -> List[dict]:
    """Batches whose quantity disagrees with SUM(change) of their rows."""
    return await ledger.reconcile_all(session)
