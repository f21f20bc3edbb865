# medstock/api/deps.py
from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from medstock.db.session import get_session as _get_session
from medstock.services.availability import AvailabilityEngine
from medstock.services.batch_service import BatchService
from medstock.services.expiry_monitor import ExpiryMonitor
from medstock.services.medicine_service import MedicineCatalog
from medstock.services.prescription_coordinator import PrescriptionCoordinator
from medstock.services.stock_events import StockEventWriter
from medstock.services.stock_ledger import StockLedger


# ---------------------------
# async session (per request)
# ---------------------------
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async for session in _get_session():
        yield session


# ---------------------------
# services (stateless; overridable in tests)
# ---------------------------
def get_availability() -> AvailabilityEngine:
    return AvailabilityEngine()


def get_ledger() -> StockLedger:
    return StockLedger()


def get_catalog() -> MedicineCatalog:
    return MedicineCatalog()


def get_batch_service() -> BatchService:
    return BatchService()


def get_coordinator() -> PrescriptionCoordinator:
    return PrescriptionCoordinator()


def get_expiry_monitor() -> ExpiryMonitor:
    return ExpiryMonitor()


def get_event_writer() -> StockEventWriter:
    return StockEventWriter()
