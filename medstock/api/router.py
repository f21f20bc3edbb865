from __future__ import annotations

from fastapi import APIRouter

from medstock.api.routers import (
    batches,
    categories,
    health,
    medicines,
    prescriptions,
    stock_events,
    transactions,
)

api_router = APIRouter()

api_router.include_router(categories.router)
api_router.include_router(medicines.router)
api_router.include_router(batches.router)
api_router.include_router(transactions.router)
api_router.include_router(prescriptions.router)
api_router.include_router(stock_events.router)
api_router.include_router(health.router)
