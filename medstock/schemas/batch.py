from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Optional

from pydantic import Field, field_validator

from medstock.schemas.common import _Base
from medstock.schemas.stock_ledger import TransactionOut


class BatchCreate(_Base):
    """Opening quantity is posted to the ledger as reason=opening_stock."""

    medicine_id: int
    batch_name: Annotated[str, Field(min_length=1, max_length=64)]
    quantity: Annotated[int, Field(gt=0)]
    expiry_date: date

    model_config = _Base.model_config | {
        "json_schema_extra": {
            "example": {
                "medicine_id": 1,
                "batch_name": "PCM-2026-04",
                "quantity": 100,
                "expiry_date": "2027-04-30",
            }
        }
    }

    @field_validator("batch_name", mode="before")
    @classmethod
    def _trim(cls, v):
        return v.strip() if isinstance(v, str) else v


class BatchUpdate(_Base):
    """
    Admin edit. A changed ``quantity`` becomes one correction entry in the
    ledger; ``note`` is appended to its reason.
    """

    batch_name: Optional[Annotated[str, Field(min_length=1, max_length=64)]] = None
    expiry_date: Optional[date] = None
    quantity: Optional[Annotated[int, Field(ge=0)]] = None
    note: Optional[Annotated[str, Field(max_length=150)]] = None


class StockMove(_Base):
    """Body of /batches/{id}/restock and /batches/{id}/remove."""

    quantity: Annotated[int, Field(gt=0)]
    note: Optional[Annotated[str, Field(max_length=150)]] = None
    patient_id: Optional[Annotated[str, Field(max_length=64)]] = None
    family_member_id: Optional[Annotated[str, Field(max_length=64)]] = None


class BatchOut(_Base):
    id: int
    medicine_id: int
    batch_name: str
    quantity: int
    expiry_date: date
    created_at: Optional[datetime] = None
    days_to_expiry: Optional[int] = None
    expiry_status: Optional[str] = None
    medicine_name: Optional[str] = None


class BatchCreatedOut(_Base):
    batch: BatchOut
    opening_transaction: TransactionOut


class BatchUpdatedOut(_Base):
    batch: BatchOut
    correction: Optional[TransactionOut] = None


class BatchDeletedOut(_Base):
    ok: bool = True
    batch_id: int
    closing_transaction: Optional[TransactionOut] = None


class ReconcileOut(_Base):
    batch_id: int
    quantity: int
    ledger_sum: int
    consistent: bool
    repaired: bool = False
    quarantine_lifted: bool = False
