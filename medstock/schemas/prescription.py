from __future__ import annotations

from datetime import date
from typing import Annotated, Dict, List, Optional

from pydantic import Field, field_validator

from medstock.schemas.common import _Base
from medstock.schemas.stock_ledger import TransactionOut


class PrescriptionLineIn(_Base):
    medicine_id: int
    quantity: Annotated[int, Field(gt=0)]


class _LinesIn(_Base):
    lines: Annotated[List[PrescriptionLineIn], Field(min_length=1)]


class PrescriptionCheckIn(_LinesIn):
    """Dry runs may ask "what if today were as_of"; deductions never can."""

    as_of: Optional[date] = None


class PrescriptionIn(_LinesIn):
    """
    Deduct every line or none. Re-posting the same treatment_ref returns the
    original transactions (replayed=true) and deducts nothing.
    """

    treatment_ref: Annotated[str, Field(min_length=1, max_length=128)]
    patient_id: Optional[Annotated[str, Field(max_length=64)]] = None
    family_member_id: Optional[Annotated[str, Field(max_length=64)]] = None

    model_config = _Base.model_config | {
        "json_schema_extra": {
            "example": {
                "treatment_ref": "TRT-2026-000123",
                "patient_id": "P-881",
                "lines": [
                    {"medicine_id": 1, "quantity": 10},
                    {"medicine_id": 4, "quantity": 2},
                ],
            }
        }
    }

    @field_validator("treatment_ref", mode="before")
    @classmethod
    def _trim(cls, v):
        return v.strip() if isinstance(v, str) else v


class AllocationOut(_Base):
    batch_id: int
    quantity: int
    batch_name: Optional[str] = None
    expiry_date: Optional[date] = None


class ShortageOut(_Base):
    medicine_id: int
    medicine_name: Optional[str] = None
    requested_qty: int
    available_qty: int
    short_qty: int


class PrescriptionOut(_Base):
    treatment_ref: str
    state: str
    replayed: bool = False
    transactions: List[TransactionOut]
    plan: Dict[int, List[AllocationOut]]
    available_after: Dict[int, int]


class PrescriptionCheckOut(_Base):
    ok: bool
    state: str
    shortages: List[ShortageOut] = []
    plan: Dict[int, List[AllocationOut]] = {}
    available: Dict[int, int] = {}
