from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from medstock.schemas.common import _Base


class TransactionOut(_Base):
    """
    One ledger row. change > 0 for ADDED, < 0 for REMOVED; after_quantity is
    the batch balance right after the row.
    """

    id: int
    medicine_id: int
    medicine_name: Optional[str] = None
    batch_id: int
    batch_name: str
    change: int
    type: str
    reason: str
    after_quantity: int
    patient_id: Optional[str] = None
    family_member_id: Optional[str] = None
    treatment_ref: Optional[str] = None
    ref_line: Optional[int] = None
    created_at: datetime


class TransactionPage(_Base):
    total: int
    items: List[TransactionOut]
