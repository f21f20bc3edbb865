from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from medstock.schemas.common import _Base


class StockEventOut(_Base):
    id: int
    topic: str
    key: Optional[str] = None
    payload: Dict[str, Any]
    status: str
    occurred_at: datetime
    delivered_at: Optional[datetime] = None


class ExpiryScanIn(_Base):
    as_of: Optional[date] = None


class ExpiryScanOut(_Base):
    as_of: date
    scanned: int
    expiring_soon: List[int]
    expired: List[int]
    out_of_stock: List[int]
