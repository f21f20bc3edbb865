from __future__ import annotations

from datetime import date

from medstock.schemas.common import _Base


class AvailabilityOut(_Base):
    """available = sum of quantity over batches with expiry_date >= as_of."""

    medicine_id: int
    as_of: date
    expiring_soon_days: int
    total: int
    expiring_soon_count: int
    expiring_soon_quantity: int
    expired_count: int
    expired_quantity: int
