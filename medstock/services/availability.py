from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, timedelta
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import and_, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from medstock.core.config import get_settings
from medstock.core.errors import NotFoundError
from medstock.models.batch import Batch
from medstock.models.medicine import Medicine


@dataclass(frozen=True)
class AvailabilityReport:
    medicine_id: int
    as_of: date
    expiring_soon_days: int
    total: int
    expiring_soon_count: int
    expiring_soon_quantity: int
    expired_count: int
    expired_quantity: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AvailabilityEngine:
    """
    Read-only aggregates over the batch store.

    - available = SUM(quantity) of batches with expiry_date >= as_of
    - always computed from batches at call time, never cached; a stale total
      is only ever display data, deductions re-check under the batch locks
    - no locks taken
    """

    def __init__(self, expiring_soon_days: Optional[int] = None) -> None:
        self._soon_days = expiring_soon_days

    @property
    def expiring_soon_days(self) -> int:
        if self._soon_days is not None:
            return int(self._soon_days)
        return int(get_settings().EXPIRING_SOON_DAYS)

    async def available_quantity(
        self,
        session: AsyncSession,
        medicine_id: int,
        as_of: Optional[date] = None,
    ) -> int:
        day = as_of or date.today()
        total = (
            await session.execute(
                select(func.coalesce(func.sum(Batch.quantity), 0)).where(
                    Batch.medicine_id == medicine_id,
                    Batch.expiry_date >= day,
                )
            )
        ).scalar_one()
        return int(total or 0)

    async def available_many(
        self,
        session: AsyncSession,
        medicine_ids: Iterable[int],
        as_of: Optional[date] = None,
    ) -> Dict[int, int]:
        """available_quantity for several medicines in one query; missing → 0."""
        ids = sorted({int(m) for m in medicine_ids})
        if not ids:
            return {}
        day = as_of or date.today()
        rows = (
            await session.execute(
                select(Batch.medicine_id, func.coalesce(func.sum(Batch.quantity), 0))
                .where(Batch.medicine_id.in_(ids), Batch.expiry_date >= day)
                .group_by(Batch.medicine_id)
            )
        ).all()
        out = {mid: 0 for mid in ids}
        for mid, qty in rows:
            out[int(mid)] = int(qty or 0)
        return out

    async def availability_report(
        self,
        session: AsyncSession,
        medicine_id: int,
        as_of: Optional[date] = None,
    ) -> AvailabilityReport:
        """
        total + expiring-soon / expired classification.

        Only batches still holding stock are counted as expiring or expired.
        """
        exists = (
            await session.execute(select(Medicine.id).where(Medicine.id == medicine_id))
        ).scalar_one_or_none()
        if exists is None:
            raise NotFoundError("medicine", medicine_id)

        day = as_of or date.today()
        soon_days = self.expiring_soon_days
        soon_limit = day + timedelta(days=soon_days)

        not_expired = Batch.expiry_date >= day
        soon = and_(Batch.expiry_date >= day, Batch.expiry_date < soon_limit, Batch.quantity > 0)
        expired = and_(Batch.expiry_date < day, Batch.quantity > 0)

        row = (
            await session.execute(
                select(
                    func.coalesce(func.sum(case((not_expired, Batch.quantity), else_=0)), 0),
                    func.coalesce(func.sum(case((soon, 1), else_=0)), 0),
                    func.coalesce(func.sum(case((soon, Batch.quantity), else_=0)), 0),
                    func.coalesce(func.sum(case((expired, 1), else_=0)), 0),
                    func.coalesce(func.sum(case((expired, Batch.quantity), else_=0)), 0),
                ).where(Batch.medicine_id == medicine_id)
            )
        ).one()

        return AvailabilityReport(
            medicine_id=int(medicine_id),
            as_of=day,
            expiring_soon_days=soon_days,
            total=int(row[0]),
            expiring_soon_count=int(row[1]),
            expiring_soon_quantity=int(row[2]),
            expired_count=int(row[3]),
            expired_quantity=int(row[4]),
        )
