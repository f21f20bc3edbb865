from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medstock.core.tx import tx_commit
from medstock.models.batch import Batch
from medstock.models.enums import EventTopic, ExpiryState
from medstock.models.medicine import Medicine
from medstock.services.availability import AvailabilityEngine
from medstock.services.stock_events import StockEventWriter
from medstock.services.utils.expiry_rules import classify_expiry, days_to_expiry, is_escalation

log = logging.getLogger("medstock.expiry")

_TOPIC = {
    ExpiryState.EXPIRING_SOON: EventTopic.BATCH_EXPIRING_SOON,
    ExpiryState.EXPIRED: EventTopic.BATCH_EXPIRED,
}


@dataclass
class ExpiryScanResult:
    as_of: date
    scanned: int = 0
    expiring_soon: List[int] = field(default_factory=list)
    expired: List[int] = field(default_factory=list)
    out_of_stock: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "as_of": self.as_of.isoformat(),
            "scanned": self.scanned,
            "expiring_soon": list(self.expiring_soon),
            "expired": list(self.expired),
            "out_of_stock": list(self.out_of_stock),
        }


class ExpiryMonitor:
    """
    Expiry sweep (daily job + POST /expiry/scan).

    - classifies every batch still holding stock against ``as_of``
    - emits batch.expiring_soon / batch.expired once per escalation; the last
      announced state lives in batches.expiry_state
    - a batch whose expiry takes its medicine's availability to zero also
      yields medicine.out_of_stock
    - never touches quantities, so no batch locks
    """

    def __init__(
        self,
        events: Optional[StockEventWriter] = None,
        availability: Optional[AvailabilityEngine] = None,
    ) -> None:
        self.availability = availability or AvailabilityEngine()
        self.events = events or StockEventWriter(self.availability)

    async def scan(self, session: AsyncSession, as_of: Optional[date] = None) -> ExpiryScanResult:
        day = as_of or date.today()
        soon_days = self.availability.expiring_soon_days
        result = ExpiryScanResult(as_of=day)

        rows = (
            await session.execute(
                select(Batch, Medicine.name)
                .join(Medicine, Medicine.id == Batch.medicine_id)
                .where(Batch.quantity > 0)
                .order_by(Batch.expiry_date.asc(), Batch.id.asc())
            )
        ).all()

        newly_expired_medicines: List[int] = []
        async with tx_commit(session):
            for batch, medicine_name in rows:
                result.scanned += 1
                current = classify_expiry(batch.expiry_date, day, soon_days)
                if not is_escalation(batch.expiry_state, current):
                    continue

                await self.events.write(
                    session,
                    topic=_TOPIC[current],
                    key=f"batch:{batch.id}",
                    payload={
                        "batch_id": batch.id,
                        "batch_name": batch.batch_name,
                        "medicine_id": batch.medicine_id,
                        "medicine_name": medicine_name,
                        "quantity": batch.quantity,
                        "expiry_date": batch.expiry_date.isoformat(),
                        "days_to_expiry": days_to_expiry(batch.expiry_date, day),
                        "previous_state": batch.expiry_state,
                        "as_of": day.isoformat(),
                    },
                )
                batch.expiry_state = current.value
                if current == ExpiryState.EXPIRED:
                    result.expired.append(batch.id)
                    if batch.medicine_id not in newly_expired_medicines:
                        newly_expired_medicines.append(batch.medicine_id)
                else:
                    result.expiring_soon.append(batch.id)

            if newly_expired_medicines:
                emitted = await self.events.emit_out_of_stock(
                    session, newly_expired_medicines, as_of=day, cause="expired"
                )
                result.out_of_stock = [ev.payload["medicine_id"] for ev in emitted]
            await session.flush()

        log.info(
            "expiry scan as_of=%s scanned=%d soon=%d expired=%d out_of_stock=%d",
            day,
            result.scanned,
            len(result.expiring_soon),
            len(result.expired),
            len(result.out_of_stock),
        )
        return result
