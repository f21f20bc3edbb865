from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medstock.core.errors import NotFoundError
from medstock.models.enums import EventStatus, EventTopic
from medstock.models.medicine import Medicine
from medstock.models.stock_event import StockEvent
from medstock.obs.metrics import stock_events_emitted_total
from medstock.services.availability import AvailabilityEngine

UTC = timezone.utc
log = logging.getLogger("medstock.events")


class StockEventWriter:
    """
    Outbox writes for the notification collaborator.

    - write(): one row, same transaction as the caller's change (no commit here)
    - list_events() / ack(): consumer side
    """

    def __init__(self, availability: Optional[AvailabilityEngine] = None) -> None:
        self.availability = availability or AvailabilityEngine()

    async def write(
        self,
        session: AsyncSession,
        *,
        topic: EventTopic | str,
        key: Optional[str],
        payload: Mapping[str, Any],
        occurred_at: Optional[datetime] = None,
    ) -> StockEvent:
        ev = StockEvent(
            topic=str(topic),
            key=key,
            payload=dict(payload),
            status=EventStatus.PENDING.value,
            occurred_at=occurred_at or datetime.now(UTC),
        )
        session.add(ev)
        await session.flush()
        stock_events_emitted_total.labels(str(topic)).inc()
        log.info("event %s key=%s", topic, key)
        return ev

    async def emit_out_of_stock(
        self,
        session: AsyncSession,
        medicine_ids: Iterable[int],
        *,
        as_of: Optional[date] = None,
        cause: str,
    ) -> List[StockEvent]:
        """
        medicine.out_of_stock for every medicine whose available quantity is
        now zero. Call after the mutation is flushed, before the commit.
        """
        day = as_of or date.today()
        levels = await self.availability.available_many(session, medicine_ids, as_of=day)
        empty = [mid for mid, qty in levels.items() if qty == 0]
        if not empty:
            return []

        names = dict(
            (
                await session.execute(
                    select(Medicine.id, Medicine.name).where(Medicine.id.in_(empty))
                )
            ).all()
        )
        out: List[StockEvent] = []
        for mid in empty:
            out.append(
                await self.write(
                    session,
                    topic=EventTopic.MEDICINE_OUT_OF_STOCK,
                    key=f"medicine:{mid}",
                    payload={
                        "medicine_id": mid,
                        "medicine_name": names.get(mid),
                        "available_quantity": 0,
                        "as_of": day.isoformat(),
                        "cause": cause,
                    },
                )
            )
        return out

    async def list_events(
        self,
        session: AsyncSession,
        *,
        status: Optional[EventStatus | str] = EventStatus.PENDING,
        topic: Optional[str] = None,
        limit: int = 100,
        after_id: int = 0,
    ) -> List[StockEvent]:
        stmt = select(StockEvent).where(StockEvent.id > int(after_id))
        if status is not None:
            stmt = stmt.where(StockEvent.status == str(status))
        if topic:
            stmt = stmt.where(StockEvent.topic == topic)
        stmt = stmt.order_by(StockEvent.id.asc()).limit(max(1, min(int(limit), 1000)))
        return list((await session.execute(stmt)).scalars().all())

    async def ack(self, session: AsyncSession, event_id: int) -> StockEvent:
        """Mark delivered (idempotent); commits."""
        ev = await session.get(StockEvent, int(event_id))
        if ev is None:
            raise NotFoundError("stock_event", event_id)
        if ev.status != EventStatus.DELIVERED.value:
            ev.status = EventStatus.DELIVERED.value
            ev.delivered_at = datetime.now(UTC)
        await session.commit()
        return ev

    @staticmethod
    def to_dict(ev: StockEvent) -> Dict[str, Any]:
        return {
            "id": ev.id,
            "topic": ev.topic,
            "key": ev.key,
            "payload": ev.payload,
            "status": ev.status,
            "occurred_at": ev.occurred_at,
            "delivered_at": ev.delivered_at,
        }
