# tests/services/test_stock_events.py
from __future__ import annotations

import pytest

from medstock.core.errors import NotFoundError
from medstock.services.batch_service import BatchService
from medstock.services.stock_events import StockEventWriter
from tests.helpers.inventory import days, make_batch, make_medicine, seed_batch_raw

pytestmark = pytest.mark.contract


@pytest.mark.asyncio
async def test_removing_last_stock_emits_out_of_stock(session):
    med = await make_medicine(session, "Morphine")
    b1 = await make_batch(session, med.id, name="B1", qty=2)
    b2 = await make_batch(session, med.id, name="B2", qty=3)
    svc = BatchService()
    writer = StockEventWriter()

    await svc.remove_stock(session, b1.id, 2)
    assert await writer.list_events(session) == []

    await svc.remove_stock(session, b2.id, 3)
    [ev] = await writer.list_events(session)
    assert ev.topic == "medicine.out_of_stock"
    assert ev.key == f"medicine:{med.id}"
    assert ev.payload == {
        "medicine_id": med.id,
        "medicine_name": "Morphine",
        "available_quantity": 0,
        "as_of": days(0).isoformat(),
        "cause": "ledger",
    }


@pytest.mark.asyncio
async def test_disposing_expired_stock_is_not_an_outage(session):
    med = await make_medicine(session)
    old = await seed_batch_raw(session, med.id, name="OLD", qty=4, expiry_date=days(-3))

    await BatchService().remove_stock(session, old.id, 4, note="expired")

    assert await StockEventWriter().list_events(session) == []


@pytest.mark.asyncio
async def test_ack_is_idempotent(session):
    med = await make_medicine(session)
    b = await make_batch(session, med.id, qty=1)
    await BatchService().remove_stock(session, b.id, 1)
    writer = StockEventWriter()
    [ev] = await writer.list_events(session)

    first = await writer.ack(session, ev.id)
    delivered_at = first.delivered_at
    second = await writer.ack(session, ev.id)

    assert second.status == "DELIVERED"
    assert second.delivered_at == delivered_at
    assert await writer.list_events(session) == []
    assert [e.id for e in await writer.list_events(session, status="DELIVERED")] == [ev.id]
    assert len(await writer.list_events(session, status=None)) == 1


@pytest.mark.asyncio
async def test_ack_unknown_event(session):
    with pytest.raises(NotFoundError):
        await StockEventWriter().ack(session, 12345)
