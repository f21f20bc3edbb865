# tests/services/test_availability_service.py
from __future__ import annotations

import pytest

from medstock.core.errors import NotFoundError
from medstock.services.availability import AvailabilityEngine
from tests.helpers.inventory import TODAY, days, make_batch, make_medicine, seed_batch_raw

pytestmark = pytest.mark.contract


@pytest.mark.asyncio
async def test_expired_stock_is_not_available(session):
    med = await make_medicine(session)
    await seed_batch_raw(session, med.id, name="OLD", qty=40, expiry_date=days(-1))
    engine = AvailabilityEngine()

    assert await engine.available_quantity(session, med.id) == 0

    await make_batch(session, med.id, name="NEW", qty=10)
    assert await engine.available_quantity(session, med.id) == 10


@pytest.mark.asyncio
async def test_batch_expiring_today_still_counts(session):
    med = await make_medicine(session)
    await make_batch(session, med.id, qty=7, expires_in=0)
    assert await AvailabilityEngine().available_quantity(session, med.id, as_of=TODAY) == 7


@pytest.mark.asyncio
async def test_as_of_moves_the_expiry_line(session):
    med = await make_medicine(session)
    await make_batch(session, med.id, qty=8, expires_in=5)
    engine = AvailabilityEngine()

    assert await engine.available_quantity(session, med.id, as_of=days(5)) == 8
    assert await engine.available_quantity(session, med.id, as_of=days(6)) == 0


@pytest.mark.asyncio
async def test_available_many_fills_missing_with_zero(session):
    a = await make_medicine(session, "A")
    b = await make_medicine(session, "B")
    await make_batch(session, a.id, qty=3)

    assert await AvailabilityEngine().available_many(session, [b.id, a.id, a.id]) == {
        a.id: 3,
        b.id: 0,
    }


@pytest.mark.asyncio
async def test_availability_report_classifies_batches(session):
    med = await make_medicine(session)
    await seed_batch_raw(session, med.id, name="EXP", qty=40, expiry_date=days(-2))
    await seed_batch_raw(session, med.id, name="EXP-EMPTY", qty=0, expiry_date=days(-2))
    await make_batch(session, med.id, name="SOON", qty=5, expires_in=10)
    await make_batch(session, med.id, name="LATER", qty=20, expires_in=90)
    engine = AvailabilityEngine(expiring_soon_days=30)

    report = await engine.availability_report(session, med.id, as_of=TODAY)

    assert report.total == 25
    assert (report.expiring_soon_count, report.expiring_soon_quantity) == (1, 5)
    assert (report.expired_count, report.expired_quantity) == (1, 40)
    # reads are idempotent
    assert await engine.availability_report(session, med.id, as_of=TODAY) == report

    wide = await AvailabilityEngine(expiring_soon_days=100).availability_report(
        session, med.id, as_of=TODAY
    )
    assert wide.expiring_soon_count == 2


@pytest.mark.asyncio
async def test_availability_report_unknown_medicine(session):
    with pytest.raises(NotFoundError):
        await AvailabilityEngine().availability_report(session, 404)
