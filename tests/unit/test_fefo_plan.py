# tests/unit/test_fefo_plan.py
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from medstock.services.fefo_allocator import fefo_order, plan_fefo, shortage_detail

pytestmark = pytest.mark.contract

AS_OF = date(2026, 3, 1)
T0 = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)


def _b(id, qty, exp_days, created=None, name=None):
    return SimpleNamespace(
        id=id,
        quantity=qty,
        expiry_date=AS_OF + timedelta(days=exp_days),
        created_at=created or T0,
        batch_name=name or f"B{id}",
    )


def test_earliest_expiry_is_drained_first():
    """B1(d1, 5) + B2(d2>d1, 5), need 7 → 5 from B1, 2 from B2."""
    b1 = _b(1, 5, 10)
    b2 = _b(2, 5, 20)
    plan, remaining = plan_fefo([b2, b1], 7, AS_OF)

    assert remaining == 0
    assert [(a.batch_id, a.quantity) for a in plan] == [(1, 5), (2, 2)]


def test_single_batch_covers_the_line():
    plan, remaining = plan_fefo([_b(1, 5, 10), _b(2, 5, 20)], 3, AS_OF)
    assert remaining == 0
    assert [(a.batch_id, a.quantity) for a in plan] == [(1, 3)]


def test_expired_and_empty_batches_are_skipped():
    expired = _b(1, 40, -1)
    empty = _b(2, 0, 5)
    good = _b(3, 10, 30)
    plan, remaining = plan_fefo([expired, empty, good], 10, AS_OF)

    assert remaining == 0
    assert [(a.batch_id, a.quantity) for a in plan] == [(3, 10)]


def test_expiry_date_equal_to_as_of_is_still_usable():
    plan, remaining = plan_fefo([_b(1, 4, 0)], 4, AS_OF)
    assert remaining == 0
    assert plan[0].batch_id == 1


def test_short_plan_reports_remaining():
    plan, remaining = plan_fefo([_b(1, 3, 10), _b(2, 2, 11)], 9, AS_OF)
    assert remaining == 4
    assert sum(a.quantity for a in plan) == 5


def test_equal_expiry_falls_back_to_creation_order():
    older = _b(7, 5, 10, created=T0)
    newer = _b(3, 5, 10, created=T0 + timedelta(hours=1))
    plan, _ = plan_fefo([newer, older], 6, AS_OF)
    assert [(a.batch_id, a.quantity) for a in plan] == [(7, 5), (3, 1)]


def test_equal_expiry_and_creation_falls_back_to_id():
    a = _b(5, 5, 10)
    b = _b(4, 5, 10)
    assert [x.id for x in fefo_order([a, b])] == [4, 5]


def test_naive_and_aware_created_at_compare():
    """Rows read back from SQLite carry naive timestamps."""
    aware = _b(1, 5, 10, created=T0 + timedelta(minutes=5))
    naive = _b(2, 5, 10, created=T0.replace(tzinfo=None))
    assert [x.id for x in fefo_order([aware, naive])] == [2, 1]


def test_allocation_to_dict():
    plan, _ = plan_fefo([_b(1, 5, 10, name="PCM-01")], 2, AS_OF)
    d = plan[0].to_dict()
    assert d == {
        "batch_id": 1,
        "quantity": 2,
        "batch_name": "PCM-01",
        "expiry_date": (AS_OF + timedelta(days=10)).isoformat(),
    }


def test_shortage_detail_short_qty():
    d = shortage_detail(medicine_id=3, medicine_name="X", requested_qty=80, available_qty=70)
    assert d["short_qty"] == 10
    assert d["requested_qty"] == 80 and d["available_qty"] == 70
