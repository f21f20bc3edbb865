# tests/api/test_batches_api.py
from __future__ import annotations

from datetime import date, timedelta

import pytest

from tests._problem import as_problem
from tests.helpers.inventory import make_medicine, seed_batch_raw, days

TODAY = date.today()


def _d(n: int) -> str:
    return (TODAY + timedelta(days=n)).isoformat()


async def _medicine(client, name="Amoxicillin 250mg") -> int:
    r = await client.post("/medicines", json={"name": name, "unit": "capsule"})
    return r.json()["id"]


async def _batch(client, medicine_id, name="LOT-1", qty=10, expires_in=90) -> dict:
    r = await client.post(
        "/batches",
        json={
            "medicine_id": medicine_id,
            "batch_name": name,
            "quantity": qty,
            "expiry_date": _d(expires_in),
        },
    )
    assert r.status_code == 201, r.text
    return r.json()


@pytest.mark.asyncio
async def test_create_batch_returns_opening_entry(client):
    mid = await _medicine(client)
    out = await _batch(client, mid, qty=100, expires_in=10)

    assert out["batch"]["quantity"] == 100
    assert out["batch"]["days_to_expiry"] == 10
    assert out["batch"]["expiry_status"] == "EXPIRING_SOON"
    assert out["opening_transaction"]["change"] == 100
    assert out["opening_transaction"]["reason"] == "opening_stock"


@pytest.mark.asyncio
async def test_create_batch_rejections(client):
    mid = await _medicine(client)
    await _batch(client, mid, name="LOT-1")

    as_problem(
        await client.post(
            "/batches",
            json={"medicine_id": mid, "batch_name": "LOT-1", "quantity": 1, "expiry_date": _d(5)},
        ),
        409,
        "duplicate",
    )
    as_problem(
        await client.post(
            "/batches",
            json={"medicine_id": mid, "batch_name": "LOT-2", "quantity": 1, "expiry_date": _d(-1)},
        ),
        422,
        "invalid_argument",
    )
    as_problem(
        await client.post(
            "/batches",
            json={"medicine_id": mid, "batch_name": "LOT-2", "quantity": 0, "expiry_date": _d(5)},
        ),
        422,
        "request_validation_error",
    )
    as_problem(
        await client.post(
            "/batches",
            json={"medicine_id": 999, "batch_name": "LOT-2", "quantity": 1, "expiry_date": _d(5)},
        ),
        404,
        "not_found",
    )


@pytest.mark.asyncio
async def test_stock_moves_and_history(client):
    mid = await _medicine(client)
    bid = (await _batch(client, mid, qty=10))["batch"]["id"]

    r = await client.post(f"/batches/{bid}/restock", json={"quantity": 5, "note": "delivery"})
    assert r.status_code == 200 and r.json()["after_quantity"] == 15

    r = await client.post(
        f"/batches/{bid}/remove", json={"quantity": 3, "note": "broken", "patient_id": "P-1"}
    )
    assert r.json()["change"] == -3 and r.json()["patient_id"] == "P-1"

    body = as_problem(
        await client.post(f"/batches/{bid}/remove", json={"quantity": 50}),
        409,
        "insufficient_stock",
    )
    assert body["details"][0]["available_qty"] == 12

    hist = (await client.get(f"/batches/{bid}/transactions")).json()
    assert [t["change"] for t in hist] == [-3, 5, 10]

    by_med = (await client.get(f"/medicines/{mid}/transactions")).json()
    assert len(by_med) == 3

    page = (await client.get("/transactions", params={"type": "REMOVED"})).json()
    assert page["total"] == 1 and page["items"][0]["medicine_name"] == "Amoxicillin 250mg"


@pytest.mark.asyncio
async def test_patch_and_delete_batch(client):
    mid = await _medicine(client)
    bid = (await _batch(client, mid, qty=10))["batch"]["id"]

    r = await client.patch(f"/batches/{bid}", json={"quantity": 8, "note": "recount"})
    out = r.json()
    assert out["batch"]["quantity"] == 8
    assert out["correction"]["change"] == -2
    assert out["correction"]["reason"] == "correction: recount"

    r = await client.patch(f"/batches/{bid}", json={"batch_name": "LOT-1B"})
    assert r.json()["correction"] is None and r.json()["batch"]["batch_name"] == "LOT-1B"

    r = await client.delete(f"/batches/{bid}")
    out = r.json()
    assert out["ok"] is True
    assert out["closing_transaction"]["change"] == -8

    as_problem(await client.get(f"/batches/{bid}"), 404, "not_found")
    # history survives the batch
    hist = (await client.get(f"/batches/{bid}/transactions")).json()
    assert sum(t["change"] for t in hist) == 0


@pytest.mark.asyncio
async def test_expired_listing_and_availability(client, async_session_maker):
    mid = await _medicine(client)
    await _batch(client, mid, name="FRESH", qty=20, expires_in=200)
    await _batch(client, mid, name="SOON", qty=5, expires_in=3)
    async with async_session_maker() as s:
        old = await seed_batch_raw(s, mid, name="OLD", qty=40, expiry_date=days(-2))

    expired = (await client.get("/batches/expired")).json()
    assert [(b["id"], b["medicine_name"], b["expiry_status"]) for b in expired] == [
        (old.id, "Amoxicillin 250mg", "EXPIRED")
    ]

    report = (await client.get(f"/medicines/{mid}/availability")).json()
    assert report["total"] == 25
    assert report["expired_quantity"] == 40
    assert report["expiring_soon_count"] == 1

    names = [b["batch_name"] for b in (await client.get(f"/medicines/{mid}/batches")).json()]
    assert names == ["OLD", "SOON", "FRESH"]


@pytest.mark.asyncio
async def test_reconcile_endpoint(client, async_session_maker):
    async with async_session_maker() as s:
        med = await make_medicine(s)
    bid = (await _batch(client, med.id, qty=10))["batch"]["id"]

    r = await client.post(f"/batches/{bid}/reconcile")
    assert r.json() == {
        "batch_id": bid,
        "quantity": 10,
        "ledger_sum": 10,
        "consistent": True,
        "repaired": False,
        "quarantine_lifted": False,
    }
    assert (await client.get("/transactions/mismatches")).json() == []
