# tests/api/test_prescriptions_api.py
from __future__ import annotations

from datetime import date, timedelta

import pytest

from tests._problem import as_problem
from tests.helpers.inventory import days, seed_batch_raw


def _d(n: int) -> str:
    return (date.today() + timedelta(days=n)).isoformat()


async def _stock(client, name: str, *batches) -> tuple[int, list[int]]:
    mid = (await client.post("/medicines", json={"name": name, "unit": "tablet"})).json()["id"]
    ids = []
    for i, (qty, expires_in) in enumerate(batches, start=1):
        r = await client.post(
            "/batches",
            json={
                "medicine_id": mid,
                "batch_name": f"{name[:3].upper()}-{i}",
                "quantity": qty,
                "expiry_date": _d(expires_in),
            },
        )
        ids.append(r.json()["batch"]["id"])
    return mid, ids


@pytest.mark.asyncio
async def test_record_prescription_fefo(client):
    mid, (late, early) = await _stock(client, "Ibuprofen", (5, 60), (5, 10))

    r = await client.post(
        "/prescriptions",
        json={
            "treatment_ref": "TRT-1",
            "patient_id": "P-881",
            "lines": [{"medicine_id": mid, "quantity": 7}],
        },
    )
    assert r.status_code == 200, r.text
    out = r.json()

    assert out["state"] == "COMMITTED" and out["replayed"] is False
    # JSON object keys are strings
    assert [(a["batch_id"], a["quantity"]) for a in out["plan"][str(mid)]] == [(early, 5), (late, 2)]
    assert out["available_after"] == {str(mid): 3}
    assert {t["patient_id"] for t in out["transactions"]} == {"P-881"}
    assert all(t["treatment_ref"] == "TRT-1" for t in out["transactions"])

    again = (
        await client.post(
            "/prescriptions",
            json={"treatment_ref": "TRT-1", "lines": [{"medicine_id": mid, "quantity": 7}]},
        )
    ).json()
    assert again["replayed"] is True
    assert again["available_after"] == {str(mid): 3}


@pytest.mark.asyncio
async def test_short_prescription_is_a_409_listing_every_line(client):
    a, (ba,) = await _stock(client, "Aspirin", (10, 30))
    b, _ = await _stock(client, "Betadine", (1, 30))
    c, _ = await _stock(client, "Cetirizine", (2, 30))

    r = await client.post(
        "/prescriptions",
        json={
            "treatment_ref": "TRT-2",
            "lines": [
                {"medicine_id": a, "quantity": 5},
                {"medicine_id": b, "quantity": 4},
                {"medicine_id": c, "quantity": 3},
            ],
        },
    )
    body = as_problem(r, 409, "insufficient_stock")
    assert [(d["medicine_id"], d["short_qty"]) for d in body["details"]] == [(b, 3), (c, 1)]
    assert all(d["type"] == "shortage" for d in body["details"])
    assert body["context"]["phase"] == "validating"
    assert {n["action"] for n in body["next_actions"]} == {"edit_prescription", "restock"}

    # nothing deducted from the line that could be served
    assert (await client.get(f"/batches/{ba}")).json()["quantity"] == 10


@pytest.mark.asyncio
async def test_prescription_request_validation(client):
    as_problem(
        await client.post("/prescriptions", json={"treatment_ref": "T", "lines": []}),
        422,
        "request_validation_error",
    )
    as_problem(
        await client.post(
            "/prescriptions",
            json={"treatment_ref": "T", "lines": [{"medicine_id": 1, "quantity": -1}]},
        ),
        422,
        "request_validation_error",
    )
    as_problem(
        await client.post(
            "/prescriptions",
            json={"treatment_ref": "T", "lines": [{"medicine_id": 404, "quantity": 1}]},
        ),
        404,
        "not_found",
    )


@pytest.mark.asyncio
async def test_check_endpoint_writes_nothing(client):
    mid, (bid,) = await _stock(client, "Omeprazole", (10, 30))

    ok = (
        await client.post("/prescriptions/check", json={"lines": [{"medicine_id": mid, "quantity": 4}]})
    ).json()
    assert ok["ok"] is True
    assert ok["plan"][str(mid)][0]["batch_id"] == bid

    short = (
        await client.post("/prescriptions/check", json={"lines": [{"medicine_id": mid, "quantity": 40}]})
    ).json()
    assert short["ok"] is False
    assert short["shortages"][0]["available_qty"] == 10

    hist = (await client.get(f"/batches/{bid}/transactions")).json()
    assert len(hist) == 1


@pytest.mark.asyncio
async def test_client_cannot_backdate_a_deduction(client, async_session_maker):
    mid = (await client.post("/medicines", json={"name": "Amoxicillin", "unit": "capsule"})).json()["id"]
    async with async_session_maker() as s:
        old = await seed_batch_raw(s, mid, name="OLD", qty=40, expiry_date=days(-30))
        old_id = old.id

    # as_of is not part of the deduction body; "today" is always the server's
    r = await client.post(
        "/prescriptions",
        json={
            "treatment_ref": "T-EXP",
            "lines": [{"medicine_id": mid, "quantity": 10}],
            "as_of": _d(-365),
        },
    )
    body = as_problem(r, 409, "insufficient_stock")
    assert body["details"][0]["available_qty"] == 0

    assert (await client.get(f"/batches/{old_id}")).json()["quantity"] == 40
    assert (await client.get(f"/batches/{old_id}/transactions")).json()[0]["change"] == 40

    # the dry run may still look back in time
    back = (
        await client.post(
            "/prescriptions/check",
            json={"lines": [{"medicine_id": mid, "quantity": 10}], "as_of": _d(-365)},
        )
    ).json()
    assert back["ok"] is True
