# tests/api/test_catalog_api.py
from __future__ import annotations

import pytest

from tests._problem import as_problem


async def _create_med(client, name="Paracetamol 500mg", unit="tablet", category_id=None):
    r = await client.post(
        "/medicines", json={"name": name, "unit": unit, "category_id": category_id}
    )
    assert r.status_code == 201, r.text
    return r.json()


@pytest.mark.asyncio
async def test_category_crud(client):
    r = await client.post("/categories", json={"name": "Analgesics"})
    assert r.status_code == 201, r.text
    cat = r.json()

    dup = await client.post("/categories", json={"name": "Analgesics"})
    body = as_problem(dup, 409, "duplicate")
    assert "retryable" not in body.get("context", {})

    r = await client.patch(f"/categories/{cat['id']}", json={"name": "Pain relief"})
    assert r.status_code == 200 and r.json()["name"] == "Pain relief"

    r = await client.get("/categories")
    assert [c["name"] for c in r.json()] == ["Pain relief"]

    await _create_med(client, category_id=cat["id"])
    as_problem(await client.delete(f"/categories/{cat['id']}"), 409, "referenced")


@pytest.mark.asyncio
async def test_medicine_crud_and_listing(client):
    med = await _create_med(client)
    assert med["unit"] == "tablet"

    r = await client.get(f"/medicines/{med['id']}")
    assert r.status_code == 200 and r.json()["name"] == "Paracetamol 500mg"

    await client.post(
        "/batches",
        json={
            "medicine_id": med["id"],
            "batch_name": "PCM-01",
            "quantity": 40,
            "expiry_date": "2099-01-01",
        },
    )
    r = await client.get("/medicines", params={"search": "paracet"})
    assert [(m["id"], m["available_quantity"]) for m in r.json()] == [(med["id"], 40)]

    r = await client.patch(f"/medicines/{med['id']}", json={"name": "Paracetamol 1g"})
    assert r.json()["name"] == "Paracetamol 1g"

    as_problem(
        await client.patch(f"/medicines/{med['id']}", json={"unit": "ml"}), 409, "referenced"
    )
    as_problem(await client.delete(f"/medicines/{med['id']}"), 409, "referenced")


@pytest.mark.asyncio
async def test_patch_with_null_category_clears_it(client):
    cat = (await client.post("/categories", json={"name": "Vitamins"})).json()
    med = await _create_med(client, "Vitamin D", category_id=cat["id"])

    r = await client.patch(f"/medicines/{med['id']}", json={"name": "Vitamin D3"})
    assert r.json()["category_id"] == cat["id"]

    r = await client.patch(f"/medicines/{med['id']}", json={"category_id": None})
    assert r.json()["category_id"] is None


@pytest.mark.asyncio
async def test_delete_unused_medicine(client):
    med = await _create_med(client, "Unused")
    r = await client.delete(f"/medicines/{med['id']}")
    assert r.status_code == 200 and r.json() == {"ok": True}
    as_problem(await client.get(f"/medicines/{med['id']}"), 404, "not_found")


@pytest.mark.asyncio
async def test_request_validation_is_a_problem(client):
    body = as_problem(await client.post("/medicines", json={"name": ""}), 422, "request_validation_error")
    paths = {d["path"] for d in body["details"]}
    assert {"name", "unit"} <= paths


@pytest.mark.asyncio
async def test_unknown_route_is_a_problem(client):
    as_problem(await client.get("/no-such-thing"), 404, "http_error")
