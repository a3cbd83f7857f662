import pytest

from tests._helpers import fetch_brand, fetch_jobs, insert_brand


pytestmark = pytest.mark.anyio


async def test_change_status_flips_and_persists(client, session, session_factory):
    brand = await insert_brand(session, name="Opel", is_active=True)

    r = await client.put(f"/api/v1/brands/{brand.id}/change-status")
    assert r.status_code == 200, r.text
    assert r.json()["message"] == "Brand status changed successfully."
    assert r.json()["data"]["is_active"] is False

    stored = await fetch_brand(session_factory, brand.id)
    assert stored.is_active is False


async def test_change_status_twice_restores_original_value(client, session, session_factory):
    brand = await insert_brand(session, name="Opel", is_active=True)

    await client.put(f"/api/v1/brands/{brand.id}/change-status")
    r = await client.put(f"/api/v1/brands/{brand.id}/change-status")
    assert r.status_code == 200, r.text
    assert r.json()["data"]["is_active"] is True

    stored = await fetch_brand(session_factory, brand.id)
    assert stored.is_active is True
    assert await fetch_jobs(session_factory) == []


async def test_change_status_unknown_brand_404(client):
    r = await client.put("/api/v1/brands/not-a-uuid/change-status")
    assert r.status_code == 404, r.text
